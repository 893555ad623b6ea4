"""ACP (Agent Client Protocol) client.

Speaks newline-delimited JSON-RPC 2.0 with a single child process over its
standard streams: one JSON object per line in each direction.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import inspect
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Coroutine, Mapping, Sequence

from talos.agents.events import AgentEvent, EventHandler, EventKind, discard_event
from talos.agents.permissions import (
    PermissionDecision,
    PermissionHandler,
    PermissionRequest,
    deny_all,
)
from talos.errors import (
    HandshakeError,
    NoSessionError,
    ProcessSpawnError,
    ProtocolDisconnected,
    ProtocolError,
    ProtocolParseError,
    RemoteError,
    RequestTimeout,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-01-01"
JSONRPC_VERSION = "2.0"

DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_SHUTDOWN_GRACE = 2.0

#: Maximum bytes per JSON line read from the agent's stdout (1 MB).
MAX_LINE_BYTES = 1_048_576

METHOD_NOT_FOUND = -32601

_PERMISSION_METHODS = frozenset({"requestPermission", "session/request_permission"})
_SESSION_UPDATE_METHODS = frozenset({"sessionUpdate", "session/update"})


@dataclass
class Session:
    """Client-side session state."""

    session_id: str | None = None
    initialized: bool = False

    def clear(self) -> None:
        self.session_id = None
        self.initialized = False


@dataclass(frozen=True)
class SessionInfo:
    """Result of a successful ``newSession`` call."""

    session_id: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PromptResult:
    """Result of a completed prompt turn."""

    stop_reason: str | None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class _PendingRequest:
    id: int
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle
    timeout: float
    deadline: float


class ProtocolClient:
    """Owns one agent process running in protocol mode.

    Outbound requests get strictly increasing integer ids and are correlated
    with responses through a pending table. Every pending entry is removed
    exactly once: by its response, by its timer, or by teardown, whichever
    pops it first. Notifications (messages with a ``method``) are dispatched
    to the event handler or, for permission requests, to the permission
    handler, without blocking the read loop.
    """

    def __init__(
        self,
        command: str = "copilot",
        args: Sequence[str] = ("--acp", "--stdio"),
        *,
        permission_handler: PermissionHandler | None = None,
        on_event: EventHandler | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        prompt_timeout: float | None = None,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.command = command
        self.args = list(args)
        self.request_timeout = request_timeout
        self.prompt_timeout = prompt_timeout if prompt_timeout is not None else request_timeout
        self.shutdown_grace = shutdown_grace
        self._permission_handler: PermissionHandler = permission_handler or deny_all
        self._on_event: EventHandler = on_event or discard_event
        self._env = dict(env) if env is not None else None

        self._process: asyncio.subprocess.Process | None = None
        self._closed = True
        self._request_id = 0
        self._pending: dict[int, _PendingRequest] = {}
        self._session = Session()
        self._tasks: set[asyncio.Task] = set()
        self._write_lock = asyncio.Lock()
        self._exit_code: int | None = None

    @property
    def session(self) -> Session:
        return self._session

    @property
    def running(self) -> bool:
        return self._process is not None and not self._closed

    @property
    def pending_count(self) -> int:
        """Number of requests still awaiting a response."""
        return len(self._pending)

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    # --- lifecycle ---------------------------------------------------------

    async def start(self, cwd: str | Path | None = None) -> Any:
        """Spawn the agent in protocol mode and perform the handshake.

        Raises:
            ProcessSpawnError: the binary could not be started.
            HandshakeError: ``initialize`` returned an error or timed out.
            ProtocolDisconnected: the process exited before answering.
        """
        if self._process is not None:
            raise RuntimeError("ACP client already started")

        workdir = Path(cwd) if cwd else Path.cwd()
        logger.debug("Starting ACP server: %s %s (cwd=%s)", self.command, " ".join(self.args), workdir)
        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                cwd=str(workdir),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
                limit=MAX_LINE_BYTES,
            )
        except OSError as e:
            raise ProcessSpawnError(f"Failed to start '{self.command}': {e}") from e

        self._process = process
        self._closed = False
        self._exit_code = None
        self._spawn(self._read_stdout(process))
        self._spawn(self._read_stderr(process))

        try:
            result = await self._request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "clientCapabilities": {"streaming": True},
                },
            )
        except (RemoteError, RequestTimeout) as e:
            raise HandshakeError(f"ACP handshake failed: {e}") from e

        self._session.initialized = True
        self._emit(EventKind.INITIALIZED, {"result": result})
        return result

    async def new_session(
        self,
        cwd: str | Path | None = None,
        mcp_servers: Sequence[Any] = (),
    ) -> SessionInfo:
        """Create a session; required before :meth:`prompt`."""
        result = await self._request(
            "newSession",
            {"cwd": str(cwd or Path.cwd()), "mcpServers": list(mcp_servers)},
        )
        session_id = result.get("sessionId") if isinstance(result, dict) else None
        if not session_id:
            raise ProtocolError("newSession response did not include a sessionId")

        self._session.session_id = str(session_id)
        self._emit(EventKind.SESSION, {"sessionId": self._session.session_id})
        return SessionInfo(session_id=self._session.session_id, raw=result)

    async def prompt(self, text: str) -> PromptResult:
        """Send a prompt and wait for the turn to finish.

        Output arrives beforehand as chunk/tool_use/tool_result events.
        """
        if not self._session.session_id:
            raise NoSessionError("No active session. Call new_session() first.")

        result = await self._request(
            "prompt",
            {
                "sessionId": self._session.session_id,
                "prompt": [{"type": "text", "text": text}],
            },
            timeout=self.prompt_timeout,
        )
        if not isinstance(result, dict):
            result = {}
        return PromptResult(stop_reason=result.get("stopReason"), raw=result)

    async def stop(self) -> None:
        """Close stdin, terminate the process and tear down state.

        Forces termination after the shutdown grace period. Safe to call
        repeatedly or before :meth:`start`.
        """
        process = self._process
        if process is None:
            return
        self._process = None
        self._closed = True

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.shutdown_grace)
            except asyncio.TimeoutError:
                logger.warning(
                    "Agent did not exit within %.1fs of SIGTERM; killing", self.shutdown_grace
                )
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        self._exit_code = process.returncode

        self._fail_pending("ACP client stopped")

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._session.clear()
        logger.debug("ACP server stopped (exit code %s)", self._exit_code)

    # --- request/response --------------------------------------------------

    async def _request(
        self,
        method: str,
        params: dict[str, Any],
        timeout: float | None = None,
    ) -> Any:
        if self._process is None or self._closed:
            raise ProtocolDisconnected("ACP process not running")

        loop = asyncio.get_running_loop()
        self._request_id += 1
        request_id = self._request_id
        timeout = timeout or self.request_timeout

        future = loop.create_future()
        timer = loop.call_later(timeout, self._expire, request_id)
        self._pending[request_id] = _PendingRequest(
            id=request_id,
            method=method,
            future=future,
            timer=timer,
            timeout=timeout,
            deadline=loop.time() + timeout,
        )

        try:
            await self._send(
                {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method, "params": params}
            )
        except BaseException:
            entry = self._pending.pop(request_id, None)
            if entry is not None:
                entry.timer.cancel()
            raise

        return await future

    def _expire(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        logger.warning("ACP request %s (%s) timed out", request_id, pending.method)
        if not pending.future.done():
            pending.future.set_exception(RequestTimeout(pending.method, pending.timeout))

    def _resolve(self, request_id: Any, message: dict[str, Any]) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            logger.debug("Discarding response for unknown or abandoned request %r", request_id)
            return
        pending.timer.cancel()
        if pending.future.done():
            return

        error = message.get("error")
        if error is None:
            pending.future.set_result(message.get("result"))
        elif isinstance(error, dict):
            pending.future.set_exception(
                RemoteError(error.get("message") or "ACP error", error.get("code"), error.get("data"))
            )
        else:
            pending.future.set_exception(RemoteError(str(error)))

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(ProtocolDisconnected(f"{reason} ({entry.method} pending)"))

    async def _send(self, message: dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None or self._closed or process.stdin.is_closing():
            raise ProtocolDisconnected("ACP process not running")

        data = (json.dumps(message) + "\n").encode("utf-8")
        async with self._write_lock:
            try:
                process.stdin.write(data)
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise ProtocolDisconnected(f"ACP process stdin closed: {e}") from e

    async def _send_quietly(self, message: dict[str, Any]) -> None:
        try:
            await self._send(message)
        except ProtocolDisconnected as e:
            logger.debug("Could not send %s: %s", message.get("id"), e)

    # --- inbound -----------------------------------------------------------

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        while True:
            try:
                line = await process.stdout.readline()
            except ValueError:
                self._report_parse_error(f"ACP message exceeds {MAX_LINE_BYTES} bytes", "")
                continue
            if not line:
                break
            self._handle_line(line.decode("utf-8", errors="replace"))

        self._closed = True
        self._fail_pending("Agent process disconnected")
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(process.wait(), timeout=self.shutdown_grace)
        self._exit_code = process.returncode
        logger.debug("Agent output closed (exit code %s)", self._exit_code)
        self._emit(EventKind.EXIT, {"code": self._exit_code})

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await process.stderr.read(4096)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                self._emit(EventKind.STDERR, {"text": text})

    def _handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            self._report_parse_error(f"Failed to parse ACP message: {line[:200]}", line)
            return
        if not isinstance(message, dict):
            self._report_parse_error(f"ACP message is not an object: {line[:200]}", line)
            return
        self._handle_message(message)

    def _handle_message(self, message: dict[str, Any]) -> None:
        method = message.get("method")
        msg_id = message.get("id")

        if method is None and msg_id is not None and ("result" in message or "error" in message):
            self._resolve(msg_id, message)
            return

        params = message.get("params")
        if not isinstance(params, dict):
            params = {}

        if method is not None:
            self._handle_server_message(str(method), msg_id, params)
            return

        # Bare session update without a method
        if "update" in params:
            self._handle_session_update(params["update"])
            return

        logger.debug("Ignoring unrecognized ACP message: %s", message)

    def _handle_server_message(self, method: str, msg_id: Any, params: dict[str, Any]) -> None:
        if method in _PERMISSION_METHODS:
            self._spawn(self._answer_permission(msg_id, params))
        elif method in _SESSION_UPDATE_METHODS:
            self._handle_session_update(params.get("update"))
        else:
            self._emit(EventKind.NOTIFICATION, {"method": method, "params": params})
            if msg_id is not None:
                logger.warning("Agent called unsupported method %s", method)
                self._spawn(
                    self._send_quietly(
                        {
                            "jsonrpc": JSONRPC_VERSION,
                            "id": msg_id,
                            "error": {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"},
                        }
                    )
                )

    async def _answer_permission(self, msg_id: Any, params: dict[str, Any]) -> None:
        request = PermissionRequest.from_params(params)
        try:
            decision = self._permission_handler(request)
            if inspect.isawaitable(decision):
                decision = await decision
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Permission handler failed for %s, denying: %s", request.tool, e)
            decision = PermissionDecision.cancel()

        if msg_id is None:
            logger.warning("Permission request for %s carried no id; cannot answer", request.tool)
            return
        await self._send_quietly(
            {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "result": decision.to_result()}
        )

    def _handle_session_update(self, update: Any) -> None:
        if not isinstance(update, dict):
            return
        kind = update.get("sessionUpdate")
        content = update.get("content")
        if not isinstance(content, dict):
            content = {}

        if kind == "agent_message_chunk":
            content_type = content.get("type")
            if content_type == "text":
                self._emit(EventKind.CHUNK, {"text": content.get("text") or ""})
            elif content_type == "tool_use":
                self._emit(
                    EventKind.TOOL_USE,
                    {
                        "tool": content.get("name") or content.get("tool"),
                        "args": content.get("input", content.get("args")),
                        "content": content,
                    },
                )
            else:
                self._emit(EventKind.UPDATE, {"update": update})
        elif kind == "agent_message_start":
            self._emit(EventKind.MESSAGE_START, {"update": update})
        elif kind == "agent_message_end":
            self._emit(EventKind.MESSAGE_END, {"update": update})
        elif kind == "tool_call":
            self._emit(
                EventKind.TOOL_USE,
                {
                    "tool": update.get("title") or update.get("kind"),
                    "args": update.get("rawInput"),
                    "content": update,
                },
            )
        elif kind == "tool_result":
            self._emit(
                EventKind.TOOL_RESULT,
                {"tool": update.get("tool"), "result": update.get("result", content or None), "update": update},
            )
        else:
            self._emit(EventKind.UPDATE, {"update": update})

    def _report_parse_error(self, message: str, line: str) -> None:
        error = ProtocolParseError(message, line)
        logger.warning("%s", message)
        self._emit(EventKind.PARSE_ERROR, {"message": message, "line": line, "error": error})

    # --- helpers -----------------------------------------------------------

    def _emit(self, kind: EventKind, data: dict[str, Any]) -> None:
        try:
            self._on_event(AgentEvent(kind, data))
        except Exception:
            logger.exception("Event handler failed for %s event", kind.value)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
