"""Base implementation for agent adapters with common functionality."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import shlex
import time
from pathlib import Path
from typing import ClassVar

from talos.agents.events import AgentEvent, EventHandler, EventKind, discard_event
from talos.agents.protocol import (
    AgentAdapter,
    ExecuteOptions,
    ExecutionMode,
    ExecutionResult,
    Task,
)
from talos.config.schema import AgentSettings
from talos.errors import ApplicationError, ProcessSpawnError, TaskCancelledError

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"

_READ_CHUNK = 4096


class BaseAgent(AgentAdapter):
    """Base class with the batch-mode runner and availability probing.

    Subclasses set the class-level metadata and implement ``build_args``.
    Streaming-capable subclasses also override ``_execute_streaming``.
    """

    default_command: ClassVar[str]
    #: Send the prompt on stdin instead of as an argument
    prompt_via_stdin: ClassVar[bool] = False

    def __init__(
        self,
        settings: AgentSettings | None = None,
        on_event: EventHandler | None = None,
    ) -> None:
        self.settings = settings or AgentSettings(agent_id=self.agent_id)
        self._on_event = on_event or discard_event
        self._process: asyncio.subprocess.Process | None = None
        self._output_parts: list[str] = []
        self._started_at: float | None = None
        self._stopped = False

    @property
    def command(self) -> str:
        """Executable used to run the backend."""
        return self.settings.command or self.default_command

    @property
    def output(self) -> str:
        return "".join(self._output_parts)

    # --- availability ------------------------------------------------------

    @classmethod
    def candidate_commands(cls, settings: AgentSettings | None = None) -> list[str]:
        """Configured command first, then well-known install locations."""
        configured = (settings.command if settings else None) or cls.default_command
        name = cls.default_command
        candidates = [
            configured,
            name,
            f"/usr/local/bin/{name}",
            f"/usr/bin/{name}",
            str(Path.home() / ".local" / "bin" / name),
        ]
        return list(dict.fromkeys(candidates))

    @classmethod
    async def is_available(cls, settings: AgentSettings | None = None) -> bool:
        """Check if the CLI responds to ``--version``."""
        timeout = settings.timeouts.probe if settings else 5.0
        for command in cls.candidate_commands(settings):
            if await cls._probe_version(command, timeout) is not None:
                return True
        return False

    @classmethod
    async def get_version(cls, settings: AgentSettings | None = None) -> str:
        """Get the CLI version if available."""
        timeout = settings.timeouts.probe if settings else 5.0
        for command in cls.candidate_commands(settings):
            version = await cls._probe_version(command, timeout)
            if version is not None:
                return version
        return "unknown"

    @staticmethod
    async def _probe_version(command: str, timeout: float) -> str | None:
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                "--version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except (OSError, ValueError):
            return None

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug("%s --version did not answer within %.1fs", command, timeout)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            return None

        if proc.returncode != 0:
            return None
        return stdout.decode("utf-8", errors="replace").strip() or "unknown"

    # --- execution ---------------------------------------------------------

    async def execute(
        self,
        task: Task,
        options: ExecuteOptions | None = None,
    ) -> ExecutionResult:
        """Execute a task in the requested mode (batch by default)."""
        options = options or ExecuteOptions()
        self._output_parts = []
        self._started_at = time.monotonic()
        self._stopped = False

        mode = options.mode or ExecutionMode.BATCH
        if mode is ExecutionMode.STREAMING and not self.capabilities.streaming:
            logger.info("%s does not support streaming; running in batch mode", self.agent_id)
            mode = ExecutionMode.BATCH

        if mode is ExecutionMode.STREAMING:
            return await self._execute_streaming(task, options)
        return await self._execute_batch(task)

    async def _execute_streaming(
        self,
        task: Task,
        options: ExecuteOptions,
    ) -> ExecutionResult:
        raise NotImplementedError(f"{self.agent_id} does not support streaming")

    async def _execute_batch(self, task: Task) -> ExecutionResult:
        """Spawn the backend once and collect its output until exit.

        Non-zero exit raises :class:`ApplicationError` with the partial result.
        """
        command = self.command
        args = self.build_args(task)
        self._info(f"Executing: {self._describe(command, args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=str(task.resolve_working_dir()),
                stdin=asyncio.subprocess.PIPE if self.prompt_via_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            error = f"Failed to start '{command}': {e}"
            raise ProcessSpawnError(
                error, result=self._result(-1, error=error, mode=ExecutionMode.BATCH)
            ) from e

        self._process = process
        try:
            if self.prompt_via_stdin:
                # Whole prompt in and stdin closed before any output is read
                await self._write_prompt(process, task.prompt)
            await asyncio.gather(
                self._pump(process.stdout, EventKind.CHUNK),
                self._pump(process.stderr, EventKind.STDERR),
            )
            exit_code = await process.wait()
        finally:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
            self._process = None

        if self._stopped:
            raise TaskCancelledError(
                CANCELLED_MESSAGE,
                result=self._result(exit_code, error=CANCELLED_MESSAGE, mode=ExecutionMode.BATCH),
            )
        if exit_code != 0:
            error = f"Process exited with code {exit_code}"
            raise ApplicationError(
                error,
                exit_code=exit_code,
                result=self._result(exit_code, error=error, mode=ExecutionMode.BATCH),
            )
        return self._result(0, mode=ExecutionMode.BATCH)

    async def _write_prompt(self, process: asyncio.subprocess.Process, prompt: str) -> None:
        assert process.stdin is not None
        try:
            process.stdin.write(prompt.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning("%s closed stdin before reading the prompt: %s", self.agent_id, e)
        finally:
            process.stdin.close()

    async def _pump(self, stream: asyncio.StreamReader | None, kind: EventKind) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(_READ_CHUNK)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                self._append(kind, text)
        tail = decoder.decode(b"", final=True)
        if tail:
            self._append(kind, tail)

    async def stop(self) -> None:
        """Terminate the batch process, if any."""
        self._stopped = True
        process = self._process
        if process is None or process.returncode is not None:
            return

        grace = self.settings.timeouts.shutdown_grace
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("%s did not exit within %.1fs; killing", self.agent_id, grace)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    # --- helpers -----------------------------------------------------------

    def _append(self, kind: EventKind, text: str) -> None:
        """Accumulate output and forward it as an event."""
        self._output_parts.append(text)
        self._emit(AgentEvent(kind, {"text": text}))

    def _emit(self, event: AgentEvent) -> None:
        self._on_event(event)

    def _info(self, message: str) -> None:
        logger.info("[%s] %s", self.agent_id, message)
        self._emit(AgentEvent.info(message))

    def _result(
        self,
        exit_code: int,
        *,
        error: str | None = None,
        stop_reason: str | None = None,
        mode: ExecutionMode | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            exit_code=exit_code,
            output=self.output,
            agent=self.agent_id,
            duration_ms=self._elapsed_ms(),
            error=error,
            stop_reason=stop_reason,
            mode=mode,
        )

    def _elapsed_ms(self) -> int:
        if self._started_at is None:
            return 0
        return int((time.monotonic() - self._started_at) * 1000)

    @staticmethod
    def _describe(command: str, args: list[str]) -> str:
        return shlex.join([command, *args])

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.agent_id!r} command={self.command!r}>"
