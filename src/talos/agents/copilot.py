"""GitHub Copilot CLI agent adapter."""

from __future__ import annotations

import logging
from typing import ClassVar

from talos.acp.client import ProtocolClient
from talos.agents.base import CANCELLED_MESSAGE, BaseAgent
from talos.agents.events import AgentEvent, EventKind
from talos.agents.protocol import (
    AgentCapabilities,
    ExecuteOptions,
    ExecutionMode,
    ExecutionResult,
    Task,
)
from talos.errors import (
    ApplicationError,
    HandshakeError,
    ProcessSpawnError,
    RemoteError,
    RequestTimeout,
    TalosError,
    TaskCancelledError,
)

logger = logging.getLogger(__name__)

# Stop reasons that mean the turn did not do the work
FAILED_STOP_REASONS = frozenset({"error", "refusal"})

# Lifecycle events that are logged rather than forwarded
_LIFECYCLE_EVENTS = frozenset({EventKind.INITIALIZED, EventKind.SESSION, EventKind.EXIT})


class CopilotAgent(BaseAgent):
    """Adapter for the GitHub Copilot CLI.

    Copilot CLI supports:
    - --acp --stdio for streaming protocol mode
    - -p for one-shot prompts (batch mode)
    - --allow-tool/--deny-tool and --allow-all-tools for tool permissions
    - --allow-url/--allow-all-urls and --allow-all-paths
    - --model for model selection and --plan for plan mode
    """

    agent_id = "copilot"
    display_name = "GitHub Copilot CLI"
    default_command = "copilot"
    capabilities = AgentCapabilities(
        streaming=True,
        interactive=True,
        session_resume=True,
        plan_mode=True,
        tools=frozenset({"shell", "write", "read", "glob", "grep"}),
    )
    protocol_args: ClassVar[tuple[str, ...]] = ("--acp", "--stdio")

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._client: ProtocolClient | None = None

    def build_args(self, task: Task) -> list[str]:
        args = ["-p", task.prompt]
        perms = self.settings.permissions

        if perms.allow_all_tools:
            args.append("--allow-all-tools")
        else:
            for tool in perms.allow_tools:
                args.extend(["--allow-tool", tool])

        for tool in perms.deny_tools:
            args.extend(["--deny-tool", tool])

        if perms.allow_all_paths:
            args.append("--allow-all-paths")

        if perms.allow_all_urls:
            args.append("--allow-all-urls")
        else:
            for url in perms.allow_urls:
                args.extend(["--allow-url", url])

        if self.settings.model:
            args.extend(["--model", self.settings.model])

        if self.settings.plan_mode:
            args.append("--plan")

        args.extend(self.settings.extra_args)
        return args

    def _describe(self, command: str, args: list[str]) -> str:
        # Keep the prompt out of log lines
        return super()._describe(command, ["-p", "..."] + args[2:])

    async def _execute_streaming(
        self,
        task: Task,
        options: ExecuteOptions,
    ) -> ExecutionResult:
        workdir = task.resolve_working_dir()
        timeouts = self.settings.timeouts
        client = ProtocolClient(
            self.command,
            self.protocol_args,
            permission_handler=options.permission_handler,
            on_event=self._on_protocol_event,
            request_timeout=timeouts.request,
            prompt_timeout=timeouts.prompt_timeout,
            shutdown_grace=timeouts.shutdown_grace,
        )
        self._client = client

        try:
            await client.start(workdir)
            try:
                await client.new_session(workdir)
            except (RemoteError, RequestTimeout) as e:
                raise HandshakeError(f"ACP session setup failed: {e}") from e

            try:
                outcome = await client.prompt(task.prompt)
            except RemoteError as e:
                raise ApplicationError(f"Agent reported an error: {e}") from e

            if outcome.stop_reason in FAILED_STOP_REASONS:
                raise ApplicationError(f"Agent turn ended with stop reason '{outcome.stop_reason}'")

            return self._result(0, stop_reason=outcome.stop_reason, mode=ExecutionMode.STREAMING)
        except TalosError as e:
            if self._stopped:
                raise TaskCancelledError(
                    CANCELLED_MESSAGE,
                    result=self._result(-1, error=CANCELLED_MESSAGE, mode=ExecutionMode.STREAMING),
                ) from e
            if e.result is None:
                e.result = self._result(
                    _exit_code_for(e), error=str(e), mode=ExecutionMode.STREAMING
                )
            raise
        finally:
            await client.stop()
            self._client = None

    def _on_protocol_event(self, event: AgentEvent) -> None:
        if event.kind is EventKind.CHUNK:
            self._append(EventKind.CHUNK, event.text)
        elif event.kind in _LIFECYCLE_EVENTS:
            logger.debug("[%s] ACP %s: %s", self.agent_id, event.kind.value, event.data)
        else:
            self._emit(event)

    async def stop(self) -> None:
        await super().stop()
        client = self._client
        if client is not None:
            await client.stop()


def _exit_code_for(error: TalosError) -> int:
    if isinstance(error, ProcessSpawnError):
        return -1
    return getattr(error, "exit_code", 1)
