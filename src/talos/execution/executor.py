"""Task executor: agent selection, mode fallback, permissions and cancellation."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Type

from talos.agents.base import CANCELLED_MESSAGE
from talos.agents.events import AgentEvent, EventHandler, EventKind, discard_event
from talos.agents.permissions import PermissionHandler
from talos.agents.protocol import (
    AgentAdapter,
    ExecuteOptions,
    ExecutionMode,
    ExecutionResult,
    Task,
)
from talos.agents.registry import AgentRegistry
from talos.config.schema import AgentSettings, TalosConfig
from talos.errors import ProtocolError, TalosError, UnknownAgentError
from talos.execution.permissions import AutoApproveQuery, DecisionRecorder, PermissionPolicy
from talos.execution.slot import ExecutionSlot

logger = logging.getLogger(__name__)


class ExecutorState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    RUNNING = "running"
    FALLING_BACK = "falling_back"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class _Run:
    """Bookkeeping for the task currently executing."""

    task: Task
    started_at: float = field(default_factory=time.monotonic)
    agent_id: str | None = None
    mode: ExecutionMode | None = None
    adapter: AgentAdapter | None = None
    attempt: asyncio.Task | None = None
    cancelled: bool = False
    finished: bool = False
    result: ExecutionResult | None = None

    @property
    def output(self) -> str:
        return self.adapter.output if self.adapter is not None else ""

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


class TaskExecutor:
    """Runs one task at a time against a selected agent adapter.

    Every ``execute`` call emits ``started`` first and exactly one of
    ``completed``, ``failed`` or ``cancelled`` last; nothing is emitted
    for that task afterwards. ``execute`` reports failures through the
    returned :class:`ExecutionResult` rather than raising.

    A streaming attempt that fails at the protocol layer is retried once
    in batch mode when ``execution.fallback_to_batch`` is set. Errors from
    the agent's own work are never retried.
    """

    def __init__(
        self,
        config: TalosConfig | None = None,
        *,
        agent_id: str | None = None,
        on_event: EventHandler | None = None,
        auto_approve: AutoApproveQuery | None = None,
        record_decision: DecisionRecorder | None = None,
        slot: ExecutionSlot | None = None,
        registry: Type[AgentRegistry] = AgentRegistry,
    ) -> None:
        self.config = config or TalosConfig.default()
        self._agent_id = agent_id
        self._on_event = on_event or discard_event
        self._auto_approve = auto_approve
        self._record_decision = record_decision
        self._slot = slot or ExecutionSlot()
        self._registry = registry
        self._state = ExecutorState.IDLE
        self._transitions: list[ExecutorState] = []
        self._run: _Run | None = None

    @property
    def state(self) -> ExecutorState:
        return self._state

    @property
    def transitions(self) -> list[ExecutorState]:
        """States entered so far, oldest first."""
        return list(self._transitions)

    @property
    def running(self) -> bool:
        return self._run is not None

    async def execute(
        self,
        task: Task,
        permission_handler: PermissionHandler | None = None,
    ) -> ExecutionResult:
        """Execute ``task`` and return its terminal result.

        Args:
            task: What to run.
            permission_handler: Consulted for tool requests no configured
                rule decides. Without one such requests are denied.

        Raises:
            ExecutorBusyError: another task holds the execution slot.
        """
        with self._slot.acquire(task):
            run = _Run(task=task)
            self._run = run
            try:
                return await self._execute(run, permission_handler)
            finally:
                self._run = None
                self._set_state(ExecutorState.IDLE)

    async def stop(self) -> None:
        """Cancel the running task, if any.

        The task ends with a ``cancelled`` result carrying the output
        produced so far. Calling this more than once is harmless.
        """
        run = self._run
        if run is None or run.finished:
            return

        run.cancelled = True
        result = ExecutionResult(
            exit_code=-1,
            output=run.output,
            agent=run.agent_id or "unknown",
            error=CANCELLED_MESSAGE,
            mode=run.mode,
        )
        self._set_state(ExecutorState.CANCELLED)
        self._finish(run, EventKind.CANCELLED, result)

        adapter = run.adapter
        if adapter is not None:
            try:
                await adapter.stop()
            except Exception as e:
                logger.warning("Failed to stop %s cleanly: %s", run.agent_id, e)

        attempt = run.attempt
        if attempt is not None and not attempt.done():
            attempt.cancel()

    # --- internals ---------------------------------------------------------

    async def _execute(
        self,
        run: _Run,
        permission_handler: PermissionHandler | None,
    ) -> ExecutionResult:
        self._emit(run, AgentEvent(EventKind.STARTED, {"task": run.task}))
        self._set_state(ExecutorState.SELECTING)

        try:
            agent_id = await self._select_agent()
        except TalosError as e:
            if run.cancelled:
                return run.result
            return self._fail(run, e)
        run.agent_id = agent_id
        if run.cancelled:
            return run.result

        settings = self.config.settings_for(agent_id)
        mode = self._select_mode(run, agent_id, settings)
        self._emit(run, AgentEvent.info(f"Using {agent_id} in {mode.value} mode"))

        policy = PermissionPolicy(
            settings.permissions,
            auto_approve=self._auto_approve,
            record_decision=self._record_decision,
            timeout=settings.timeouts.permission,
            on_event=lambda event: self._emit(run, event),
        )
        handler = policy.handler_for(permission_handler)

        try:
            try:
                result = await self._attempt(run, agent_id, settings, mode, handler)
            except TalosError as e:
                if run.cancelled or not self._should_fall_back(mode, settings, e):
                    raise
                logger.warning("Streaming attempt with %s failed: %s", agent_id, e)
                self._set_state(ExecutorState.FALLING_BACK)
                self._emit(run, AgentEvent.info(f"Streaming failed ({e}); falling back to batch mode"))
                result = await self._attempt(run, agent_id, settings, ExecutionMode.BATCH, handler)
        except TalosError as e:
            if run.cancelled:
                return run.result
            return self._fail(run, e)
        except asyncio.CancelledError:
            if run.cancelled:
                return run.result
            raise

        if run.cancelled:
            return run.result
        self._set_state(ExecutorState.COMPLETED)
        self._finish(run, EventKind.COMPLETED, result)
        return result

    async def _select_agent(self) -> str:
        if self._agent_id is None:
            return await self._registry.resolve(self.config)
        if self._registry.get_class(self._agent_id) is None:
            raise UnknownAgentError(f"Unknown agent: {self._agent_id}")
        return self._agent_id

    def _select_mode(self, run: _Run, agent_id: str, settings: AgentSettings) -> ExecutionMode:
        mode = ExecutionMode(settings.execution.mode)
        agent_class = self._registry.get_class(agent_id)
        if mode is ExecutionMode.STREAMING and not agent_class.capabilities.streaming:
            self._emit(
                run, AgentEvent.info(f"{agent_id} has no streaming support; using batch mode")
            )
            mode = ExecutionMode.BATCH
        return mode

    async def _attempt(
        self,
        run: _Run,
        agent_id: str,
        settings: AgentSettings,
        mode: ExecutionMode,
        handler: PermissionHandler,
    ) -> ExecutionResult:
        if run.cancelled:
            return run.result

        # Fresh adapter per attempt; no process state leaks into the retry
        adapter = self._registry.create(agent_id, settings, on_event=lambda event: self._emit(run, event))
        run.adapter = adapter
        run.mode = mode
        self._set_state(ExecutorState.RUNNING)

        run.attempt = asyncio.create_task(
            adapter.execute(run.task, ExecuteOptions(mode=mode, permission_handler=handler))
        )
        try:
            return await run.attempt
        finally:
            run.attempt = None

    @staticmethod
    def _should_fall_back(mode: ExecutionMode, settings: AgentSettings, error: TalosError) -> bool:
        return (
            mode is ExecutionMode.STREAMING
            and settings.execution.fallback_to_batch
            and isinstance(error, ProtocolError)
        )

    def _fail(self, run: _Run, error: TalosError) -> ExecutionResult:
        result = error.result
        if result is None:
            result = ExecutionResult(
                exit_code=getattr(error, "exit_code", 1),
                output=run.output,
                agent=run.agent_id or "unknown",
                error=str(error),
                mode=run.mode,
            )
        elif result.error is None:
            result.error = str(error)

        logger.error("Task failed: %s", result.error)
        self._set_state(ExecutorState.FAILED)
        self._finish(run, EventKind.FAILED, result, error=result.error)
        return result

    def _finish(self, run: _Run, kind: EventKind, result: ExecutionResult, **extra: Any) -> None:
        """Emit the single terminal event and close emission for ``run``."""
        if run.finished:
            return
        result.duration_ms = run.elapsed_ms()
        run.result = result
        self._deliver(AgentEvent(kind, {"result": result, **extra}))
        run.finished = True

    def _emit(self, run: _Run, event: AgentEvent) -> None:
        if run.finished or self._run is not run:
            logger.debug("Dropping %s event after task end", event.kind.value)
            return
        self._deliver(event)

    def _deliver(self, event: AgentEvent) -> None:
        try:
            self._on_event(event)
        except Exception:
            logger.exception("Event handler failed on %s event", event.kind.value)

    def _set_state(self, state: ExecutorState) -> None:
        if state is self._state and state is ExecutorState.IDLE:
            return
        logger.debug("Executor state: %s -> %s", self._state.value, state.value)
        self._state = state
        self._transitions.append(state)
