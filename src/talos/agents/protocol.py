"""Agent adapter protocol - interface for all coding-agent backends."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from talos.agents.permissions import PermissionHandler

if TYPE_CHECKING:
    from talos.config.schema import AgentSettings


class ExecutionMode(Enum):
    """How a task is driven through the backend."""

    STREAMING = "streaming"
    BATCH = "batch"


@dataclass(frozen=True)
class Task:
    """Immutable input to one execution. Owned by the caller."""

    prompt: str
    working_dir: str | Path | None = None
    type: str | None = None
    title: str | None = None
    id: str | None = None

    def resolve_working_dir(self) -> Path:
        """Directory the backend runs in (cwd when unset)."""
        return Path(self.working_dir) if self.working_dir else Path(os.getcwd())


@dataclass(frozen=True)
class AgentCapabilities:
    """Declares what an agent backend can do.

    ``streaming`` may only be set by adapters that keep a bidirectional
    channel open with the backend for the whole task.
    """

    streaming: bool = False
    interactive: bool = False
    session_resume: bool = False
    plan_mode: bool = False
    tools: frozenset[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "streaming": self.streaming,
            "interactive": self.interactive,
            "sessionResume": self.session_resume,
            "planMode": self.plan_mode,
            "tools": sorted(self.tools),
        }


@dataclass
class ExecutionResult:
    """Terminal, normalized result of one execution attempt."""

    exit_code: int
    output: str
    agent: str
    duration_ms: int = 0
    error: str | None = None
    stop_reason: str | None = None
    mode: ExecutionMode | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and self.error is None

    @property
    def is_error(self) -> bool:
        """Check if this result represents an error."""
        return not self.success

    def to_dict(self) -> dict[str, Any]:
        """Serializable form, keyed the way task records store results."""
        data: dict[str, Any] = {
            "exitCode": self.exit_code,
            "output": self.output,
            "durationMs": self.duration_ms,
            "agent": self.agent,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.stop_reason is not None:
            data["stopReason"] = self.stop_reason
        if self.mode is not None:
            data["mode"] = self.mode.value
        return data


@dataclass(frozen=True)
class ExecuteOptions:
    """Per-call options for :meth:`AgentAdapter.execute`."""

    mode: ExecutionMode | None = None
    permission_handler: PermissionHandler | None = None


class AgentAdapter(ABC):
    """Abstract interface for all coding-agent adapters.

    Implement this protocol to add support for a new agent CLI. Capability
    metadata and availability probing are class-level; one instance drives
    at most one task.
    """

    agent_id: ClassVar[str]
    display_name: ClassVar[str]
    capabilities: ClassVar[AgentCapabilities] = AgentCapabilities()

    @classmethod
    @abstractmethod
    async def is_available(cls, settings: "AgentSettings | None" = None) -> bool:
        """Check if the agent CLI is installed. Never raises."""
        ...

    @classmethod
    @abstractmethod
    async def get_version(cls, settings: "AgentSettings | None" = None) -> str:
        """Return the CLI version string, or ``"unknown"``."""
        ...

    @abstractmethod
    def build_args(self, task: Task) -> list[str]:
        """Translate the adapter settings and task into CLI arguments.

        Args:
            task: The task about to run.

        Returns:
            Ordered argument list, not including the executable.
        """
        ...

    @abstractmethod
    async def execute(
        self,
        task: Task,
        options: ExecuteOptions | None = None,
    ) -> ExecutionResult:
        """Execute a task and return its result.

        Args:
            task: The task to execute.
            options: Execution mode and permission handler.

        Returns:
            ExecutionResult with exit code 0.

        Raises:
            TalosError: on any failure; ``error.result`` holds partial output.
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Terminate any owned process. Safe to call repeatedly."""
        ...

    @property
    @abstractmethod
    def output(self) -> str:
        """Output accumulated so far by the current execution."""
        ...
