"""Progress events emitted while a task executes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class EventKind(str, Enum):
    """Kinds of events delivered to the caller of an execution."""

    STARTED = "started"
    CHUNK = "chunk"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    PERMISSION = "permission"
    STDERR = "stderr"
    INFO = "info"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    # Protocol-level events, surfaced rather than dropped
    MESSAGE_START = "message_start"
    MESSAGE_END = "message_end"
    UPDATE = "update"
    NOTIFICATION = "notification"
    PARSE_ERROR = "parse_error"
    INITIALIZED = "initialized"
    SESSION = "session"
    EXIT = "exit"


TERMINAL_KINDS = frozenset({EventKind.COMPLETED, EventKind.FAILED, EventKind.CANCELLED})


@dataclass(frozen=True)
class AgentEvent:
    """One tagged event. ``data`` holds the kind-specific payload."""

    kind: EventKind
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Text payload for chunk/stderr events, message for info events."""
        return str(self.data.get("text") or self.data.get("message") or "")

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    @classmethod
    def chunk(cls, text: str) -> "AgentEvent":
        return cls(EventKind.CHUNK, {"text": text})

    @classmethod
    def stderr(cls, text: str) -> "AgentEvent":
        return cls(EventKind.STDERR, {"text": text})

    @classmethod
    def info(cls, message: str) -> "AgentEvent":
        return cls(EventKind.INFO, {"message": message})


EventHandler = Callable[[AgentEvent], None]


def discard_event(event: AgentEvent) -> None:
    """Default event handler."""
