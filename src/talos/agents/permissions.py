"""Permission request/decision types shared by the protocol client and executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Union

PermissionOutcome = Literal["approved", "cancelled"]


@dataclass(frozen=True)
class PermissionRequest:
    """A backend-initiated question: may this tool run?"""

    tool: str
    args: Any = None
    description: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_params(cls, params: dict[str, Any] | None) -> "PermissionRequest":
        """Build a request from ``requestPermission`` params.

        Accepts both the flat ``{tool, args, description}`` shape and the
        ``toolCall`` object used by newer protocol revisions.
        """
        params = params or {}
        tool_call = params.get("toolCall") or {}
        tool = params.get("tool") or tool_call.get("title") or tool_call.get("kind") or "unknown"
        args = params.get("args", tool_call.get("rawInput"))
        return cls(
            tool=str(tool),
            args=args,
            description=params.get("description"),
            raw=dict(params),
        )


@dataclass(frozen=True)
class PermissionDecision:
    """Answer sent back to the backend."""

    outcome: PermissionOutcome

    @property
    def approved(self) -> bool:
        return self.outcome == "approved"

    @classmethod
    def approve(cls) -> "PermissionDecision":
        return cls("approved")

    @classmethod
    def cancel(cls) -> "PermissionDecision":
        return cls("cancelled")

    @classmethod
    def from_bool(cls, approved: bool) -> "PermissionDecision":
        return cls.approve() if approved else cls.cancel()

    def to_result(self) -> dict[str, str]:
        """JSON-RPC result payload for the permission response."""
        return {"outcome": self.outcome}


PermissionHandler = Callable[
    [PermissionRequest],
    Union[Awaitable[PermissionDecision], PermissionDecision],
]


async def deny_all(request: PermissionRequest) -> PermissionDecision:
    """Permission handler used when the caller supplies none."""
    return PermissionDecision.cancel()
