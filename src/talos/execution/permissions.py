"""Permission decision policy applied to backend tool requests."""

from __future__ import annotations

import asyncio
import inspect
import logging
from fnmatch import fnmatchcase
from typing import Callable, Iterable

from talos.agents.events import AgentEvent, EventHandler, EventKind, discard_event
from talos.agents.permissions import PermissionDecision, PermissionHandler, PermissionRequest
from talos.config.schema import PermissionsConfig

logger = logging.getLogger(__name__)

DEFAULT_PERMISSION_TIMEOUT = 30.0

AutoApproveQuery = Callable[[str], bool]
DecisionRecorder = Callable[[str, bool], None]

_GLOB_CHARS = frozenset("*?[")


def tool_matches(tool: str, pattern: str) -> bool:
    """Glob match when the pattern has wildcards, substring match otherwise."""
    if _GLOB_CHARS.intersection(pattern):
        return fnmatchcase(tool, pattern)
    return pattern in tool


def matches_any(tool: str, patterns: Iterable[str]) -> bool:
    return any(tool_matches(tool, pattern) for pattern in patterns)


class PermissionPolicy:
    """Decides permission requests; first matching rule wins.

    1. ``allow_all_tools`` approves everything.
    2. An allow pattern matching the tool approves.
    3. A deny pattern matching the tool cancels.
    4. The learned auto-approve query approves.
    5. The interactive handler decides; if it does not answer within
       ``timeout`` seconds the configured default applies.
    """

    def __init__(
        self,
        permissions: PermissionsConfig,
        *,
        auto_approve: AutoApproveQuery | None = None,
        record_decision: DecisionRecorder | None = None,
        timeout: float = DEFAULT_PERMISSION_TIMEOUT,
        on_event: EventHandler | None = None,
    ) -> None:
        self.permissions = permissions
        self.timeout = timeout
        self._auto_approve = auto_approve
        self._record_decision = record_decision
        self._on_event = on_event or discard_event

    @property
    def default_decision(self) -> PermissionDecision:
        """Applied when the interactive handler does not answer in time."""
        return PermissionDecision.from_bool(self.permissions.allow_all_tools)

    async def decide(
        self,
        request: PermissionRequest,
        interactive: PermissionHandler | None = None,
    ) -> PermissionDecision:
        tool = request.tool

        if self.permissions.allow_all_tools:
            return self._record(tool, PermissionDecision.approve(), "allow_all_tools")
        if matches_any(tool, self.permissions.allow_tools):
            return self._record(tool, PermissionDecision.approve(), "allow list")
        if matches_any(tool, self.permissions.deny_tools):
            return self._record(tool, PermissionDecision.cancel(), "deny list")
        if self._learned_approval(tool):
            self._on_event(AgentEvent.info(f"Auto-approved {tool} (learned pattern)"))
            return self._record(tool, PermissionDecision.approve(), "learned pattern")

        if interactive is None:
            return self._record(tool, PermissionDecision.cancel(), "no handler")

        self._on_event(
            AgentEvent(
                EventKind.PERMISSION,
                {"tool": tool, "args": request.args, "description": request.description},
            )
        )
        try:
            decision = await asyncio.wait_for(self._ask(interactive, request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("No permission decision for %s within %gs", tool, self.timeout)
            return self._record(tool, self.default_decision, "timeout default")
        except Exception as e:
            logger.warning("Permission handler failed for %s: %s", tool, e)
            return self._record(tool, PermissionDecision.cancel(), "handler error")
        return self._record(tool, decision, "interactive")

    def handler_for(self, interactive: PermissionHandler | None) -> PermissionHandler:
        """Permission handler that applies this policy before ``interactive``."""

        async def handle(request: PermissionRequest) -> PermissionDecision:
            return await self.decide(request, interactive)

        return handle

    @staticmethod
    async def _ask(handler: PermissionHandler, request: PermissionRequest) -> PermissionDecision:
        answer = handler(request)
        if inspect.isawaitable(answer):
            answer = await answer
        if isinstance(answer, bool):
            return PermissionDecision.from_bool(answer)
        if not isinstance(answer, PermissionDecision):
            raise TypeError(f"Permission handler returned {answer!r}")
        return answer

    def _learned_approval(self, tool: str) -> bool:
        if self._auto_approve is None:
            return False
        try:
            return bool(self._auto_approve(tool))
        except Exception as e:
            logger.warning("Auto-approve lookup failed for %s: %s", tool, e)
            return False

    def _record(self, tool: str, decision: PermissionDecision, reason: str) -> PermissionDecision:
        logger.info("Permission for %s: %s (%s)", tool, decision.outcome, reason)
        if self._record_decision is not None:
            try:
                self._record_decision(tool, decision.approved)
            except Exception as e:
                logger.warning("Failed to record tool decision for %s: %s", tool, e)
        return decision
