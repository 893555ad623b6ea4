"""Tests for PermissionPolicy rule ordering and timeouts."""
import asyncio

import pytest

from talos.agents.events import EventKind
from talos.agents.permissions import PermissionDecision, PermissionRequest
from talos.config.schema import PermissionsConfig
from talos.execution.permissions import PermissionPolicy, tool_matches

SHELL = PermissionRequest(tool="shell(git status)", args={"command": "git status"})


def test_tool_matching():
    assert tool_matches("shell(git status)", "shell")
    assert tool_matches("shell(git status)", "shell(git*")
    assert not tool_matches("shell(git status)", "write")
    assert not tool_matches("write", "shell*")


@pytest.mark.asyncio
async def test_allow_all_tools_wins():
    policy = PermissionPolicy(PermissionsConfig(allow_all_tools=True, deny_tools=("shell",)))
    decision = await policy.decide(SHELL)
    assert decision.approved is True


@pytest.mark.asyncio
async def test_allow_pattern_checked_before_deny():
    policy = PermissionPolicy(PermissionsConfig(allow_tools=("shell(git*",), deny_tools=("shell",)))
    assert (await policy.decide(SHELL)).approved is True


@pytest.mark.asyncio
async def test_deny_pattern_cancels_without_asking():
    asked = []
    policy = PermissionPolicy(PermissionsConfig(deny_tools=("shell",)))
    decision = await policy.decide(SHELL, lambda request: asked.append(request) or True)
    assert decision.outcome == "cancelled"
    assert asked == []


@pytest.mark.asyncio
async def test_no_handler_denies():
    policy = PermissionPolicy(PermissionsConfig())
    assert (await policy.decide(SHELL)).approved is False


@pytest.mark.asyncio
async def test_interactive_handler_receives_request_and_event():
    events = []

    async def approve(request):
        return PermissionDecision.approve()

    policy = PermissionPolicy(PermissionsConfig(), on_event=events.append)
    decision = await policy.decide(SHELL, approve)

    assert decision.approved is True
    assert events[0].kind is EventKind.PERMISSION
    assert events[0].data["tool"] == "shell(git status)"


@pytest.mark.asyncio
async def test_handler_timeout_applies_default(caplog):
    async def never(request):
        await asyncio.sleep(10)

    policy = PermissionPolicy(PermissionsConfig(), timeout=0.1)
    decision = await policy.decide(SHELL, never)
    assert decision.outcome == "cancelled"
    assert "within 0.1s" in caplog.text


@pytest.mark.asyncio
async def test_failing_handler_denies():
    def broken(request):
        raise RuntimeError("boom")

    policy = PermissionPolicy(PermissionsConfig())
    assert (await policy.decide(SHELL, broken)).approved is False


@pytest.mark.asyncio
async def test_invalid_handler_answer_denies():
    policy = PermissionPolicy(PermissionsConfig())
    assert (await policy.decide(SHELL, lambda request: "sure")).approved is False


@pytest.mark.asyncio
async def test_learned_approval_skips_handler():
    events = []
    policy = PermissionPolicy(
        PermissionsConfig(),
        auto_approve=lambda tool: tool.startswith("shell"),
        on_event=events.append,
    )

    decision = await policy.decide(SHELL, lambda request: False)

    assert decision.approved is True
    assert [e.kind for e in events] == [EventKind.INFO]
    assert "learned pattern" in events[0].text


@pytest.mark.asyncio
async def test_recording_failures_do_not_change_decision():
    def broken_recorder(tool, approved):
        raise OSError("disk full")

    policy = PermissionPolicy(PermissionsConfig(allow_tools=("shell",)), record_decision=broken_recorder)
    assert (await policy.decide(SHELL)).approved is True


@pytest.mark.asyncio
async def test_handler_for_wraps_interactive_handler():
    policy = PermissionPolicy(PermissionsConfig())
    handler = policy.handler_for(lambda request: True)
    assert (await handler(SHELL)).approved is True


@pytest.mark.asyncio
async def test_allow_and_deny_lists_with_interactive_fallthrough():
    asked = []

    def handler(request):
        asked.append(request.tool)
        return True

    policy = PermissionPolicy(
        PermissionsConfig(allow_all_tools=False, allow_tools=("shell(git)",), deny_tools=("shell(rm)",))
    )

    git = await policy.decide(PermissionRequest(tool="shell(git) status"), handler)
    rm = await policy.decide(PermissionRequest(tool="shell(rm) -rf"), handler)
    curl = await policy.decide(PermissionRequest(tool="shell(curl)"), handler)

    assert git.outcome == "approved"
    assert rm.outcome == "cancelled"
    assert curl.outcome == "approved"
    assert asked == ["shell(curl)"]
