"""Tests for the copilot adapter's streaming path."""
import pytest

from talos.agents.events import EventKind
from talos.agents.protocol import ExecuteOptions, ExecutionMode, Task
from talos.config.schema import AgentSettings, TimeoutConfig
from talos.errors import ApplicationError, HandshakeError, ProtocolDisconnected

STREAMING = ExecuteOptions(mode=ExecutionMode.STREAMING)


def make(fake_copilot, scenario, events=None, **kwargs):
    agent_class = fake_copilot(scenario)
    settings = AgentSettings(agent_id=agent_class.agent_id, **kwargs)
    return agent_class(settings, events.append if events is not None else None)


@pytest.mark.asyncio
async def test_streaming_result_matches_chunks(fake_copilot, tmp_path):
    events = []
    agent = make(fake_copilot, "normal", events)

    result = await agent.execute(Task(prompt="hello", working_dir=tmp_path), STREAMING)

    assert result.success is True
    assert result.mode is ExecutionMode.STREAMING
    assert result.stop_reason == "end_turn"
    assert result.output == "Hello, you said: hello"
    assert "".join(e.text for e in events if e.kind is EventKind.CHUNK) == result.output
    # Lifecycle events stay inside the adapter
    assert not any(e.kind in (EventKind.INITIALIZED, EventKind.SESSION, EventKind.EXIT) for e in events)


@pytest.mark.asyncio
async def test_crash_mid_prompt_keeps_partial_output(fake_copilot, tmp_path):
    agent = make(fake_copilot, "crash")

    with pytest.raises(ProtocolDisconnected) as exc_info:
        await agent.execute(Task(prompt="hello", working_dir=tmp_path), STREAMING)

    result = exc_info.value.result
    assert result.output == "partial"
    assert result.exit_code == 1
    assert result.mode is ExecutionMode.STREAMING


@pytest.mark.asyncio
async def test_handshake_error(fake_copilot, tmp_path):
    agent = make(fake_copilot, "handshake_error")
    with pytest.raises(HandshakeError):
        await agent.execute(Task(prompt="hello", working_dir=tmp_path), STREAMING)


@pytest.mark.asyncio
async def test_refusal_is_application_error(fake_copilot, tmp_path):
    agent = make(fake_copilot, "refusal")
    with pytest.raises(ApplicationError, match="refusal"):
        await agent.execute(Task(prompt="hello", working_dir=tmp_path), STREAMING)


@pytest.mark.asyncio
async def test_session_timeout_is_handshake_error(fake_copilot, tmp_path):
    agent = make(fake_copilot, "late", timeouts=TimeoutConfig(request=0.2))
    with pytest.raises(HandshakeError, match="session setup"):
        await agent.execute(Task(prompt="hello", working_dir=tmp_path), STREAMING)


@pytest.mark.asyncio
async def test_tool_events_are_forwarded(fake_copilot, tmp_path):
    events = []
    agent = make(fake_copilot, "updates", events)

    await agent.execute(Task(prompt="hello", working_dir=tmp_path), STREAMING)

    kinds = {e.kind for e in events}
    assert EventKind.TOOL_USE in kinds
    assert EventKind.TOOL_RESULT in kinds
