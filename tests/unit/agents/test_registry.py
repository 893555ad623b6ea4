"""Tests for AgentRegistry."""
import pytest

from talos.agents.claude import ClaudeCodeAgent
from talos.agents.registry import AgentRegistry
from talos.config.schema import AgentSelectionConfig, BackendConfig, TalosConfig
from talos.errors import NoAgentAvailableError, UnknownAgentError


def test_builtin_agents_registered():
    assert AgentRegistry.agent_ids()[:4] == ["copilot", "claude-code", "codex", "gemini"]


def test_create_returns_fresh_instances():
    first = AgentRegistry.create("claude-code")
    second = AgentRegistry.create("claude-code")
    assert isinstance(first, ClaudeCodeAgent)
    assert first is not second


def test_create_unknown_agent():
    with pytest.raises(UnknownAgentError, match="Available: copilot"):
        AgentRegistry.create("nope")


def test_register_rejects_non_adapters():
    with pytest.raises(TypeError):
        AgentRegistry.register(object)


def test_info():
    info = AgentRegistry.info("copilot")
    assert info["name"] == "GitHub Copilot CLI"
    assert info["capabilities"]["streaming"] is True
    assert AgentRegistry.info("nope") is None


@pytest.mark.asyncio
async def test_detect_available_reports_every_agent(fake_copilot):
    fake_copilot("normal")
    config = TalosConfig.default().model_copy(
        update={"backends": {"codex": BackendConfig(command="talos-no-such-binary-xyz")}}
    )

    agents = {a["id"]: a for a in await AgentRegistry.detect_available(config)}

    assert agents["fake-normal"]["available"] is True
    assert agents["fake-normal"]["version"].startswith("Python")
    assert set(agents) >= {"copilot", "claude-code", "codex", "gemini"}
    assert agents["copilot"]["capabilities"]["streaming"] is True


@pytest.mark.asyncio
async def test_default_agent_follows_preference(fake_copilot):
    fake_copilot("normal")
    assert await AgentRegistry.default_agent(["missing", "fake-normal"]) == "fake-normal"
    assert await AgentRegistry.default_agent(["missing"]) is None


@pytest.mark.asyncio
async def test_resolve_explicit_agent():
    config = TalosConfig(agent=AgentSelectionConfig(type="gemini"))
    assert await AgentRegistry.resolve(config) == "gemini"

    with pytest.raises(UnknownAgentError):
        await AgentRegistry.resolve(TalosConfig(agent=AgentSelectionConfig(type="nope")))


@pytest.mark.asyncio
async def test_resolve_auto_without_agents():
    config = TalosConfig(agent=AgentSelectionConfig(preferred=["missing"]))
    with pytest.raises(NoAgentAvailableError):
        await AgentRegistry.resolve(config)


def test_reload_drops_manual_registrations(fake_copilot):
    fake_copilot("normal")
    assert "fake-normal" in AgentRegistry.agent_ids()
    AgentRegistry.reload()
    assert "fake-normal" not in AgentRegistry.agent_ids()


@pytest.mark.asyncio
async def test_empty_preference_selects_nothing(fake_copilot):
    fake_copilot("normal")
    assert await AgentRegistry.default_agent([]) is None

    with pytest.raises(NoAgentAvailableError):
        await AgentRegistry.resolve(TalosConfig(agent=AgentSelectionConfig(preferred=[])))
