"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

from talos.agents.copilot import CopilotAgent
from talos.agents.protocol import Task
from talos.agents.registry import AgentRegistry
from talos.config.manager import ConfigManager
from talos.output import formatter

FAKE_AGENT = str(Path(__file__).parent / "fixtures" / "fake_acp_agent.py")


@pytest.fixture(autouse=True)
def reset_registry():
    """Reset the agent registry before each test."""
    AgentRegistry._initialized = False
    AgentRegistry._agent_classes.clear()
    yield


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the real user config."""
    monkeypatch.setenv("TALOS_CONFIG_DIR", str(tmp_path / "config"))
    ConfigManager._config = None
    formatter.reset_formatter()
    yield
    ConfigManager._config = None
    formatter.reset_formatter()


@pytest.fixture
def fake_agent():
    """Path to the scriptable fake agent."""
    return FAKE_AGENT


@pytest.fixture
def fake_copilot():
    """Factory for registered copilot adapters backed by the fake agent.

    Streaming runs the given protocol scenario; batch mode runs the
    fake agent's ``batch`` mode with the prompt as argument.
    """

    def make(scenario: str = "normal", batch_mode: str = "batch") -> type:
        class FakeCopilotAgent(CopilotAgent):
            agent_id = f"fake-{scenario}"
            display_name = f"Fake agent ({scenario})"
            default_command = sys.executable
            protocol_args = (FAKE_AGENT, scenario)

            def build_args(self, task: Task) -> list[str]:
                return [FAKE_AGENT, batch_mode, task.prompt]

        AgentRegistry.register(FakeCopilotAgent)
        return FakeCopilotAgent

    return make
