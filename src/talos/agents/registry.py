"""Agent registry for discovering and creating agent adapters."""

from __future__ import annotations

import logging
from importlib.metadata import entry_points
from typing import Any, Iterable, Type

from talos.agents.events import EventHandler
from talos.agents.protocol import AgentAdapter
from talos.config.schema import AgentSettings, TalosConfig
from talos.errors import NoAgentAvailableError, UnknownAgentError

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "talos.agents"
DEFAULT_PREFERENCE = ("copilot", "claude-code")


class AgentRegistry:
    """Maps agent identifiers to adapter classes.

    Adapters are discovered from:
    1. Built-in adapters (copilot, claude-code, codex, gemini)
    2. Entry points in the ``talos.agents`` group (third-party packages)
    """

    _agent_classes: dict[str, Type[AgentAdapter]] = {}
    _initialized: bool = False

    @classmethod
    def initialize(cls) -> None:
        """Initialize the registry by discovering all adapters."""
        if cls._initialized:
            return

        cls._agent_classes.clear()
        cls._load_builtin_agents()
        cls._load_entrypoint_agents()
        cls._initialized = True

    @classmethod
    def _load_builtin_agents(cls) -> None:
        from talos.agents.claude import ClaudeCodeAgent
        from talos.agents.codex import CodexAgent
        from talos.agents.copilot import CopilotAgent
        from talos.agents.gemini import GeminiAgent

        for agent_class in (CopilotAgent, ClaudeCodeAgent, CodexAgent, GeminiAgent):
            cls._register_class(agent_class)

    @classmethod
    def _load_entrypoint_agents(cls) -> None:
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                agent_class = ep.load()
                cls._register_class(agent_class)
            except Exception as e:
                # Log but don't fail on bad plugins
                logger.warning("Failed to load agent plugin %s: %s", ep.name, e)

    @classmethod
    def _register_class(cls, agent_class: Type[AgentAdapter]) -> None:
        if not (isinstance(agent_class, type) and issubclass(agent_class, AgentAdapter)):
            raise TypeError(f"{agent_class!r} is not an AgentAdapter subclass")
        cls._agent_classes[agent_class.agent_id] = agent_class

    @classmethod
    def _ensure_initialized(cls) -> None:
        if not cls._initialized:
            cls.initialize()

    @classmethod
    def register(cls, agent_class: Type[AgentAdapter]) -> None:
        """Manually register an adapter class.

        Useful for testing or programmatic registration.
        """
        cls._ensure_initialized()
        cls._register_class(agent_class)

    @classmethod
    def reload(cls) -> None:
        """Force rediscovery of all adapters."""
        cls._initialized = False
        cls.initialize()

    @classmethod
    def agent_ids(cls) -> list[str]:
        """Identifiers of all registered adapters."""
        cls._ensure_initialized()
        return list(cls._agent_classes)

    @classmethod
    def get_class(cls, agent_id: str) -> Type[AgentAdapter] | None:
        cls._ensure_initialized()
        return cls._agent_classes.get(agent_id)

    @classmethod
    def create(
        cls,
        agent_id: str,
        settings: AgentSettings | None = None,
        on_event: EventHandler | None = None,
    ) -> AgentAdapter:
        """Instantiate the adapter registered under ``agent_id``."""
        agent_class = cls.get_class(agent_id)
        if agent_class is None:
            raise UnknownAgentError(
                f"Unknown agent: {agent_id}. Available: {', '.join(cls.agent_ids())}"
            )
        return agent_class(settings or AgentSettings(agent_id=agent_id), on_event)

    @classmethod
    def info(cls, agent_id: str) -> dict[str, Any] | None:
        """Static metadata for one adapter."""
        agent_class = cls.get_class(agent_id)
        if agent_class is None:
            return None
        return {
            "id": agent_class.agent_id,
            "name": agent_class.display_name,
            "capabilities": agent_class.capabilities.to_dict(),
        }

    @classmethod
    async def detect_available(cls, config: TalosConfig | None = None) -> list[dict[str, Any]]:
        """Probe every registered adapter.

        Returns:
            One dict per adapter with id, name, available, version, capabilities.
        """
        results = []
        for agent_id, agent_class in list(cls._items()):
            settings = config.settings_for(agent_id) if config else None
            available = await agent_class.is_available(settings)
            version = await agent_class.get_version(settings) if available else None
            results.append(
                {
                    "id": agent_id,
                    "name": agent_class.display_name,
                    "available": available,
                    "version": version,
                    "capabilities": agent_class.capabilities.to_dict(),
                }
            )
        return results

    @classmethod
    async def default_agent(
        cls,
        preferred: Iterable[str] | None = None,
        config: TalosConfig | None = None,
    ) -> str | None:
        """First available agent in preference order, or None if none is."""
        for agent_id in DEFAULT_PREFERENCE if preferred is None else preferred:
            agent_class = cls.get_class(agent_id)
            if agent_class is None:
                logger.debug("Preferred agent %s is not registered", agent_id)
                continue
            settings = config.settings_for(agent_id) if config else None
            if await agent_class.is_available(settings):
                return agent_id
        return None

    @classmethod
    async def resolve(cls, config: TalosConfig) -> str:
        """Agent id to use for a task under ``config``.

        Raises:
            UnknownAgentError: a specific agent is configured but not registered.
            NoAgentAvailableError: "auto" selection found nothing installed.
        """
        selected = config.agent.type
        if selected != "auto":
            if cls.get_class(selected) is None:
                raise UnknownAgentError(f"Unknown agent: {selected}")
            return selected

        agent_id = await cls.default_agent(config.agent.preferred, config)
        if agent_id is None:
            raise NoAgentAvailableError(
                "No coding agent available. Install one of: " + ", ".join(config.agent.preferred)
            )
        return agent_id

    @classmethod
    def _items(cls) -> Iterable[tuple[str, Type[AgentAdapter]]]:
        cls._ensure_initialized()
        return cls._agent_classes.items()
