"""Configuration management."""

from talos.config.manager import ConfigManager
from talos.config.schema import AgentSettings, TalosConfig

__all__ = ["AgentSettings", "ConfigManager", "TalosConfig"]
