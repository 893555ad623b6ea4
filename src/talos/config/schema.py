"""Configuration schema using Pydantic."""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Legacy names for execution modes
_MODE_ALIASES = {"acp": "streaming", "prompt": "batch"}


class PermissionsConfig(BaseModel):
    """Tool, path and URL permissions applied to every backend."""

    allow_all_tools: bool = False
    allow_all_paths: bool = False
    allow_all_urls: bool = False
    allow_tools: tuple[str, ...] = ()
    deny_tools: tuple[str, ...] = ()
    allow_urls: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)


class ExecutionConfig(BaseModel):
    """Streaming vs. batch execution."""

    mode: Literal["streaming", "batch"] = "streaming"
    fallback_to_batch: bool = True

    model_config = ConfigDict(frozen=True)

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: object) -> object:
        if isinstance(value, str):
            return _MODE_ALIASES.get(value.lower(), value.lower())
        return value


class TimeoutConfig(BaseModel):
    """Timers bounding protocol round-trips, shutdown and permission waits (seconds)."""

    request: float = Field(default=60.0, gt=0)
    prompt: float | None = Field(default=None, gt=0)  # None: same as request
    shutdown_grace: float = Field(default=2.0, ge=0)
    permission: float = Field(default=30.0, gt=0)
    probe: float = Field(default=5.0, gt=0)

    model_config = ConfigDict(frozen=True)

    @property
    def prompt_timeout(self) -> float:
        return self.prompt if self.prompt is not None else self.request


class AgentSelectionConfig(BaseModel):
    """Which backend runs tasks."""

    type: str = "auto"  # "auto" picks the first available from `preferred`
    preferred: list[str] = Field(default_factory=lambda: ["copilot", "claude-code"])


class BackendConfig(BaseModel):
    """Configuration for a specific backend CLI."""

    enabled: bool = True
    command: str | None = None
    model: str | None = None
    output_format: str | None = None
    max_turns: int | None = None
    system_prompt: str | None = None
    skip_permissions: bool = False
    extra_args: list[str] = Field(default_factory=list)


class AgentSettings(BaseModel):
    """Merged, read-only configuration snapshot handed to one adapter."""

    agent_id: str
    command: str | None = None
    model: str | None = None
    plan_mode: bool = False
    output_format: str | None = None
    max_turns: int | None = None
    system_prompt: str | None = None
    skip_permissions: bool = False
    extra_args: tuple[str, ...] = ()
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)

    model_config = ConfigDict(frozen=True)


class TalosConfig(BaseModel):
    """Root configuration model for talos."""

    agent: AgentSelectionConfig = Field(default_factory=AgentSelectionConfig)
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    model: str | None = None
    plan_mode: bool = False
    backends: dict[str, BackendConfig] = Field(default_factory=dict)

    @classmethod
    def default(cls) -> "TalosConfig":
        """Create default configuration."""
        return cls(
            backends={
                "copilot": BackendConfig(command="copilot"),
                "claude-code": BackendConfig(command="claude"),
                "codex": BackendConfig(command="codex"),
                "gemini": BackendConfig(command="gemini"),
            }
        )

    def get_backend_config(self, agent_id: str) -> BackendConfig:
        """Get configuration for a specific backend."""
        return self.backends.get(agent_id, BackendConfig())

    def settings_for(self, agent_id: str) -> AgentSettings:
        """Merge global settings with the backend's own section."""
        backend = self.get_backend_config(agent_id)
        return AgentSettings(
            agent_id=agent_id,
            command=backend.command,
            model=backend.model or self.model,
            plan_mode=self.plan_mode,
            output_format=backend.output_format,
            max_turns=backend.max_turns,
            system_prompt=backend.system_prompt,
            skip_permissions=backend.skip_permissions,
            extra_args=tuple(backend.extra_args),
            permissions=self.permissions,
            execution=self.execution,
            timeouts=self.timeouts,
        )


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    override = os.environ.get("TALOS_CONFIG_DIR")
    config_dir = Path(override) if override else Path.home() / ".config" / "talos"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get the main configuration file path."""
    return get_config_dir() / "config.toml"
