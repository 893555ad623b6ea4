"""Layered configuration: defaults, user file, project file."""

import logging
from pathlib import Path
from typing import Any, Iterator

import toml

from talos.config.schema import TalosConfig, get_config_file

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = ".talos.toml"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``override`` on ``base``; neither input is modified."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """Process-wide access to the validated :class:`TalosConfig`."""

    _config: TalosConfig | None = None

    @classmethod
    def get_config(cls) -> TalosConfig:
        """Cached configuration, loaded on first use."""
        if cls._config is None:
            cls._config = cls.load_config()
        return cls._config

    @classmethod
    def load_config(cls, cwd: Path | None = None) -> TalosConfig:
        """Build the configuration for a working directory.

        Later layers win:
        1. Built-in defaults
        2. User config (``config.toml`` in the config directory)
        3. Project config (nearest ``.talos.toml`` from ``cwd`` upward)
        """
        layers = TalosConfig.default().model_dump(mode="json")
        for source in cls._sources(cwd):
            logger.debug("Merging config from %s", source)
            layers = deep_merge(layers, toml.load(source))
        return TalosConfig.model_validate(layers)

    @classmethod
    def reload(cls) -> TalosConfig:
        cls._config = cls.load_config()
        return cls._config

    @classmethod
    def _sources(cls, cwd: Path | None) -> Iterator[Path]:
        user_file = get_config_file()
        if user_file.is_file():
            yield user_file
        project_file = cls._find_project_config(cwd)
        if project_file is not None:
            yield project_file

    @classmethod
    def _find_project_config(cls, cwd: Path | None = None) -> Path | None:
        """Nearest project config, searching no higher than the home directory."""
        start = (cwd or Path.cwd()).resolve()
        home = Path.home()
        for directory in (start, *start.parents):
            candidate = directory / PROJECT_CONFIG_NAME
            if candidate.is_file():
                return candidate
            if directory == home:
                return None
        return None

    @classmethod
    def save_user_config(cls, config: TalosConfig) -> None:
        """Write ``config`` to the user config file (unset values omitted)."""
        target = get_config_file()
        target.write_text(toml.dumps(config.model_dump(mode="json", exclude_none=True)))
        logger.info("Saved configuration to %s", target)

    @classmethod
    def set_value(cls, key_path: str, value: Any) -> None:
        """Validate and persist one dotted setting, e.g. ``execution.mode``.

        Raises:
            pydantic.ValidationError: the resulting configuration is invalid;
                nothing is saved.
        """
        data = cls.get_config().model_dump(mode="json")
        *parents, leaf = key_path.split(".")
        section = data
        for key in parents:
            section = section.setdefault(key, {})
        section[leaf] = value

        updated = TalosConfig.model_validate(data)
        cls._config = updated
        cls.save_user_config(updated)

    @classmethod
    def get_value(cls, key_path: str, default: Any = None) -> Any:
        """Look up one dotted setting, or ``default`` when absent."""
        node: Any = cls.get_config().model_dump(mode="json")
        for key in key_path.split("."):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node
