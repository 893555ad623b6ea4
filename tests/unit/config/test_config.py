# tests/unit/config/test_config.py
"""Tests for configuration schema and manager."""
import pytest
import toml
from pydantic import ValidationError

from talos.config.manager import ConfigManager
from talos.config.schema import ExecutionConfig, TalosConfig, TimeoutConfig, get_config_file


def test_defaults():
    config = TalosConfig.default()

    assert config.execution.mode == "streaming"
    assert config.execution.fallback_to_batch is True
    assert config.agent.type == "auto"
    assert config.agent.preferred == ["copilot", "claude-code"]
    assert config.timeouts.request == 60
    assert config.permissions.allow_all_tools is False
    assert config.get_backend_config("claude-code").command == "claude"


def test_mode_aliases():
    assert ExecutionConfig(mode="acp").mode == "streaming"
    assert ExecutionConfig(mode="prompt").mode == "batch"
    with pytest.raises(ValidationError):
        ExecutionConfig(mode="interactive")


def test_prompt_timeout_defaults_to_request_timeout():
    assert TimeoutConfig(request=12).prompt_timeout == 12
    assert TimeoutConfig(request=12, prompt=300).prompt_timeout == 300


def test_settings_merge_global_and_backend():
    config = TalosConfig.default().model_copy(update={"model": "global-model", "plan_mode": True})
    config.backends["codex"].model = "o4"

    codex = config.settings_for("codex")
    gemini = config.settings_for("gemini")

    assert codex.model == "o4"
    assert gemini.model == "global-model"
    assert gemini.plan_mode is True
    assert gemini.command == "gemini"
    assert config.settings_for("unknown").command is None


def test_settings_are_frozen():
    settings = TalosConfig.default().settings_for("copilot")
    with pytest.raises(ValidationError):
        settings.model = "other"


def test_sections_are_frozen():
    config = TalosConfig.default()
    for section in (config.permissions, config.execution, config.timeouts):
        assert section.model_config["frozen"] is True
    with pytest.raises(ValidationError):
        config.execution.mode = "batch"


def test_load_merges_user_and_project_config(tmp_path):
    get_config_file().write_text(toml.dumps({"execution": {"mode": "batch"}, "model": "user-model"}))
    project = tmp_path / "project"
    nested = project / "src"
    nested.mkdir(parents=True)
    (project / ".talos.toml").write_text(toml.dumps({"model": "project-model", "timeouts": {"request": 5}}))

    config = ConfigManager.load_config(nested)

    assert config.execution.mode == "batch"
    assert config.model == "project-model"
    assert config.timeouts.request == 5
    # Defaults survive the merge
    assert config.get_backend_config("copilot").command == "copilot"


def test_set_value_persists(tmp_path):
    ConfigManager.set_value("execution.mode", "prompt")

    assert ConfigManager.get_value("execution.mode") == "batch"
    saved = toml.load(get_config_file())
    assert saved["execution"]["mode"] == "batch"


def test_set_invalid_value_is_rejected():
    with pytest.raises(ValidationError):
        ConfigManager.set_value("timeouts.request", -1)
    assert ConfigManager.get_value("timeouts.request") == 60


def test_get_value_default():
    assert ConfigManager.get_value("no.such.key", "fallback") == "fallback"
