from pathlib import Path

import pytest

import astra_shell.config as config_module
from astra_shell.config import Config
from astra_shell.exceptions import ConfigurationError


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("model:\n  model: llama3.2\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    local_cfg = tmp_path / "config.yaml"
    local_cfg.write_text(
        (
            "model:\n"
            "  model: qwen3:8b\n"
            "orchestrator:\n"
            "  max_iterations: 4\n"
            "tools:\n"
            "  enabled:\n"
            "    - Stat\n"
            "    - ReadFile\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.model.model == "qwen3:8b"
    assert cfg.orchestrator.max_iterations == 4
    assert cfg.tools.enabled == ["Stat", "ReadFile"]


def test_load_falls_back_to_default_path_when_no_local(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("plan:\n  confidence_threshold: 0.8\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    cfg = Config.load()

    assert cfg.plan.confidence_threshold == 0.8


def test_defaults_when_no_config_file(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    cfg = Config.load()

    assert cfg.model.provider == "ollama"
    assert cfg.orchestrator.max_iterations == 10
    assert cfg.plan.confidence_threshold == 0.5
    assert cfg.sentry.enabled is False
    assert "{tools}" in cfg.orchestrator.system_prompt


def test_env_overrides_fill_nested_settings(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.setenv("ASTRA_ORCHESTRATOR__MAX_ITERATIONS", "3")
    monkeypatch.setenv("ASTRA_MODEL__BASE_URL", "http://gpu-box:11434")

    cfg = Config.load()

    assert cfg.orchestrator.max_iterations == 3
    assert cfg.model.base_url == "http://gpu-box:11434"


def test_save_writes_yaml_that_loads_back(tmp_path: Path):
    target = tmp_path / "nested" / "config.yaml"
    cfg = Config()
    cfg.sentry.enabled = True
    cfg.tools.run_command.blocked = ["mkfs", "shutdown"]

    cfg.save(target)
    loaded = Config.from_yaml(target)

    assert loaded.sentry.enabled is True
    assert loaded.tools.run_command.blocked == ["mkfs", "shutdown"]


def test_invalid_yaml_raises_configuration_error(tmp_path: Path):
    broken = tmp_path / "broken.yaml"
    broken.write_text("model: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        Config.from_yaml(broken)


def test_invalid_values_raise_configuration_error(tmp_path: Path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("orchestrator:\n  max_iterations: lots\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Invalid configuration"):
        Config.from_yaml(bad)
