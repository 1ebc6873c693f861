"""Tests for YAML configuration loading."""

import pytest

from toolloop.config import get_config
from toolloop.config_loader import (
    DEFAULT_CONFIG_PATH,
    load_app_config,
    parse_app_config,
    resolve_env_vars,
)


class TestResolveEnvVars:
    """Tests for ${VAR} interpolation."""

    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv("TOOLLOOP_TEST_URL", "http://llm:8000/v1")
        assert resolve_env_vars("${TOOLLOOP_TEST_URL}") == "http://llm:8000/v1"

    def test_default_used_when_unset(self, monkeypatch):
        """The :- default applies when the variable is missing."""
        monkeypatch.delenv("TOOLLOOP_TEST_MISSING", raising=False)
        assert resolve_env_vars("${TOOLLOOP_TEST_MISSING:-fallback}") == "fallback"
        assert resolve_env_vars("x-${TOOLLOOP_TEST_MISSING}-y") == "x--y"


class TestParseAppConfig:
    """Tests for parse_app_config."""

    def test_sections_parsed(self):
        """Every section is converted with types coerced."""
        config = parse_app_config(
            {
                "model": {"base_url": "http://llm/v1", "model": "qwen", "timeout": "30"},
                "generation": {"temperature": "0.2", "max_tokens": 256, "stop": "END"},
                "orchestrator": {
                    "max_turns": "3",
                    "explicit_control": "true",
                    "tool_timeout": "2.5",
                },
                "server": {"port": "9000"},
                "langfuse": {"public_key": "pk", "secret_key": "sk"},
            }
        )

        assert config.model.base_url == "http://llm/v1"
        assert config.model.timeout == 30.0
        assert config.generation.temperature == 0.2
        assert config.generation.stop == ["END"]
        assert config.orchestrator.max_turns == 3
        assert config.orchestrator.explicit_control is True
        assert config.orchestrator.tool_timeout == 2.5
        assert config.server.port == 9000
        assert config.langfuse.is_configured is True

    def test_defaults_for_missing_sections(self):
        """An empty mapping yields the default configuration."""
        config = parse_app_config({})

        assert config.model.model == "gemini-2.5-flash"
        assert config.orchestrator.max_turns == 5
        assert config.orchestrator.explicit_control is False
        assert config.orchestrator.tool_timeout is None
        assert config.langfuse.is_configured is False

    def test_invalid_max_turns(self):
        """max_turns below 1 is rejected at load time."""
        with pytest.raises(ValueError, match="max_turns"):
            parse_app_config({"orchestrator": {"max_turns": 0}})

    def test_env_substitution(self, monkeypatch):
        """Environment references are resolved before parsing."""
        monkeypatch.setenv("MAX_TURNS", "7")
        config = parse_app_config({"orchestrator": {"max_turns": "${MAX_TURNS:-5}"}})
        assert config.orchestrator.max_turns == 7


class TestLoadAppConfig:
    """Tests for load_app_config."""

    def test_load_from_file(self, tmp_path):
        """A YAML file is read and cached."""
        path = tmp_path / "config.yaml"
        path.write_text("model:\n  model: local-model\norchestrator:\n  max_turns: 2\n")

        config = load_app_config(str(path), reload=True)

        assert config.model.model == "local-model"
        assert config.orchestrator.max_turns == 2
        assert load_app_config() is config

    def test_empty_file_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        with pytest.raises(ValueError, match="empty"):
            load_app_config(str(path), reload=True)

    def test_missing_file_falls_back_to_environment(self, tmp_path, monkeypatch):
        """Without a file the environment supplies the configuration."""
        monkeypatch.setenv("MODEL_NAME", "env-model")
        monkeypatch.setenv("MAX_TURNS", "4")

        config = load_app_config(str(tmp_path / "missing.yaml"), reload=True)

        assert config.model.model == "env-model"
        assert config.orchestrator.max_turns == 4

    def test_shipped_config_parses(self, monkeypatch):
        """The bundled config/config.yaml is valid."""
        for name in ("MAX_TURNS", "EXPLICIT_CONTROL", "TOOL_TIMEOUT", "MODEL_NAME"):
            monkeypatch.delenv(name, raising=False)

        config = load_app_config(str(DEFAULT_CONFIG_PATH), reload=True)

        assert config.orchestrator.max_turns == 5
        assert config.orchestrator.tool_timeout is None


class TestEnvironmentConfig:
    """Tests for get_config."""

    def test_explicit_control_flag(self, monkeypatch):
        monkeypatch.setenv("EXPLICIT_CONTROL", "true")
        monkeypatch.setenv("TOOL_TIMEOUT", "1.5")
        config = get_config()
        assert config.orchestrator.explicit_control is True
        assert config.orchestrator.tool_timeout == 1.5
