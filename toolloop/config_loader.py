"""
Configuration loader for ToolLoop.

Loads configuration from YAML files with support for
environment variable interpolation.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from .config import get_config
from .models import (
    AppConfig,
    GenerationConfig,
    LangfuseConfig,
    LoggingConfig,
    ModelEndpointConfig,
    OrchestratorConfig,
    ServerConfig,
    ToolsConfig,
)

logger = logging.getLogger(__name__)

# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "config.yaml"

# Regex for environment variable interpolation: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

# Singleton cache for app config
_app_config: Optional[AppConfig] = None


def resolve_env_vars(value: str) -> str:
    """
    Resolve environment variable references in a string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with env vars resolved
    """

    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _substitute_env_vars_recursive(data: Any) -> Any:
    """Recursively substitute environment variables in a data structure."""
    if isinstance(data, dict):
        return {k: _substitute_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    return data


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


def _as_optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _parse_model_config(data: dict) -> ModelEndpointConfig:
    """Parse model endpoint configuration from dict."""
    defaults = ModelEndpointConfig()
    return ModelEndpointConfig(
        base_url=data.get("base_url") or defaults.base_url,
        model=data.get("model") or defaults.model,
        api_key=data.get("api_key", ""),
        timeout=float(data.get("timeout", defaults.timeout)),
    )


def _parse_generation_config(data: dict) -> GenerationConfig:
    """Parse generation parameters from dict."""
    stop = data.get("stop")
    if isinstance(stop, str):
        stop = [stop]
    max_tokens = data.get("max_tokens", 2048)
    return GenerationConfig(
        temperature=_as_optional_float(data.get("temperature", 0.7)),
        max_tokens=int(max_tokens) if max_tokens not in (None, "") else None,
        stop=stop or None,
    )


def _parse_orchestrator_config(data: dict) -> OrchestratorConfig:
    """Parse orchestrator loop settings from dict."""
    max_turns = int(data.get("max_turns", 5))
    if max_turns < 1:
        raise ValueError(f"orchestrator.max_turns must be >= 1, got {max_turns}")
    return OrchestratorConfig(
        max_turns=max_turns,
        explicit_control=_as_bool(data.get("explicit_control", False)),
        max_tool_workers=int(data.get("max_tool_workers", 4)),
        tool_timeout=_as_optional_float(data.get("tool_timeout")),
        max_error_chars=int(data.get("max_error_chars", 500)),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server configuration from dict."""
    return ServerConfig(
        host=data.get("host", "0.0.0.0"),
        port=int(data.get("port", 8000)),
        workers=int(data.get("workers", 1)),
        reload=_as_bool(data.get("reload", False)),
    )


def _parse_tools_config(data: dict) -> ToolsConfig:
    """Parse example tool endpoints from dict."""
    defaults = ToolsConfig()
    return ToolsConfig(
        weather_url=data.get("weather_url") or defaults.weather_url,
        quotes_url=data.get("quotes_url") or defaults.quotes_url,
        timeout=int(data.get("timeout", defaults.timeout)),
    )


def _parse_logging_config(data: dict) -> LoggingConfig:
    """Parse logging configuration from dict."""
    return LoggingConfig(level=data.get("level", "INFO"))


def _parse_langfuse_config(data: dict) -> LangfuseConfig:
    """Parse Langfuse configuration from dict."""
    return LangfuseConfig(
        public_key=data.get("public_key", ""),
        secret_key=data.get("secret_key", ""),
        host=data.get("host", ""),
        debug=_as_bool(data.get("debug", False)),
    )


def parse_app_config(raw_config: dict) -> AppConfig:
    """
    Build an AppConfig from an already-loaded YAML mapping.

    Environment variables are substituted before parsing.
    """
    raw_config = _substitute_env_vars_recursive(raw_config)
    return AppConfig(
        version=str(raw_config.get("version", "1.0")),
        model=_parse_model_config(raw_config.get("model") or {}),
        generation=_parse_generation_config(raw_config.get("generation") or {}),
        orchestrator=_parse_orchestrator_config(raw_config.get("orchestrator") or {}),
        server=_parse_server_config(raw_config.get("server") or {}),
        tools=_parse_tools_config(raw_config.get("tools") or {}),
        logging=_parse_logging_config(raw_config.get("logging") or {}),
        langfuse=_parse_langfuse_config(raw_config.get("langfuse") or {}),
    )


def load_app_config(path: Optional[str] = None, reload: bool = False) -> AppConfig:
    """
    Load unified application configuration.

    Uses a singleton pattern - subsequent calls return the cached config
    unless reload=True is specified. When no YAML file exists at the
    resolved path, configuration comes from the environment instead.

    Args:
        path: Path to the YAML configuration file. If None, uses
              CONFIG_PATH env var or the default path (config/config.yaml).
        reload: If True, force reload from disk instead of using cache.

    Returns:
        AppConfig with all configuration loaded

    Raises:
        ValueError: If the config file is empty or invalid
    """
    global _app_config

    if _app_config is not None and not reload:
        return _app_config

    if path is None:
        path = os.environ.get("CONFIG_PATH", str(DEFAULT_CONFIG_PATH))

    config_path = Path(path)

    if not config_path.exists():
        logger.info(
            "Configuration file not found at %s, using environment", config_path
        )
        _app_config = get_config()
        return _app_config

    logger.info("Loading configuration from %s", config_path)

    with open(config_path, "r") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raise ValueError(f"Configuration file {config_path} is empty")

    app_config = parse_app_config(raw_config)
    _app_config = app_config

    logger.debug(
        "Configuration loaded: version=%s, model=%s, max_turns=%d",
        app_config.version,
        app_config.model.model,
        app_config.orchestrator.max_turns,
    )

    return app_config


def reset_config_cache() -> None:
    """Reset the configuration cache, forcing a reload on next access."""
    global _app_config
    _app_config = None
    logger.debug("Configuration cache reset")
