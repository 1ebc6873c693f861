"""
Environment configuration for ToolLoop.

Builds an AppConfig from environment variables (and a local .env file)
with sensible defaults for local development. Used when no YAML
configuration file is present.
"""

import os

from dotenv import load_dotenv

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

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_optional_float(name: str) -> float | None:
    value = os.getenv(name, "")
    return float(value) if value else None


def get_config() -> AppConfig:
    """Get the application configuration from the environment."""
    return AppConfig(
        model=ModelEndpointConfig(
            base_url=os.getenv(
                "MODEL_BASE_URL",
                "https://generativelanguage.googleapis.com/v1beta/openai/",
            ),
            model=os.getenv("MODEL_NAME", "gemini-2.5-flash"),
            api_key=os.getenv("MODEL_API_KEY", os.getenv("GEMINI_API_KEY", "")),
            timeout=float(os.getenv("MODEL_TIMEOUT", "60")),
        ),
        generation=GenerationConfig(
            temperature=float(os.getenv("MODEL_TEMPERATURE", "0.7")),
            max_tokens=int(os.getenv("MODEL_MAX_TOKENS", "2048")),
        ),
        orchestrator=OrchestratorConfig(
            max_turns=int(os.getenv("MAX_TURNS", "5")),
            explicit_control=_env_bool("EXPLICIT_CONTROL"),
            max_tool_workers=int(os.getenv("MAX_TOOL_WORKERS", "4")),
            tool_timeout=_env_optional_float("TOOL_TIMEOUT"),
        ),
        server=ServerConfig(
            host=os.getenv("SERVER_HOST", "0.0.0.0"),
            port=int(os.getenv("SERVER_PORT", "8000")),
            workers=int(os.getenv("SERVER_WORKERS", "1")),
            reload=_env_bool("SERVER_RELOAD"),
        ),
        tools=ToolsConfig(
            weather_url=os.getenv("WEATHER_API_URL", "https://wttr.in"),
            quotes_url=os.getenv(
                "QUOTES_API_URL", "https://api.gameofthronesquotes.xyz/v1/author"
            ),
            timeout=int(os.getenv("TOOL_HTTP_TIMEOUT", "30")),
        ),
        logging=LoggingConfig(level=os.getenv("LOG_LEVEL", "INFO")),
        langfuse=LangfuseConfig(
            public_key=os.getenv("LANGFUSE_PUBLIC_KEY", ""),
            secret_key=os.getenv("LANGFUSE_SECRET_KEY", ""),
            host=os.getenv("LANGFUSE_HOST", ""),
            debug=_env_bool("LANGFUSE_DEBUG"),
        ),
    )
