"""
Configuration models for ToolLoop.

Defines dataclasses for the unified YAML configuration file. The
orchestrator receives these explicitly; nothing here is process-global.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ModelEndpointConfig:
    """Connection settings for the OpenAI-compatible model endpoint."""
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    model: str = "gemini-2.5-flash"
    api_key: str = ""
    timeout: float = 60.0


@dataclass
class GenerationConfig:
    """Per-request generation parameters sent to the model endpoint."""
    temperature: Optional[float] = 0.7
    max_tokens: Optional[int] = 2048
    stop: Optional[list[str]] = None
    # Pydantic model class requesting structured output
    output_schema: Optional[Any] = None


@dataclass
class OrchestratorConfig:
    """Loop settings for the orchestrator."""
    max_turns: int = 5
    explicit_control: bool = False
    max_tool_workers: int = 4
    tool_timeout: Optional[float] = None
    max_error_chars: int = 500


@dataclass
class ServerConfig:
    """Configuration for the FastAPI server."""
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1
    reload: bool = False


@dataclass
class ToolsConfig:
    """Configuration for the example HTTP tools."""
    weather_url: str = "https://wttr.in"
    quotes_url: str = "https://api.gameofthronesquotes.xyz/v1/author"
    timeout: int = 30


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse observability.

    Tracing auto-enables when both public_key and secret_key are provided.
    """
    public_key: str = ""
    secret_key: str = ""
    host: str = ""
    debug: bool = False

    @property
    def is_configured(self) -> bool:
        """Check if Langfuse is configured (both keys present)."""
        return bool(self.public_key and self.secret_key)


@dataclass
class AppConfig:
    """
    Unified application configuration container.

    Holds all configuration sections loaded from config/config.yaml or
    the environment.
    """
    version: str = "1.0"
    model: ModelEndpointConfig = field(default_factory=ModelEndpointConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)

    @property
    def log_level(self) -> str:
        """Shortcut for logging.level."""
        return self.logging.level
