"""
Data models for ToolLoop.
"""

from .conversation import (
    Role,
    TextPart,
    MediaPart,
    ToolInvocationRequest,
    ToolInvocationResult,
    ToolError,
    Part,
    part_from_dict,
    ConversationTurn,
    ModelResponse,
)
from .config import (
    ModelEndpointConfig,
    GenerationConfig,
    OrchestratorConfig,
    ServerConfig,
    ToolsConfig,
    LoggingConfig,
    LangfuseConfig,
    AppConfig,
)

__all__ = [
    # Conversation models
    "Role",
    "TextPart",
    "MediaPart",
    "ToolInvocationRequest",
    "ToolInvocationResult",
    "ToolError",
    "Part",
    "part_from_dict",
    "ConversationTurn",
    "ModelResponse",
    # Config models
    "ModelEndpointConfig",
    "GenerationConfig",
    "OrchestratorConfig",
    "ServerConfig",
    "ToolsConfig",
    "LoggingConfig",
    "LangfuseConfig",
    "AppConfig",
]
