"""
Model endpoints: the protocol the orchestrator talks to and an
OpenAI-compatible implementation.
"""

from .base import ModelEndpoint
from .openai_endpoint import OpenAIModelEndpoint, history_to_messages, parse_completion
from .tool_defs import build_response_format, build_tool_definitions

__all__ = [
    "ModelEndpoint",
    "OpenAIModelEndpoint",
    "history_to_messages",
    "parse_completion",
    "build_response_format",
    "build_tool_definitions",
]
