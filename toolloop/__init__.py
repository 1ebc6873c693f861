"""
ToolLoop - bounded tool-calling orchestration for LLM endpoints

This package provides:
- Conversation data model and resumable orchestration sessions
- Tool registry with pydantic-validated schemas and example HTTP tools
- Bounded request/dispatch/respond loop with explicit-control mode
- OpenAI-compatible model endpoint (Gemini by default)
- FastAPI service and interactive CLI
"""

from .cancellation import CancellationToken
from .errors import OrchestrationError, ToolExecutionError
from .models import ConversationTurn, ModelResponse, ToolInvocationRequest, ToolInvocationResult
from .orchestration import (
    LoopState,
    OrchestrationSession,
    Orchestrator,
    RunOptions,
    RunResult,
)
from .orchestrator import Chat, run_query
from .tools import ToolRegistry

__all__ = [
    "CancellationToken",
    "Chat",
    "ConversationTurn",
    "LoopState",
    "ModelResponse",
    "OrchestrationError",
    "OrchestrationSession",
    "Orchestrator",
    "RunOptions",
    "RunResult",
    "ToolExecutionError",
    "ToolInvocationRequest",
    "ToolInvocationResult",
    "ToolRegistry",
    "run_query",
]

__version__ = "0.1.0"
