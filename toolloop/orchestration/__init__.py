"""
Orchestration: sessions, concurrent tool dispatch and the bounded loop.
"""

from .dispatch import DispatchOutcome, ToolDispatcher, in_tool_dispatch
from .loop import (
    LoopState,
    Orchestrator,
    RunOptions,
    RunResult,
    parse_structured_output,
    prompt_turns,
)
from .session import OrchestrationSession, SessionStore, pair_results

__all__ = [
    "DispatchOutcome",
    "ToolDispatcher",
    "in_tool_dispatch",
    "LoopState",
    "Orchestrator",
    "RunOptions",
    "RunResult",
    "parse_structured_output",
    "prompt_turns",
    "OrchestrationSession",
    "SessionStore",
    "pair_results",
]
