"""
ToolLoop chat facade.

Keeps one OrchestrationSession alive across calls so callers can hold a
multi-turn conversation, and exposes the explicit-control workflow
(inspect pending requests, resolve them, resume) as plain methods.
"""

import logging
from typing import Any, Iterable, Optional

from .cancellation import CancellationToken
from .config_loader import load_app_config
from .endpoints import OpenAIModelEndpoint
from .models import AppConfig, ConversationTurn, ToolInvocationRequest, ToolInvocationResult
from .orchestration import (
    OrchestrationSession,
    Orchestrator,
    RunOptions,
    RunResult,
    ToolDispatcher,
)
from .orchestration.loop import Prompt
from .tools import ToolRegistry, register_default_tools

logger = logging.getLogger(__name__)


class Chat:
    """
    A conversation with memory.

    Each ``send`` appends to the same session, so the model sees everything
    said so far. In explicit-control mode ``send`` returns with
    ``pending_requests`` set; resolve them with ``dispatch_pending`` (or any
    other means) and hand the results to ``send_tool_results``.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        registry: Optional[ToolRegistry] = None,
        session: Optional[OrchestrationSession] = None,
        **session_kwargs: Any,
    ):
        """
        Initialize the chat.

        Args:
            orchestrator: Runs the loop for every message.
            registry: Tools offered to the model.
            session: Existing session to continue (e.g. restored with
                ``OrchestrationSession.from_dict``).
            **session_kwargs: Passed to OrchestrationSession when no session
                is given (``system_prompt``, ``max_turns``, ``explicit_control``).
        """
        self.orchestrator = orchestrator
        self.registry = registry if registry is not None else ToolRegistry()
        session_kwargs.setdefault("max_turns", orchestrator.settings.max_turns)
        session_kwargs.setdefault("explicit_control", orchestrator.settings.explicit_control)
        self._session_kwargs = session_kwargs
        self.session = session if session is not None else OrchestrationSession(**session_kwargs)
        self.last_result: Optional[RunResult] = None

    @property
    def history(self) -> tuple[ConversationTurn, ...]:
        return self.session.history

    @property
    def pending_requests(self) -> list[ToolInvocationRequest]:
        return self.session.pending_requests

    def send(
        self,
        prompt: Prompt,
        options: Optional[RunOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RunResult:
        """Send a message (or resume with ``None``) and run to a terminal state."""
        self.last_result = self.orchestrator.run(
            self.session,
            prompt,
            self.registry,
            options=options,
            cancel_token=cancel_token,
        )
        return self.last_result

    def dispatch_pending(
        self, cancel_token: Optional[CancellationToken] = None
    ) -> list[ToolInvocationResult]:
        """
        Execute the pending requests against the registry.

        The results are returned, not submitted, so the caller can inspect
        or edit them before ``send_tool_results``.
        """
        requests = self.pending_requests
        if not requests:
            return []
        dispatcher = ToolDispatcher.from_config(
            self.orchestrator.settings,
            tracing_context=self.orchestrator.tracing_context,
            execution_id=self.orchestrator.execution_id,
        )
        outcome = dispatcher.dispatch(
            requests,
            self.registry,
            session_id=self.session.session_id,
            cancel_token=cancel_token,
        )
        return outcome.results

    def send_tool_results(
        self,
        results: Iterable[ToolInvocationResult],
        resume: bool = True,
        options: Optional[RunOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Optional[RunResult]:
        """
        Record results for the pending requests and, by default, resume.

        Returns:
            The resumed run's result, or None when ``resume`` is False.
        """
        self.session.submit_tool_results(results)
        if not resume:
            return None
        return self.send(None, options=options, cancel_token=cancel_token)

    def reset(self) -> None:
        """Start a fresh session with the same settings."""
        logger.debug("Resetting chat session %s", self.session.session_id)
        self.session = OrchestrationSession(**self._session_kwargs)
        self.last_result = None


def build_orchestrator(
    app_config: AppConfig, execution_id: Optional[str] = None, tracing_context=None
) -> Orchestrator:
    """Orchestrator wired to the configured OpenAI-compatible endpoint."""
    return Orchestrator(
        endpoint=OpenAIModelEndpoint.from_config(app_config.model),
        settings=app_config.orchestrator,
        generation=app_config.generation,
        tracing_context=tracing_context,
        execution_id=execution_id,
    )


def run_query(
    query: str,
    app_config: Optional[AppConfig] = None,
    registry: Optional[ToolRegistry] = None,
) -> RunResult:
    """
    Convenience function to run a single query.

    Args:
        query: The user's question or task
        app_config: Configuration (loaded from YAML/environment if not provided)
        registry: Tools to offer (the example tools if not provided)

    Returns:
        The run result
    """
    app_config = app_config or load_app_config()
    if registry is None:
        registry = register_default_tools(ToolRegistry(), app_config.tools)
    orchestrator = build_orchestrator(app_config)
    session = OrchestrationSession(
        max_turns=app_config.orchestrator.max_turns,
        explicit_control=app_config.orchestrator.explicit_control,
    )
    try:
        return orchestrator.run(session, query, registry)
    finally:
        orchestrator.endpoint.close()
