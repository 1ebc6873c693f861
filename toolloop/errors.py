"""
Error taxonomy for the orchestration loop.

Per-tool failures (``UnknownTool``, ``ToolExecutionError``) are absorbed by
the loop and fed back to the model as error-bearing tool results. Everything
deriving from ``OrchestrationError`` is fatal to a ``run`` call and carries
enough context (history snapshot, turn count, session id) to retry or
escalate.
"""

from typing import Optional


class ToolExecutionError(Exception):
    """Raised by a tool handler (or its schema validation) when invocation fails."""

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tool_name = tool_name


class OrchestrationError(Exception):
    """Base class for errors that terminate a ``run`` call."""

    def __init__(
        self,
        message: str,
        history: Optional[tuple] = None,
        turn_count: Optional[int] = None,
        session_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.history = history
        self.turn_count = turn_count
        self.session_id = session_id

    def attach_context(
        self, history: tuple, turn_count: int, session_id: Optional[str]
    ) -> "OrchestrationError":
        """Record the session state at the point of failure (first writer wins)."""
        if self.history is None:
            self.history = history
        if self.turn_count is None:
            self.turn_count = turn_count
        if self.session_id is None:
            self.session_id = session_id
        return self


class ModelEndpointError(OrchestrationError):
    """The model endpoint call failed; the loop cannot proceed."""


class EndpointUnavailable(ModelEndpointError):
    """Transport-level failure: connection, timeout, rate limit, 5xx."""


class InvalidRequest(ModelEndpointError):
    """The endpoint rejected the request (4xx, validation)."""


class MalformedReferenceId(OrchestrationError):
    """A tool result could not be paired with an outstanding request."""


class DuplicateReferenceId(MalformedReferenceId):
    """Two tool requests in the same model turn share a reference id."""


class NestedToolCallError(OrchestrationError):
    """A tool handler tried to start an orchestration run of its own."""


class MalformedSessionError(OrchestrationError):
    """The session is not in a state that ``run`` can start from."""


class ConcurrentRunError(OrchestrationError):
    """Another ``run`` call currently owns the session."""


class UnknownToolError(OrchestrationError):
    """A run was configured with a tool name that is not registered."""


class OutputValidationError(OrchestrationError):
    """The final answer did not match the requested output schema."""
