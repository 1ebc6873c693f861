"""
Bounded tool-calling orchestration loop.

One ``run`` call drives a session through the state machine::

    AWAITING_MODEL --(no tool requests)--------------> COMPLETE
    AWAITING_MODEL --(tool requests, explicit)-------> SUSPENDED_FOR_CALLER
    AWAITING_MODEL --(tool requests, automatic)------> DISPATCHING_TOOLS
    DISPATCHING_TOOLS --(all results joined)---------> AWAITING_MODEL
    AWAITING_MODEL --(turn budget spent)-------------> TRUNCATED
    any --(cancel token set)-------------------------> CANCELLED

The full conversation history is sent on every round-trip; the session only
ever grows by appending turns. Per-tool failures are fed back to the model
as error results. Endpoint failures and structural violations raise
``OrchestrationError`` subclasses carrying the session state at the point of
failure.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Optional, Union

import json_repair
from pydantic import BaseModel, ValidationError

from ..cancellation import CancellationToken
from ..endpoints.base import ModelEndpoint
from ..errors import (
    EndpointUnavailable,
    MalformedSessionError,
    NestedToolCallError,
    OrchestrationError,
    OutputValidationError,
)
from ..models import (
    ConversationTurn,
    GenerationConfig,
    MediaPart,
    ModelResponse,
    OrchestratorConfig,
    Role,
    TextPart,
    ToolInvocationRequest,
)
from ..tools.registry import ToolDeclaration, ToolRegistry
from ..tracing import TracingContext
from .dispatch import ToolDispatcher, error_result, in_tool_dispatch
from .session import OrchestrationSession

logger = logging.getLogger(__name__)

Prompt = Union[str, TextPart, MediaPart, ConversationTurn, Iterable[Any], None]


class LoopState(str, Enum):
    """States of one ``run`` call; the last four are terminal."""

    AWAITING_MODEL = "AWAITING_MODEL"
    DISPATCHING_TOOLS = "DISPATCHING_TOOLS"
    SUSPENDED_FOR_CALLER = "SUSPENDED_FOR_CALLER"
    COMPLETE = "COMPLETE"
    TRUNCATED = "TRUNCATED"
    CANCELLED = "CANCELLED"


@dataclass
class RunOptions:
    """Per-run overrides. ``None`` keeps the session or orchestrator default."""

    max_turns: Optional[int] = None
    explicit_control: Optional[bool] = None
    tools: Optional[list[str]] = None
    generation: Optional[GenerationConfig] = None
    output_schema: Optional[Any] = None


@dataclass
class RunResult:
    """Outcome of a ``run`` call."""

    status: LoopState
    session_id: str
    turn_count: int
    response: Optional[ModelResponse] = None
    pending_requests: list[ToolInvocationRequest] = field(default_factory=list)
    history: tuple = ()
    output: Any = None
    tools_used: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        """Text of the last model response (empty if none was received)."""
        return self.response.text if self.response else ""

    @property
    def is_partial(self) -> bool:
        return self.status is LoopState.TRUNCATED


def parse_structured_output(text: str, schema: Any) -> Any:
    """
    Parse a final answer against a requested output schema.

    JSON is parsed leniently (code fences, trailing commas, truncation) and,
    for pydantic schemas, validated into a model instance.

    Raises:
        OutputValidationError: The text does not satisfy the schema.
    """
    data = json_repair.loads(text) if text else None
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise OutputValidationError(
                f"Final answer does not match {schema.__name__}: {e}"
            ) from e
    if not isinstance(data, (dict, list)):
        raise OutputValidationError("Final answer is not valid JSON")
    return data


def prompt_turns(prompt: Prompt) -> list[ConversationTurn]:
    """
    Normalize the accepted prompt forms into turns to append.

    ``None`` continues the existing history; a string, part or list of parts
    becomes one ``user`` turn; a turn or list of turns is appended as given.
    """
    if prompt is None:
        return []
    if isinstance(prompt, ConversationTurn):
        return [prompt]
    if isinstance(prompt, (str, TextPart, MediaPart)):
        content = (TextPart(prompt),) if isinstance(prompt, str) else (prompt,)
        return [ConversationTurn(role=Role.USER, content=content)]

    items = list(prompt)
    if items and all(isinstance(item, ConversationTurn) for item in items):
        return items
    parts = []
    for item in items:
        if isinstance(item, str):
            parts.append(TextPart(item))
        elif isinstance(item, (TextPart, MediaPart)):
            parts.append(item)
        else:
            raise TypeError(
                "Prompt lists must hold only parts/strings or only turns, "
                f"got {type(item).__name__}"
            )
    if not parts:
        return []
    return [ConversationTurn(role=Role.USER, content=tuple(parts))]


class Orchestrator:
    """
    Drives a session through bounded model/tool round-trips.

    All configuration arrives through the constructor; the orchestrator
    holds no reference to a session between ``run`` calls, so one instance
    can serve many sessions (one run per session at a time).
    """

    def __init__(
        self,
        endpoint: ModelEndpoint,
        settings: Optional[OrchestratorConfig] = None,
        generation: Optional[GenerationConfig] = None,
        tracing_context: Optional[TracingContext] = None,
        execution_id: Optional[str] = None,
    ):
        self.endpoint = endpoint
        self.settings = settings or OrchestratorConfig()
        self.generation = generation or GenerationConfig()
        self.tracing_context = tracing_context
        self.execution_id = execution_id

    @property
    def _id_prefix(self) -> str:
        return f"[{self.execution_id}] " if self.execution_id else ""

    def run(
        self,
        session: OrchestrationSession,
        prompt: Prompt = None,
        registry: Optional[ToolRegistry] = None,
        options: Optional[RunOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RunResult:
        """
        Run the loop until a terminal state.

        Args:
            session: The conversation to advance. Held exclusively for the
                duration of the call.
            prompt: New input to append first; ``None`` resumes the
                existing history (e.g. after ``submit_tool_results``).
            registry: Tools available to the model. Defaults to none.
            options: Per-run overrides.
            cancel_token: Checked before each model call and while tools run.

        Returns:
            RunResult with status COMPLETE, SUSPENDED_FOR_CALLER, TRUNCATED
            or CANCELLED.

        Raises:
            OrchestrationError: Endpoint failure or structural violation.
        """
        if in_tool_dispatch():
            raise NestedToolCallError(
                "Tool handlers may not start an orchestration run",
                session_id=session.session_id,
            )

        registry = registry if registry is not None else ToolRegistry()
        options = options or RunOptions()

        with session.exclusive():
            session.turn_count = 0
            try:
                if self.tracing_context:
                    return self._run_with_tracing(
                        session, prompt, registry, options, cancel_token
                    )
                return self._run_loop(session, prompt, registry, options, cancel_token)
            except OrchestrationError as e:
                logger.error("%sRun failed: %s", self._id_prefix, e)
                raise e.attach_context(
                    session.history, session.turn_count, session.session_id
                )

    def _run_with_tracing(
        self,
        session: OrchestrationSession,
        prompt: Prompt,
        registry: ToolRegistry,
        options: RunOptions,
        cancel_token: Optional[CancellationToken],
    ) -> RunResult:
        """Run the loop inside an ``orchestration`` span."""
        if self.tracing_context is None:
            return self._run_loop(session, prompt, registry, options, cancel_token)
        with self.tracing_context.span(
            name="orchestration",
            metadata={
                "max_turns": options.max_turns or session.max_turns,
                "session_id": session.session_id,
                "execution_id": self.execution_id,
            },
            input={"prompt": prompt if isinstance(prompt, str) else None},
        ) as orch_span:
            try:
                result = self._run_loop(session, prompt, registry, options, cancel_token)
            except OrchestrationError:
                orch_span.set_status("error")
                raise
            orch_span.set_output(
                {
                    "status": result.status.value,
                    "turn_count": result.turn_count,
                    "final_answer": result.text[:500],
                }
            )
        self.tracing_context.record_outcome(result.status.value, result.turn_count)
        return result

    def _run_loop(
        self,
        session: OrchestrationSession,
        prompt: Prompt,
        registry: ToolRegistry,
        options: RunOptions,
        cancel_token: Optional[CancellationToken],
    ) -> RunResult:
        """Core loop. Caller holds the session exclusively."""
        max_turns = options.max_turns if options.max_turns is not None else session.max_turns
        if max_turns < 1:
            raise MalformedSessionError(f"max_turns must be >= 1, got {max_turns}")
        explicit = (
            options.explicit_control
            if options.explicit_control is not None
            else session.explicit_control
        )
        generation = options.generation or self.generation
        if options.output_schema is not None:
            generation = replace(generation, output_schema=options.output_schema)
        if options.tools is not None:
            registry = registry.subset(options.tools)
        declarations = registry.declarations()

        start_index = len(session)
        for turn in prompt_turns(prompt):
            session.append(turn)
        if session.pending_requests:
            raise MalformedSessionError(
                f"Session has {len(session.pending_requests)} unresolved tool "
                "request(s); submit their results before running"
            )
        if not len(session):
            raise MalformedSessionError("Nothing to send: the session history is empty")

        dispatcher = ToolDispatcher.from_config(
            self.settings, self.tracing_context, self.execution_id
        )
        tools_used: list[str] = []
        response: Optional[ModelResponse] = None

        def finish(status: LoopState, **kwargs: Any) -> RunResult:
            self._log_trace_summary(session, status, start_index)
            return RunResult(
                status=status,
                session_id=session.session_id,
                turn_count=session.turn_count,
                response=response,
                history=session.history,
                tools_used=list(tools_used),
                **kwargs,
            )

        while session.turn_count < max_turns:
            if cancel_token is not None and cancel_token.cancelled:
                logger.info("%sRun cancelled before turn %d", self._id_prefix, session.turn_count + 1)
                return finish(LoopState.CANCELLED)

            # AWAITING_MODEL
            session.turn_count += 1
            response = self._call_model(session, declarations, generation)
            session.append(response.to_turn())

            if not response.requests:
                output = None
                if generation.output_schema is not None:
                    output = parse_structured_output(response.text, generation.output_schema)
                return finish(LoopState.COMPLETE, output=output)

            if explicit:
                logger.debug(
                    "%sSuspending with %d pending request(s)",
                    self._id_prefix,
                    len(response.requests),
                )
                return finish(
                    LoopState.SUSPENDED_FOR_CALLER,
                    pending_requests=list(response.requests),
                )

            # DISPATCHING_TOOLS
            try:
                outcome = dispatcher.dispatch(
                    response.requests,
                    registry,
                    session_id=session.session_id,
                    cancel_token=cancel_token,
                )
            except OrchestrationError as e:
                # Resolve the requests so the session can be run again.
                session.append(
                    ConversationTurn(
                        role=Role.TOOL,
                        content=tuple(
                            error_result(request, type(e).__name__, e.message)
                            for request in response.requests
                        ),
                    )
                )
                raise
            session.append(ConversationTurn(role=Role.TOOL, content=tuple(outcome.results)))
            for name in outcome.completed:
                if name not in tools_used:
                    tools_used.append(name)

            if outcome.cancelled:
                return finish(LoopState.CANCELLED)

        logger.warning("%sTurn budget (%d) reached, returning partial answer", self._id_prefix, max_turns)
        return finish(LoopState.TRUNCATED)

    def _call_model(
        self,
        session: OrchestrationSession,
        declarations: list[ToolDeclaration],
        generation: GenerationConfig,
    ) -> ModelResponse:
        """One round-trip to the endpoint, traced as a generation when enabled."""
        turn = session.turn_count
        logger.debug("%sTurn %d: calling model", self._id_prefix, turn)

        if self.tracing_context is None:
            return self._invoke_endpoint(session, declarations, generation)

        with self.tracing_context.generation(
            name=f"model_turn_{turn}",
            model=getattr(self.endpoint, "model", type(self.endpoint).__name__),
            input=[t.to_dict() for t in session.history],
            model_parameters={
                "temperature": generation.temperature,
                "max_tokens": generation.max_tokens,
            },
        ) as gen:
            try:
                response = self._invoke_endpoint(session, declarations, generation)
            except OrchestrationError:
                gen.set_status("error")
                raise
            gen.set_output(response.to_turn().to_dict())
            gen.set_usage(response.usage)
            return response

    def _invoke_endpoint(
        self,
        session: OrchestrationSession,
        declarations: list[ToolDeclaration],
        generation: GenerationConfig,
    ) -> ModelResponse:
        try:
            return self.endpoint.invoke(session.history, declarations, generation)
        except OrchestrationError:
            raise
        except Exception as e:
            logger.error(
                "%sModel call failed at turn %d: %s",
                self._id_prefix,
                session.turn_count,
                e,
            )
            raise EndpointUnavailable(f"Model endpoint call failed: {e}") from e

    def _log_trace_summary(
        self, session: OrchestrationSession, status: LoopState, start_index: int
    ) -> None:
        """Log a compact summary of the turns this run appended."""
        id_prefix = self._id_prefix
        logger.info("%s%s", id_prefix, "─" * 50)
        logger.info(
            "%sTRACE SUMMARY: %s after %d turn(s)", id_prefix, status.value, session.turn_count
        )
        logger.info("%s%s", id_prefix, "─" * 50)
        for turn in session.history[start_index:]:
            if turn.role is Role.MODEL and turn.tool_requests:
                names = ", ".join(r.name for r in turn.tool_requests)
                logger.info("%smodel -> tools: %s", id_prefix, names)
            elif turn.role is Role.TOOL:
                for result in turn.tool_results:
                    if result.error is not None:
                        logger.info(
                            "%stool %s [%s]: %s",
                            id_prefix,
                            result.name,
                            result.error.kind,
                            result.error.message[:80],
                        )
                    else:
                        preview = str(result.output)
                        if len(preview) > 80:
                            preview = preview[:80] + "..."
                        logger.info("%stool %s -> %s", id_prefix, result.name, preview)
            else:
                preview = turn.text[:80] + ("..." if len(turn.text) > 80 else "")
                logger.info("%s%s: %s", id_prefix, turn.role.value, preview)
