"""Tests for the orchestration loop."""

import threading
from unittest.mock import MagicMock

import pytest
from pydantic import BaseModel

from toolloop.cancellation import CancellationToken
from toolloop.errors import (
    ConcurrentRunError,
    DuplicateReferenceId,
    EndpointUnavailable,
    InvalidRequest,
    MalformedSessionError,
    NestedToolCallError,
    OutputValidationError,
    UnknownToolError,
)
from toolloop.models import (
    ConversationTurn,
    GenerationConfig,
    MediaPart,
    ModelResponse,
    OrchestratorConfig,
    Role,
    TextPart,
    ToolInvocationRequest,
    ToolInvocationResult,
)
from toolloop.orchestration import (
    LoopState,
    OrchestrationSession,
    Orchestrator,
    RunOptions,
    parse_structured_output,
    prompt_turns,
)
from toolloop.orchestration.dispatch import UNKNOWN_TOOL
from toolloop.tools import ToolRegistry

QUESTION = "What is the weather like in Baltimore?"


class TestBasicLoop:
    """Automatic-mode runs."""

    def test_weather_round_trip(self, scripted_endpoint, weather_request, weather_registry, final_answer):
        """One tool call followed by a final answer takes two turns."""
        endpoint = scripted_endpoint(
            ModelResponse.tool_requests([weather_request()]), final_answer
        )
        session = OrchestrationSession()

        result = Orchestrator(endpoint).run(session, QUESTION, weather_registry)

        assert result.status is LoopState.COMPLETE
        assert result.turn_count == 2
        assert result.text == final_answer.text
        assert result.tools_used == ["getWeather"]
        assert weather_registry.calls == [{"location": "Baltimore"}]

        roles = [t.role for t in session.history]
        assert roles == [Role.USER, Role.MODEL, Role.TOOL, Role.MODEL]
        tool_result = session.history[2].tool_results[0]
        assert tool_result.reference_id == "call_1"
        assert tool_result.output == "63°F and sunny"

    def test_full_history_sent_each_turn(self, scripted_endpoint, weather_request, weather_registry, final_answer):
        """Every model call sees the whole conversation so far."""
        endpoint = scripted_endpoint(
            ModelResponse.tool_requests([weather_request()]), final_answer
        )

        Orchestrator(endpoint).run(OrchestrationSession(), QUESTION, weather_registry)

        assert len(endpoint.calls[0]["history"]) == 1
        assert len(endpoint.calls[1]["history"]) == 3
        assert endpoint.calls[0]["tools"] == ["getWeather"]

    def test_single_call_when_no_tools_requested(self, scripted_endpoint, final_answer):
        """A response without tool requests completes after one call."""
        endpoint = scripted_endpoint(final_answer)

        result = Orchestrator(endpoint).run(OrchestrationSession(), "hello")

        assert result.status is LoopState.COMPLETE
        assert result.turn_count == 1
        assert len(endpoint.calls) == 1

    def test_multiple_requests_in_one_turn(self, scripted_endpoint, weather_request, weather_registry, final_answer):
        """All requests of a turn are answered in request order."""
        endpoint = scripted_endpoint(
            ModelResponse.tool_requests(
                [weather_request("Baltimore", "a"), weather_request("Boston", "b")]
            ),
            final_answer,
        )
        session = OrchestrationSession()

        Orchestrator(endpoint).run(session, QUESTION, weather_registry)

        assert [r.reference_id for r in session.history[2].tool_results] == ["a", "b"]

    def test_generation_passed_to_endpoint(self, scripted_endpoint, final_answer):
        """Generation settings reach the endpoint; per-run overrides win."""
        endpoint = scripted_endpoint(final_answer, final_answer)
        orchestrator = Orchestrator(endpoint, generation=GenerationConfig(temperature=0.1))
        session = OrchestrationSession()

        orchestrator.run(session, "one")
        orchestrator.run(
            session, "two", options=RunOptions(generation=GenerationConfig(temperature=0.9))
        )

        assert endpoint.calls[0]["generation"].temperature == 0.1
        assert endpoint.calls[1]["generation"].temperature == 0.9


class TestTurnBound:
    """The loop never exceeds max_turns."""

    @pytest.mark.parametrize("max_turns", [1, 2, 3, 5])
    def test_looping_model_truncated(self, scripted_endpoint, weather_registry, max_turns):
        """A model that always asks for tools makes exactly max_turns calls."""

        def always_tool(history):
            n = len(history)
            return ModelResponse.tool_requests(
                [
                    ToolInvocationRequest(
                        name="getWeather", input={"location": "x"}, reference_id=f"c{n}"
                    )
                ]
            )

        endpoint = scripted_endpoint(*[always_tool] * (max_turns + 2))
        session = OrchestrationSession(max_turns=max_turns)

        result = Orchestrator(endpoint).run(session, QUESTION, weather_registry)

        assert result.status is LoopState.TRUNCATED
        assert result.is_partial
        assert result.turn_count == max_turns
        assert len(endpoint.calls) == max_turns
        # The last turn's requests were still dispatched
        assert session.history[-1].role is Role.TOOL
        # The partial answer is the last response, still asking for tools
        assert result.response.requests
        assert list(result.response.requests) == session.history[-2].tool_requests
        assert result.response.requests[0].reference_id == f"c{2 * max_turns - 1}"

    def test_options_override_max_turns(self, scripted_endpoint, weather_request, weather_registry, final_answer):
        """RunOptions.max_turns takes precedence over the session."""
        endpoint = scripted_endpoint(ModelResponse.tool_requests([weather_request()]), final_answer)

        result = Orchestrator(endpoint).run(
            OrchestrationSession(max_turns=5), QUESTION, weather_registry, RunOptions(max_turns=1)
        )

        assert result.status is LoopState.TRUNCATED
        assert result.turn_count == 1

    def test_invalid_override_rejected(self, scripted_endpoint, final_answer):
        """A max_turns override below 1 is rejected."""
        with pytest.raises(MalformedSessionError):
            Orchestrator(scripted_endpoint(final_answer)).run(
                OrchestrationSession(), "hi", options=RunOptions(max_turns=0)
            )

    def test_turn_count_resets_per_run(self, scripted_endpoint, final_answer):
        """Each run gets a fresh turn budget."""
        endpoint = scripted_endpoint(final_answer, final_answer)
        orchestrator = Orchestrator(endpoint)
        session = OrchestrationSession(max_turns=1)

        assert orchestrator.run(session, "one").turn_count == 1
        assert orchestrator.run(session, "two").status is LoopState.COMPLETE


class TestToolErrors:
    """Per-tool failures are fed back to the model."""

    def test_unknown_tool_fed_back(self, scripted_endpoint, weather_registry, final_answer):
        """An unknown tool produces an error result and the run continues."""
        endpoint = scripted_endpoint(
            ModelResponse.tool_requests(
                [ToolInvocationRequest(name="getTide", input={}, reference_id="t1")]
            ),
            final_answer,
        )
        session = OrchestrationSession()

        result = Orchestrator(endpoint).run(session, QUESTION, weather_registry)

        assert result.status is LoopState.COMPLETE
        assert result.tools_used == []
        error = session.history[2].tool_results[0].error
        assert error.kind == UNKNOWN_TOOL

    def test_handler_failure_fed_back(self, scripted_endpoint, weather_request, final_answer):
        """A raising handler produces an error result the model sees."""
        registry = ToolRegistry()

        def broken(params):
            raise ConnectionError("weather service unreachable")

        registry.register("getWeather", "Weather", broken)
        endpoint = scripted_endpoint(ModelResponse.tool_requests([weather_request()]), final_answer)

        result = Orchestrator(endpoint).run(OrchestrationSession(), QUESTION, registry)

        assert result.status is LoopState.COMPLETE
        seen = endpoint.calls[1]["history"][-1].tool_results[0]
        assert seen.is_error
        assert "unreachable" in seen.error.message
        assert result.tools_used == ["getWeather"]


class TestExplicitControl:
    """Explicit control suspends instead of dispatching."""

    def test_suspends_without_calling_handlers(self, scripted_endpoint, weather_request, weather_registry):
        """Handlers are never invoked in explicit mode."""
        endpoint = scripted_endpoint(ModelResponse.tool_requests([weather_request()]))
        session = OrchestrationSession(explicit_control=True)

        result = Orchestrator(endpoint).run(session, QUESTION, weather_registry)

        assert result.status is LoopState.SUSPENDED_FOR_CALLER
        assert [r.reference_id for r in result.pending_requests] == ["call_1"]
        assert session.pending_requests == result.pending_requests
        assert weather_registry.calls == []

    def test_resume_after_caller_results(self, scripted_endpoint, weather_request, weather_registry, final_answer):
        """Caller-supplied results are recorded and the run completes."""
        endpoint = scripted_endpoint(ModelResponse.tool_requests([weather_request()]), final_answer)
        orchestrator = Orchestrator(endpoint)
        session = OrchestrationSession(explicit_control=True)

        orchestrator.run(session, QUESTION, weather_registry)
        session.submit_tool_results(
            [ToolInvocationResult(name="getWeather", reference_id="call_1", output="72°F")]
        )
        result = orchestrator.run(session, None, weather_registry)

        assert result.status is LoopState.COMPLETE
        assert weather_registry.calls == []
        assert endpoint.calls[1]["history"][-1].tool_results[0].output == "72°F"

    def test_run_with_pending_requests_rejected(self, scripted_endpoint, weather_request, weather_registry):
        """A suspended session cannot be run again before results are submitted."""
        endpoint = scripted_endpoint(ModelResponse.tool_requests([weather_request()]))
        orchestrator = Orchestrator(endpoint)
        session = OrchestrationSession(explicit_control=True)
        orchestrator.run(session, QUESTION, weather_registry)

        with pytest.raises(MalformedSessionError):
            orchestrator.run(session, None, weather_registry)

    def test_options_enable_explicit(self, scripted_endpoint, weather_request, weather_registry):
        """RunOptions can switch a single run to explicit mode."""
        endpoint = scripted_endpoint(ModelResponse.tool_requests([weather_request()]))

        result = Orchestrator(endpoint).run(
            OrchestrationSession(),
            QUESTION,
            weather_registry,
            RunOptions(explicit_control=True),
        )

        assert result.status is LoopState.SUSPENDED_FOR_CALLER


class TestReplay:
    """Identical scripts produce identical histories."""

    def test_replay_idempotent(self, scripted_endpoint, weather_request, weather_registry, final_answer):
        """Two runs over the same script yield the same history."""
        histories = []
        for _ in range(2):
            endpoint = scripted_endpoint(
                ModelResponse.tool_requests(
                    [weather_request("Baltimore", "a"), weather_request("Boston", "b")]
                ),
                final_answer,
            )
            session = OrchestrationSession(session_id="fixed")
            Orchestrator(endpoint).run(session, QUESTION, weather_registry)
            histories.append(session.to_dict())

        assert histories[0] == histories[1]


class TestCancellation:
    """Cancellation between and during turns."""

    def test_cancel_before_first_turn(self, scripted_endpoint, final_answer):
        """A pre-cancelled token stops the run before any model call."""
        endpoint = scripted_endpoint(final_answer)
        token = CancellationToken()
        token.cancel()

        result = Orchestrator(endpoint).run(OrchestrationSession(), "hi", cancel_token=token)

        assert result.status is LoopState.CANCELLED
        assert result.turn_count == 0
        assert endpoint.calls == []

    def test_cancel_during_dispatch(self, scripted_endpoint, weather_request, final_answer):
        """Cancelling while tools run leaves a consistent history."""
        registry = ToolRegistry()
        token = CancellationToken()
        release = threading.Event()

        def hang(params):
            token.cancel()
            release.wait(2)
            return "late"

        registry.register("getWeather", "Weather", hang)
        endpoint = scripted_endpoint(ModelResponse.tool_requests([weather_request()]), final_answer)
        session = OrchestrationSession()

        try:
            result = Orchestrator(endpoint).run(session, QUESTION, registry, cancel_token=token)
        finally:
            release.set()

        assert result.status is LoopState.CANCELLED
        assert len(endpoint.calls) == 1
        assert session.history[-1].role is Role.TOOL
        assert session.pending_requests == []
        assert result.tools_used == []


class TestFatalErrors:
    """Endpoint and structural failures raise with context."""

    def test_endpoint_error_carries_context(self, scripted_endpoint, weather_request, weather_registry):
        """EndpointUnavailable reports the history and turn at failure."""
        endpoint = scripted_endpoint(
            ModelResponse.tool_requests([weather_request()]),
            EndpointUnavailable("503 from model"),
        )
        session = OrchestrationSession()

        with pytest.raises(EndpointUnavailable) as exc_info:
            Orchestrator(endpoint).run(session, QUESTION, weather_registry)

        error = exc_info.value
        assert error.turn_count == 2
        assert error.session_id == session.session_id
        assert len(error.history) == 3

    def test_invalid_request_propagates(self, scripted_endpoint):
        """InvalidRequest is raised as-is."""
        endpoint = scripted_endpoint(InvalidRequest("bad schema"))
        with pytest.raises(InvalidRequest):
            Orchestrator(endpoint).run(OrchestrationSession(), "hi")

    def test_unexpected_endpoint_exception_wrapped(self, scripted_endpoint):
        """Unknown endpoint exceptions become EndpointUnavailable."""
        endpoint = scripted_endpoint(ValueError("socket closed"))
        with pytest.raises(EndpointUnavailable, match="socket closed"):
            Orchestrator(endpoint).run(OrchestrationSession(), "hi")

    def test_duplicate_reference_ids_fatal(self, scripted_endpoint, weather_request, weather_registry):
        """A model turn reusing a reference id aborts the run."""
        endpoint = scripted_endpoint(
            ModelResponse.tool_requests([weather_request("A", "dup"), weather_request("B", "dup")])
        )
        session = OrchestrationSession()

        with pytest.raises(DuplicateReferenceId):
            Orchestrator(endpoint).run(session, QUESTION, weather_registry)

        assert weather_registry.calls == []
        assert [t.role for t in session.history] == [Role.USER]

    def test_nested_run_rejected(self, scripted_endpoint, weather_request, final_answer):
        """A handler starting its own run fails the outer run."""
        registry = ToolRegistry()
        inner = Orchestrator(scripted_endpoint(final_answer))

        def recursive(params):
            return inner.run(OrchestrationSession(), "inner").text

        registry.register("getWeather", "Weather", recursive)
        endpoint = scripted_endpoint(ModelResponse.tool_requests([weather_request()]), final_answer)

        with pytest.raises(NestedToolCallError):
            Orchestrator(endpoint).run(OrchestrationSession(), QUESTION, registry)

    def test_session_usable_after_nested_run_failure(self, scripted_endpoint, weather_request, final_answer):
        """A fatal dispatch error resolves the requests so the session can run again."""
        registry = ToolRegistry()
        inner = Orchestrator(scripted_endpoint(final_answer))

        def recursive(params):
            return inner.run(OrchestrationSession(), "inner").text

        registry.register("getWeather", "Weather", recursive)
        endpoint = scripted_endpoint(ModelResponse.tool_requests([weather_request()]), final_answer)
        orchestrator = Orchestrator(endpoint)
        session = OrchestrationSession()

        with pytest.raises(NestedToolCallError) as exc_info:
            orchestrator.run(session, QUESTION, registry)

        assert session.pending_requests == []
        (result,) = session.history[-1].tool_results
        assert result.reference_id == "call_1"
        assert result.error.kind == "NestedToolCallError"
        assert len(exc_info.value.history) == 3

        retried = orchestrator.run(session, "Try again without tools.", registry)

        assert retried.status is LoopState.COMPLETE
        assert [t.role for t in endpoint.calls[1]["history"]] == [
            Role.USER,
            Role.MODEL,
            Role.TOOL,
            Role.USER,
        ]

    def test_concurrent_run_rejected(self, scripted_endpoint, final_answer):
        """A second run on a busy session raises ConcurrentRunError."""
        entered = threading.Event()
        release = threading.Event()

        def blocking(history):
            entered.set()
            release.wait(2)
            return final_answer

        endpoint = scripted_endpoint(blocking)
        orchestrator = Orchestrator(endpoint)
        session = OrchestrationSession()
        results = []
        worker = threading.Thread(
            target=lambda: results.append(orchestrator.run(session, "first"))
        )
        worker.start()
        try:
            assert entered.wait(2)
            with pytest.raises(ConcurrentRunError):
                orchestrator.run(session, "second")
        finally:
            release.set()
            worker.join(2)

        assert results[0].status is LoopState.COMPLETE

    def test_empty_history_rejected(self, scripted_endpoint, final_answer):
        """Running with no prompt and no history is an error."""
        with pytest.raises(MalformedSessionError):
            Orchestrator(scripted_endpoint(final_answer)).run(OrchestrationSession(), None)


class TestRunOptions:
    """Per-run tool selection and structured output."""

    def test_tools_subset(self, scripted_endpoint, weather_registry, final_answer):
        """options.tools restricts what the model is offered."""
        weather_registry.register("getQuote", "Quote", lambda p: "Winter is coming")
        endpoint = scripted_endpoint(final_answer)

        Orchestrator(endpoint).run(
            OrchestrationSession(), "hi", weather_registry, RunOptions(tools=["getQuote"])
        )

        assert endpoint.calls[0]["tools"] == ["getQuote"]

    def test_unknown_tool_in_options(self, scripted_endpoint, weather_registry, final_answer):
        """Selecting an unregistered tool is an error."""
        with pytest.raises(UnknownToolError):
            Orchestrator(scripted_endpoint(final_answer)).run(
                OrchestrationSession(), "hi", weather_registry, RunOptions(tools=["nope"])
            )

    def test_structured_output(self, scripted_endpoint):
        """A pydantic output schema is parsed from the final answer."""

        class Weather(BaseModel):
            location: str
            temperature_f: int

        endpoint = scripted_endpoint(
            ModelResponse.final('{"location": "Baltimore", "temperature_f": 63,}')
        )

        result = Orchestrator(endpoint).run(
            OrchestrationSession(), QUESTION, options=RunOptions(output_schema=Weather)
        )

        assert result.output == Weather(location="Baltimore", temperature_f=63)
        assert endpoint.calls[0]["generation"].output_schema is Weather

    def test_structured_output_mismatch(self, scripted_endpoint):
        """An answer that does not match the schema raises OutputValidationError."""

        class Weather(BaseModel):
            location: str

        endpoint = scripted_endpoint(ModelResponse.final("It is sunny."))
        with pytest.raises(OutputValidationError):
            Orchestrator(endpoint).run(
                OrchestrationSession(), QUESTION, options=RunOptions(output_schema=Weather)
            )


class TestParseStructuredOutput:
    """Tests for parse_structured_output."""

    def test_dict_schema_accepts_json(self):
        """Non-pydantic schemas return the parsed JSON."""
        assert parse_structured_output('{"a": 1,}', {"type": "object"}) == {"a": 1}

    def test_dict_schema_rejects_plain_text(self):
        """Plain text is not valid structured output."""
        with pytest.raises(OutputValidationError):
            parse_structured_output("", {"type": "object"})


class TestPromptTurns:
    """Tests for prompt normalization."""

    def test_none(self):
        assert prompt_turns(None) == []

    def test_string(self):
        """A string becomes one user turn."""
        (turn,) = prompt_turns("hi")
        assert turn.role is Role.USER
        assert turn.content == (TextPart("hi"),)

    def test_parts_list(self):
        """Mixed text and media become one user turn."""
        media = MediaPart(url="https://example.com/a.png", content_type="image/png")
        (turn,) = prompt_turns(["describe", media])
        assert turn.content == (TextPart("describe"), media)

    def test_turns_list(self):
        """A list of turns is appended as given."""
        turns = [
            ConversationTurn(role=Role.SYSTEM, content="be brief"),
            ConversationTurn(role=Role.USER, content="hi"),
        ]
        assert prompt_turns(turns) == turns

    def test_mixed_list_rejected(self):
        """Turns and parts cannot be mixed."""
        with pytest.raises(TypeError):
            prompt_turns([ConversationTurn(role=Role.USER, content="hi"), "there"])


class TestTracing:
    """Tracing spans wrap the run when a context is given."""

    def test_spans_recorded(self, scripted_endpoint, weather_request, weather_registry, final_answer):
        """The run opens an orchestration span and one generation per turn."""
        tracing_context = MagicMock()
        endpoint = scripted_endpoint(ModelResponse.tool_requests([weather_request()]), final_answer)
        orchestrator = Orchestrator(
            endpoint,
            settings=OrchestratorConfig(),
            tracing_context=tracing_context,
            execution_id="exec-test",
        )

        result = orchestrator.run(OrchestrationSession(), QUESTION, weather_registry)

        assert result.status is LoopState.COMPLETE
        span_names = [c.kwargs["name"] for c in tracing_context.span.call_args_list]
        assert "orchestration" in span_names
        assert "tool:getWeather" in span_names
        generation_names = [c.kwargs["name"] for c in tracing_context.generation.call_args_list]
        assert generation_names == ["model_turn_1", "model_turn_2"]
        tracing_context.record_outcome.assert_called_once_with("COMPLETE", 2)
