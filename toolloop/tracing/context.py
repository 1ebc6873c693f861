"""
Request-scoped tracing for one API request or CLI query.

A ``TracingContext`` opens a root span and hands its ``TraceContext`` to every
child observation explicitly, so spans opened on tool worker threads still
nest under the run that started them. Everything here is a no-op when the
process-level client is missing or disabled.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generator, Optional

from langfuse.types import TraceContext

from .client import get_tracing_client

logger = logging.getLogger(__name__)


def _start_observation(trace_context: Optional[TraceContext], **kwargs: Any):
    client = get_tracing_client()
    if client is None:
        return None, None
    return client.start_observation(trace_context, **kwargs)


@dataclass
class TracingContext:
    """
    Root span of one trace, plus factories for its children.

    Attributes:
        execution_id: Log prefix id, also stored in the root span metadata.
        session_id: Orchestration session, used as the Langfuse session.
    """

    execution_id: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    _context_manager: Any = field(default=None, repr=False)
    _root_span: Any = field(default=None, repr=False)
    _enabled: bool = field(default=False, repr=False)
    _start_time: float = field(default_factory=time.time, repr=False)
    _trace_id: Optional[str] = field(default=None, repr=False)
    _root_span_id: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        client = get_tracing_client()
        self._enabled = client is not None and client.enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_trace(
        self,
        name: str = "api_request",
        query: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        if not self._enabled:
            return
        try:
            self._context_manager, self._root_span = _start_observation(
                None,
                as_type="span",
                name=name,
                input={"query": query} if query else None,
                metadata={"execution_id": self.execution_id, **(metadata or {})},
            )
            if self._root_span is None:
                return
            self._trace_id = getattr(self._root_span, "trace_id", None)
            self._root_span_id = getattr(self._root_span, "id", None)
            self._root_span.update_trace(user_id=self.user_id, session_id=self.session_id)
            self._start_time = time.time()
        except Exception as e:
            logger.warning("[%s] Failed to start trace: %s", self.execution_id, e)
            self._root_span = None

    def get_trace_context(self) -> Optional[TraceContext]:
        """Parent reference for observations opened under the root span."""
        if not self._trace_id or not self._root_span_id:
            return None
        return TraceContext(trace_id=self._trace_id, parent_span_id=self._root_span_id)

    def record_outcome(self, status: str, turn_count: int) -> None:
        """Score the trace with how the orchestration run ended."""
        client = get_tracing_client()
        if not self._enabled or client is None:
            return
        client.score_run(self._trace_id, status, turn_count)

    def end_trace(
        self,
        output: Optional[str] = None,
        status: str = "success",
        metadata: Optional[dict] = None,
    ) -> None:
        if not self._enabled or not self._root_span:
            return
        try:
            duration_ms = (time.time() - self._start_time) * 1000
            self._root_span.update(
                output=output,
                metadata={"status": status, "duration_ms": round(duration_ms, 2), **(metadata or {})},
            )
            if self._context_manager:
                self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning("[%s] Failed to end trace: %s", self.execution_id, e)

    @contextmanager
    def span(
        self,
        name: str,
        metadata: Optional[dict] = None,
        input: Optional[Any] = None,
    ) -> Generator["SpanContext", None, None]:
        """A child span: the orchestration run or one tool invocation."""
        span_ctx = SpanContext(
            name=name,
            enabled=self._enabled,
            metadata=metadata,
            input=input,
            _trace_context=self.get_trace_context(),
        )
        with span_ctx.opened():
            yield span_ctx

    @contextmanager
    def generation(
        self,
        name: str,
        model: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
        model_parameters: Optional[dict] = None,
    ) -> Generator["GenerationContext", None, None]:
        """A child generation for one model round-trip."""
        gen_ctx = GenerationContext(
            name=name,
            model=model,
            enabled=self._enabled,
            input=input,
            metadata=metadata,
            model_parameters=model_parameters,
            _trace_context=self.get_trace_context(),
        )
        with gen_ctx.opened():
            yield gen_ctx


@dataclass
class _Observation:
    """Shared lifecycle of spans and generations."""

    as_type: ClassVar[str] = "span"

    name: str
    enabled: bool = False
    metadata: Optional[dict] = None
    input: Optional[Any] = None
    _trace_context: Optional[TraceContext] = field(default=None, repr=False)
    _context_manager: Any = field(default=None, repr=False)
    _observation: Any = field(default=None, repr=False)
    _start_time: float = field(default=0.0, repr=False)
    _output: Optional[Any] = field(default=None, repr=False)
    _status: str = field(default="success", repr=False)

    def _start_kwargs(self) -> dict:
        return {"name": self.name, "metadata": self.metadata, "input": self.input}

    def _end_kwargs(self) -> dict:
        duration_ms = (time.time() - self._start_time) * 1000
        kwargs: dict[str, Any] = {
            "metadata": {"status": self._status, "duration_ms": round(duration_ms, 2)}
        }
        if self._output is not None:
            kwargs["output"] = self._output
        return kwargs

    @contextmanager
    def opened(self) -> Generator[None, None, None]:
        self.start()
        try:
            yield
        finally:
            self.end()

    def start(self) -> None:
        if not self.enabled:
            return
        try:
            self._start_time = time.time()
            self._context_manager, self._observation = _start_observation(
                self._trace_context, as_type=self.as_type, **self._start_kwargs()
            )
        except Exception as e:
            logger.warning("Failed to start %s '%s': %s", self.as_type, self.name, e)
            self._observation = None

    def end(self) -> None:
        if not self.enabled or not self._observation:
            return
        try:
            self._observation.update(**self._end_kwargs())
            if self._context_manager:
                self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning("Failed to end %s '%s': %s", self.as_type, self.name, e)

    def set_output(self, output: Any) -> None:
        self._output = output

    def set_status(self, status: str) -> None:
        self._status = status


@dataclass
class SpanContext(_Observation):
    """A span around the orchestration run or a tool invocation."""


@dataclass
class GenerationContext(_Observation):
    """One model round-trip, with model name and token usage."""

    as_type: ClassVar[str] = "generation"

    model: str = ""
    model_parameters: Optional[dict] = None
    _usage: Optional[dict] = field(default=None, repr=False)

    def _start_kwargs(self) -> dict:
        return {
            **super()._start_kwargs(),
            "model": self.model,
            "model_parameters": self.model_parameters,
        }

    def _end_kwargs(self) -> dict:
        kwargs = super()._end_kwargs()
        if self._usage:
            kwargs["usage_details"] = self._usage
        return kwargs

    def set_usage(self, usage: Optional[dict]) -> None:
        """Keep the token counts the endpoint actually reported."""
        if usage:
            self._usage = {k: v for k, v in usage.items() if v is not None}
