"""
Concurrent tool dispatch for one model turn.

Requests in the same turn are independent, so they run on a thread pool.
Results are always returned in request order regardless of completion
order. Per-tool failures become error-bearing results; only structural
``OrchestrationError``s escape.
"""

import contextvars
import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..cancellation import CancellationToken
from ..errors import OrchestrationError, ToolExecutionError
from ..models import OrchestratorConfig, ToolError, ToolInvocationRequest, ToolInvocationResult
from ..tools.registry import ToolContext, ToolDefinition, ToolRegistry
from ..tracing import TracingContext

logger = logging.getLogger(__name__)

UNKNOWN_TOOL = "UnknownTool"
TOOL_EXECUTION_ERROR = "ToolExecutionError"
CANCELLED = "Cancelled"

# How often a waiting dispatch checks for cancellation or timeout.
POLL_INTERVAL = 0.05

_dispatch_active: contextvars.ContextVar[bool] = contextvars.ContextVar(
    "tool_dispatch_active", default=False
)


def in_tool_dispatch() -> bool:
    """True while running inside a tool handler started by a dispatcher."""
    return _dispatch_active.get()


def error_result(
    request: ToolInvocationRequest, kind: str, message: str
) -> ToolInvocationResult:
    """Build a result carrying an error payload instead of output."""
    return ToolInvocationResult(
        name=request.name,
        reference_id=request.reference_id,
        error=ToolError(kind=kind, message=message),
    )


@dataclass
class DispatchOutcome:
    """Results for one turn, in request order."""

    results: list[ToolInvocationResult] = field(default_factory=list)
    cancelled: bool = False
    # Names of tools whose handlers ran to completion, in request order.
    completed: list[str] = field(default_factory=list)


class ToolDispatcher:
    """Runs one turn's tool requests concurrently and joins them."""

    def __init__(
        self,
        max_workers: int = 4,
        timeout: Optional[float] = None,
        max_error_chars: int = 500,
        tracing_context: Optional[TracingContext] = None,
        execution_id: Optional[str] = None,
    ):
        self.max_workers = max(1, max_workers)
        self.timeout = timeout
        self.max_error_chars = max_error_chars
        self.tracing_context = tracing_context
        self.execution_id = execution_id

    @classmethod
    def from_config(
        cls,
        settings: OrchestratorConfig,
        tracing_context: Optional[TracingContext] = None,
        execution_id: Optional[str] = None,
    ) -> "ToolDispatcher":
        return cls(
            max_workers=settings.max_tool_workers,
            timeout=settings.tool_timeout,
            max_error_chars=settings.max_error_chars,
            tracing_context=tracing_context,
            execution_id=execution_id,
        )

    @property
    def _id_prefix(self) -> str:
        return f"[{self.execution_id}] " if self.execution_id else ""

    def dispatch(
        self,
        requests: Sequence[ToolInvocationRequest],
        registry: ToolRegistry,
        session_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DispatchOutcome:
        """
        Execute every request and collect results in request order.

        Args:
            requests: The tool requests of one model turn.
            registry: Where tools are looked up by name.
            session_id: Passed through to handlers via ToolContext.
            cancel_token: Checked while waiting; on cancel, unfinished
                requests get ``Cancelled`` error results.

        Raises:
            OrchestrationError: A handler raised a structural error.
        """
        results: list[Optional[ToolInvocationResult]] = [None] * len(requests)
        if not requests:
            return DispatchOutcome()

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(requests)),
            thread_name_prefix="tool",
        )
        futures: dict[Future, int] = {}
        finished: set[int] = set()
        cancelled = False
        try:
            for index, request in enumerate(requests):
                tool = registry.lookup(request.name)
                if tool is None:
                    logger.warning("%sUnknown tool: %s", self._id_prefix, request.name)
                    results[index] = error_result(
                        request,
                        UNKNOWN_TOOL,
                        f"Unknown tool '{request.name}'. "
                        f"Available tools: {', '.join(registry.all_tools()) or 'none'}",
                    )
                    continue
                context = ToolContext(
                    reference_id=request.reference_id,
                    session_id=session_id,
                    cancel_token=cancel_token,
                )
                run_context = contextvars.copy_context()
                future = executor.submit(
                    run_context.run, self._invoke, tool, request, context
                )
                futures[future] = index

            cancelled = self._join(futures, results, finished, requests, cancel_token)
        finally:
            # Never block on handlers that ignore cancellation.
            executor.shutdown(wait=False, cancel_futures=True)

        return DispatchOutcome(
            results=[r for r in results if r is not None],
            cancelled=cancelled,
            completed=[requests[i].name for i in sorted(finished)],
        )

    def _join(
        self,
        futures: dict[Future, int],
        results: list[Optional[ToolInvocationResult]],
        finished: set[int],
        requests: Sequence[ToolInvocationRequest],
        cancel_token: Optional[CancellationToken],
    ) -> bool:
        """Wait for all futures; returns True if the dispatch was cancelled."""
        deadline = time.monotonic() + self.timeout if self.timeout else None
        poll = POLL_INTERVAL if (cancel_token is not None or deadline) else None
        pending = set(futures)

        while pending:
            if cancel_token is not None and cancel_token.cancelled:
                logger.info(
                    "%sDispatch cancelled with %d tool(s) unfinished",
                    self._id_prefix,
                    len(pending),
                )
                self._abandon(pending, futures, results, requests, CANCELLED, "Cancelled by caller")
                return True

            done, pending = wait(pending, timeout=poll, return_when=FIRST_COMPLETED)
            for future in done:
                results[futures[future]] = future.result()
                finished.add(futures[future])

            if deadline is not None and pending and time.monotonic() >= deadline:
                logger.warning(
                    "%s%d tool(s) exceeded the %.1fs timeout",
                    self._id_prefix,
                    len(pending),
                    self.timeout,
                )
                self._abandon(
                    pending,
                    futures,
                    results,
                    requests,
                    TOOL_EXECUTION_ERROR,
                    f"Tool timed out after {self.timeout}s",
                )
                return False
        return False

    @staticmethod
    def _abandon(
        pending: set[Future],
        futures: dict[Future, int],
        results: list[Optional[ToolInvocationResult]],
        requests: Sequence[ToolInvocationRequest],
        kind: str,
        message: str,
    ) -> None:
        for future in pending:
            future.cancel()
            index = futures[future]
            results[index] = error_result(requests[index], kind, message)

    def _invoke(
        self,
        tool: ToolDefinition,
        request: ToolInvocationRequest,
        context: ToolContext,
    ) -> ToolInvocationResult:
        """Run one handler on a worker thread, converting failures to results."""
        _dispatch_active.set(True)
        if self.tracing_context:
            with self.tracing_context.span(
                name=f"tool:{request.name}",
                input={"input": request.input, "reference_id": request.reference_id},
            ) as span:
                result = self._execute(tool, request, context)
                if result.error is not None:
                    span.set_status("error")
                    span.set_output({"error": result.error.to_dict()})
                else:
                    span.set_output({"output": str(result.output)[:500]})
                return result
        return self._execute(tool, request, context)

    def _execute(
        self,
        tool: ToolDefinition,
        request: ToolInvocationRequest,
        context: ToolContext,
    ) -> ToolInvocationResult:
        try:
            logger.debug(
                "%sExecuting tool '%s' (%s)",
                self._id_prefix,
                request.name,
                request.reference_id,
            )
            output = tool.invoke(request.input, context)
            return ToolInvocationResult(
                name=request.name, reference_id=request.reference_id, output=output
            )
        except OrchestrationError:
            raise
        except ToolExecutionError as e:
            logger.warning("%sTool '%s' failed: %s", self._id_prefix, request.name, e)
            return error_result(request, TOOL_EXECUTION_ERROR, self._truncate(e.message))
        except Exception as e:
            logger.error(
                "%sTool '%s' execution failed: %s", self._id_prefix, request.name, e
            )
            return error_result(
                request,
                TOOL_EXECUTION_ERROR,
                self._truncate(f"Tool '{request.name}' execution error: {e}"),
            )

    def _truncate(self, message: str) -> str:
        if self.max_error_chars and len(message) > self.max_error_chars:
            return message[: self.max_error_chars] + "..."
        return message
