"""
Langfuse tracing integration for ToolLoop.

Provides observability for model round-trips, tool executions, and the
request lifecycle.
"""

from .client import (
    TracingClient,
    init_tracing_client,
    get_tracing_client,
    shutdown_tracing,
)
from .context import (
    TracingContext,
    SpanContext,
    GenerationContext,
)

__all__ = [
    "TracingClient",
    "init_tracing_client",
    "get_tracing_client",
    "shutdown_tracing",
    "TracingContext",
    "SpanContext",
    "GenerationContext",
]
