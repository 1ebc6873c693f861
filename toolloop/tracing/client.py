"""
Process-level Langfuse client for ToolLoop runs.

Tracing is optional: without credentials, or when Langfuse rejects them at
startup, every method here returns without doing anything and runs proceed
untraced. Besides opening observations for spans and generations, the client
scores each finished run with its terminal loop state and turn count so runs
can be filtered by outcome in Langfuse.
"""

import logging
from typing import Any, Optional

from langfuse import Langfuse
from langfuse.types import TraceContext

from ..models.config import LangfuseConfig

logger = logging.getLogger(__name__)

RUN_STATUS_SCORE = "run_status"
TURN_COUNT_SCORE = "turn_count"


class TracingClient:
    """
    Wraps a Langfuse client that is only kept when it passed ``auth_check``.

    Attributes:
        enabled: True when observations and scores are being sent.
        error: Why tracing is disabled, if it is.
    """

    def __init__(
        self,
        public_key: str = "",
        secret_key: str = "",
        host: str = "",
        debug: bool = False,
    ):
        self._client: Optional[Langfuse] = None
        self.error: Optional[str] = None

        if not public_key or not secret_key:
            self.error = "Langfuse credentials not configured"
            logger.debug("Tracing disabled: %s", self.error)
            return

        kwargs: dict[str, Any] = {
            "public_key": public_key,
            "secret_key": secret_key,
            "debug": debug,
        }
        if host:
            kwargs["host"] = host

        try:
            client = Langfuse(**kwargs)
            if not client.auth_check():
                self.error = "Langfuse auth_check() failed for the configured keys"
            else:
                self._client = client
        except Exception as e:
            self.error = f"Could not reach Langfuse: {e}"

        if self._client is None:
            logger.warning("Tracing disabled: %s", self.error)
        else:
            logger.info("Langfuse tracing enabled (host: %s)", host or "default")

    @classmethod
    def from_config(cls, config: LangfuseConfig) -> "TracingClient":
        return cls(
            public_key=config.public_key,
            secret_key=config.secret_key,
            host=config.host,
            debug=config.debug,
        )

    @property
    def enabled(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> Optional[Langfuse]:
        """The underlying Langfuse client, or None when disabled."""
        return self._client

    def start_observation(self, trace_context: Optional[TraceContext], **kwargs: Any):
        """
        Open a span or generation under ``trace_context``.

        Returns:
            ``(context_manager, observation)``; both None when disabled. The
            caller exits the context manager when the observation ends.
        """
        if self._client is None:
            return None, None
        context_manager = self._client.start_as_current_observation(
            trace_context=trace_context, **kwargs
        )
        return context_manager, context_manager.__enter__()

    def score_run(self, trace_id: Optional[str], status: str, turn_count: int) -> None:
        """Attach the run's terminal state and turn count to its trace."""
        if self._client is None or not trace_id:
            return
        try:
            self._client.create_score(
                trace_id=trace_id,
                name=RUN_STATUS_SCORE,
                value=status,
                data_type="CATEGORICAL",
            )
            self._client.create_score(
                trace_id=trace_id,
                name=TURN_COUNT_SCORE,
                value=float(turn_count),
                data_type="NUMERIC",
            )
        except Exception as e:
            logger.warning("Failed to score run on trace %s: %s", trace_id, e)

    def flush(self) -> None:
        if self._client is None:
            return
        try:
            self._client.flush()
        except Exception as e:
            logger.warning("Failed to flush tracing events: %s", e)

    def shutdown(self) -> None:
        """Flush remaining events and stop the SDK's background export."""
        if self._client is None:
            return
        try:
            self._client.shutdown()
            logger.info("Langfuse tracing client shutdown complete")
        except Exception as e:
            logger.warning("Error during tracing client shutdown: %s", e)


_tracing_client: Optional[TracingClient] = None


def init_tracing_client(config: Optional[LangfuseConfig] = None) -> TracingClient:
    """Replace the process-level client, built from ``config``."""
    global _tracing_client
    _tracing_client = TracingClient.from_config(config or LangfuseConfig())
    return _tracing_client


def get_tracing_client() -> Optional[TracingClient]:
    return _tracing_client


def shutdown_tracing() -> None:
    global _tracing_client
    if _tracing_client:
        _tracing_client.shutdown()
        _tracing_client = None
