"""Cooperative cancellation shared by the orchestrator and tool handlers."""

import threading


class CancellationToken:
    """Thread-safe flag a caller sets to stop a run between or during turns."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or the timeout elapses; returns the flag."""
        return self._event.wait(timeout)
