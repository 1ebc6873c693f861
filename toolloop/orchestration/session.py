"""
Orchestration sessions and an in-memory session store.

A session owns the conversation history and the loop settings for one
conversation. History is append-only: ``append`` rejects any turn that would
break request/result pairing, so a history that made it into a session is
always safe to send back to the model. Sessions serialize to plain dicts so
an explicit-control suspension can be resumed in another process.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Generator, Iterable, Optional

from ..errors import (
    ConcurrentRunError,
    DuplicateReferenceId,
    MalformedReferenceId,
    MalformedSessionError,
)
from ..models import (
    ConversationTurn,
    Role,
    TextPart,
    ToolInvocationRequest,
    ToolInvocationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 5


def _check_requests(requests: list[ToolInvocationRequest]) -> None:
    seen: set[str] = set()
    for request in requests:
        if not request.reference_id:
            raise MalformedReferenceId(
                f"Tool request '{request.name}' has no reference id"
            )
        if request.reference_id in seen:
            raise DuplicateReferenceId(
                f"Reference id '{request.reference_id}' used by more than one "
                "tool request in the same turn"
            )
        seen.add(request.reference_id)


def pair_results(
    requests: list[ToolInvocationRequest],
    results: Iterable[ToolInvocationResult],
) -> list[ToolInvocationResult]:
    """
    Match results to requests by reference id.

    Returns:
        The results reordered to request order.

    Raises:
        MalformedReferenceId: On unknown, duplicate, mismatched or missing results.
    """
    by_reference: dict[str, ToolInvocationRequest] = {r.reference_id: r for r in requests}
    matched: dict[str, ToolInvocationResult] = {}
    for result in results:
        request = by_reference.get(result.reference_id)
        if request is None:
            raise MalformedReferenceId(
                f"Tool result reference id '{result.reference_id}' does not match "
                "any outstanding request"
            )
        if result.reference_id in matched:
            raise MalformedReferenceId(
                f"More than one result for reference id '{result.reference_id}'"
            )
        if result.name != request.name:
            raise MalformedReferenceId(
                f"Result for '{result.reference_id}' names tool '{result.name}' "
                f"but the request was for '{request.name}'"
            )
        matched[result.reference_id] = result

    missing = [r.reference_id for r in requests if r.reference_id not in matched]
    if missing:
        raise MalformedReferenceId(
            f"No result for reference id(s): {', '.join(missing)}"
        )
    return [matched[r.reference_id] for r in requests]


class OrchestrationSession:
    """
    Conversation state owned by one caller.

    Attributes:
        session_id: Opaque identifier, stable across serialization.
        max_turns: Model round-trips allowed per ``run`` call.
        explicit_control: Surface tool requests to the caller instead of
            dispatching them.
        turn_count: Round-trips taken by the current (or last) ``run``.
    """

    def __init__(
        self,
        max_turns: int = DEFAULT_MAX_TURNS,
        explicit_control: bool = False,
        system_prompt: Optional[str] = None,
        session_id: Optional[str] = None,
        history: Optional[Iterable[ConversationTurn]] = None,
    ):
        if max_turns < 1:
            raise MalformedSessionError(f"max_turns must be >= 1, got {max_turns}")
        self.session_id = session_id or uuid.uuid4().hex
        self.max_turns = max_turns
        self.explicit_control = explicit_control
        self.turn_count = 0
        self._history: list[ConversationTurn] = []
        self._run_lock = threading.Lock()

        if system_prompt:
            self.append(ConversationTurn(role=Role.SYSTEM, content=(TextPart(system_prompt),)))
        for turn in history or ():
            self.append(turn)

    @property
    def history(self) -> tuple[ConversationTurn, ...]:
        """Snapshot of the conversation so far."""
        return tuple(self._history)

    def __len__(self) -> int:
        return len(self._history)

    @property
    def last_turn(self) -> Optional[ConversationTurn]:
        return self._history[-1] if self._history else None

    @property
    def pending_requests(self) -> list[ToolInvocationRequest]:
        """Tool requests from the last model turn that have no results yet."""
        last = self.last_turn
        if last is None or last.role is not Role.MODEL:
            return []
        return last.tool_requests

    def append(self, turn: ConversationTurn) -> None:
        """
        Append a turn, enforcing the history invariants.

        Raises:
            MalformedReferenceId: A tool turn does not pair exactly with the
                preceding model turn's requests (in request order).
                Also raised when a non-tool turn carries tool results.
            DuplicateReferenceId: A model turn reuses a reference id.
            MalformedSessionError: A non-tool turn would leave requests unresolved.
        """
        pending = self.pending_requests

        if turn.role is Role.TOOL:
            if not pending:
                raise MalformedReferenceId(
                    "A tool turn must directly follow a model turn with tool requests"
                )
            if len(turn.tool_results) != len(turn.content):
                raise MalformedSessionError("A tool turn may only contain tool results")
            ordered = pair_results(pending, turn.tool_results)
            if ordered != turn.tool_results:
                raise MalformedReferenceId("Tool results are not in request order")
        elif turn.tool_results:
            raise MalformedReferenceId(
                f"Only tool turns may carry tool results, got a {turn.role.value} turn"
            )
        elif pending:
            raise MalformedSessionError(
                f"{len(pending)} tool request(s) must be resolved before "
                f"appending a {turn.role.value} turn"
            )

        if turn.role is Role.MODEL:
            _check_requests(turn.tool_requests)
        elif turn.tool_requests:
            raise MalformedSessionError(
                f"Only model turns may carry tool requests, got a {turn.role.value} turn"
            )

        self._history.append(turn)

    def submit_tool_results(
        self, results: Iterable[ToolInvocationResult]
    ) -> ConversationTurn:
        """
        Resolve pending requests with caller-produced results.

        Results may arrive in any order; they are stored in request order.
        """
        pending = self.pending_requests
        if not pending:
            raise MalformedReferenceId("The session has no pending tool requests")
        turn = ConversationTurn(role=Role.TOOL, content=tuple(pair_results(pending, results)))
        self.append(turn)
        logger.debug(
            "Session %s: %d tool result(s) submitted", self.session_id, len(turn.content)
        )
        return turn

    @contextmanager
    def exclusive(self) -> Generator["OrchestrationSession", None, None]:
        """Hold the single-writer guard for the duration of a run."""
        if not self._run_lock.acquire(blocking=False):
            raise ConcurrentRunError(
                f"Session {self.session_id} is already being run",
                session_id=self.session_id,
            )
        try:
            yield self
        finally:
            self._run_lock.release()

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "max_turns": self.max_turns,
            "explicit_control": self.explicit_control,
            "turn_count": self.turn_count,
            "history": [turn.to_dict() for turn in self._history],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrchestrationSession":
        session = cls(
            max_turns=int(data.get("max_turns", DEFAULT_MAX_TURNS)),
            explicit_control=bool(data.get("explicit_control", False)),
            session_id=data.get("session_id"),
            history=[ConversationTurn.from_dict(t) for t in data.get("history", [])],
        )
        session.turn_count = int(data.get("turn_count", 0))
        return session


class SessionStore:
    """
    Thread-safe in-memory session store for the HTTP service.

    Sessions live for the lifetime of the process; nothing is persisted.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, OrchestrationSession] = {}
        self._lock = threading.Lock()

    def create(self, **kwargs) -> OrchestrationSession:
        """Create and store a new session."""
        session = OrchestrationSession(**kwargs)
        self.save(session)
        logger.debug("Created session %s", session.session_id)
        return session

    def save(self, session: OrchestrationSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional[OrchestrationSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def delete(self, session_id: str) -> bool:
        """Remove a session; returns False when it did not exist."""
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions.keys())

    def clear(self) -> None:
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        logger.debug("Cleared %d sessions", count)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
