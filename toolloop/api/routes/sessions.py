"""
Session endpoints.

Expose the orchestration loop with server-side sessions. In explicit-control
mode a run returns ``SUSPENDED_FOR_CALLER`` with the pending tool requests;
the client resolves them and posts the results to ``/tool-results``, which
resumes the run.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from ...errors import OrchestrationError
from ...models import AppConfig, TextPart
from ...orchestration import OrchestrationSession, RunOptions, RunResult, SessionStore
from ...tools import ToolRegistry
from ...tracing import TracingContext
from ..dependencies import (
    build_orchestrator,
    flush_tracing,
    get_app_config,
    get_registry,
    get_session,
    get_store,
    new_execution_id,
)
from ..schemas import (
    CreateSessionRequest,
    ErrorResponse,
    RunRequest,
    RunResponse,
    SessionListResponse,
    SessionResponse,
    ToolResultsRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Session not found"},
    409: {"model": ErrorResponse, "description": "Session is already running"},
    422: {"model": ErrorResponse, "description": "Structural violation"},
    502: {"model": ErrorResponse, "description": "Model endpoint failure"},
}


@router.post(
    "/v1/sessions",
    response_model=SessionResponse,
    status_code=201,
    summary="Create session",
)
def create_session(
    body: CreateSessionRequest,
    store: SessionStore = Depends(get_store),
    app_config: AppConfig = Depends(get_app_config),
) -> SessionResponse:
    """Create a session; unset fields fall back to the orchestrator config."""
    settings = app_config.orchestrator
    session = store.create(
        max_turns=body.max_turns or settings.max_turns,
        explicit_control=(
            body.explicit_control
            if body.explicit_control is not None
            else settings.explicit_control
        ),
        system_prompt=body.system_prompt,
    )
    logger.info("Created session %s", session.session_id)
    return SessionResponse.from_session(session)


@router.get("/v1/sessions", response_model=SessionListResponse, summary="List sessions")
def list_sessions(store: SessionStore = Depends(get_store)) -> SessionListResponse:
    return SessionListResponse(data=store.list_ids())


@router.get(
    "/v1/sessions/{session_id}",
    response_model=SessionResponse,
    responses={404: ERROR_RESPONSES[404]},
    summary="Get session",
)
def get_session_state(
    session: OrchestrationSession = Depends(get_session),
) -> SessionResponse:
    """Return the session's settings and serialized history."""
    return SessionResponse.from_session(session)


@router.delete(
    "/v1/sessions/{session_id}",
    status_code=204,
    responses={404: ERROR_RESPONSES[404]},
    summary="Delete session",
)
def delete_session(
    session: OrchestrationSession = Depends(get_session),
    store: SessionStore = Depends(get_store),
) -> Response:
    store.delete(session.session_id)
    return Response(status_code=204)


def _run(
    request: Request,
    session: OrchestrationSession,
    registry: ToolRegistry,
    prompt,
    options: RunOptions,
    query: Optional[str] = None,
) -> RunResult:
    """Run the loop for one request inside its own trace."""
    execution_id = new_execution_id()
    logger.info("[%s] Running session %s", execution_id, session.session_id)

    tracing_context = TracingContext(execution_id=execution_id, session_id=session.session_id)
    tracing_context.start_trace(
        name="session_run",
        query=query,
        metadata={"explicit_control": options.explicit_control},
    )
    orchestrator = build_orchestrator(request, execution_id, tracing_context)
    try:
        result = orchestrator.run(session, prompt, registry, options=options)
    except OrchestrationError as e:
        tracing_context.end_trace(output=str(e), status="error")
        flush_tracing()
        raise

    tracing_context.end_trace(
        output=result.text,
        status="success",
        metadata={"loop_status": result.status.value, "turn_count": result.turn_count},
    )
    flush_tracing()
    return result


@router.post(
    "/v1/sessions/{session_id}/run",
    response_model=RunResponse,
    responses=ERROR_RESPONSES,
    summary="Run session",
    description=(
        "Append the prompt (if any) and drive the loop to COMPLETE, "
        "SUSPENDED_FOR_CALLER or TRUNCATED."
    ),
)
def run_session(
    body: RunRequest,
    request: Request,
    session: OrchestrationSession = Depends(get_session),
    registry: ToolRegistry = Depends(get_registry),
) -> RunResponse:
    parts = []
    if body.prompt:
        parts.append(TextPart(body.prompt))
    parts.extend(media.to_part() for media in body.media)

    options = RunOptions(
        max_turns=body.max_turns,
        explicit_control=body.explicit_control,
        tools=body.tools,
    )
    result = _run(request, session, registry, parts or None, options, query=body.prompt)
    return RunResponse.from_result(result)


@router.post(
    "/v1/sessions/{session_id}/tool-results",
    response_model=RunResponse,
    responses=ERROR_RESPONSES,
    summary="Submit tool results",
    description=(
        "Resolve the pending tool requests of a suspended session. Results may "
        "arrive in any order; they are recorded in request order."
    ),
)
def submit_tool_results(
    body: ToolResultsRequest,
    request: Request,
    session: OrchestrationSession = Depends(get_session),
    registry: ToolRegistry = Depends(get_registry),
) -> RunResponse:
    with session.exclusive():
        session.submit_tool_results(r.to_result() for r in body.results)

    if not body.resume:
        return RunResponse(
            session_id=session.session_id,
            status="SUSPENDED_FOR_CALLER",
            turn_count=session.turn_count,
        )

    result = _run(request, session, registry, None, RunOptions())
    return RunResponse.from_result(result)
