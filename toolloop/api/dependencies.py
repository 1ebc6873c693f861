"""
Request-scoped access to the collaborators stored on ``app.state``.

``create_app`` wires the configuration, model endpoint, tool registry and
session store once; routes receive them through FastAPI dependencies so
tests can build an app around fakes.
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Request

from ..endpoints import ModelEndpoint
from ..models import AppConfig
from ..orchestration import OrchestrationSession, Orchestrator, SessionStore
from ..tools import ToolRegistry
from ..tracing import TracingContext, get_tracing_client


def get_app_config(request: Request) -> AppConfig:
    return request.app.state.app_config


def get_endpoint(request: Request) -> ModelEndpoint:
    return request.app.state.endpoint


def get_registry(request: Request) -> ToolRegistry:
    return request.app.state.registry


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


def get_session(
    session_id: str, store: SessionStore = Depends(get_store)
) -> OrchestrationSession:
    """Resolve a session id from the path or fail with 404."""
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return session


def new_execution_id() -> str:
    """Short id correlating log lines and traces for one request."""
    return f"exec-{uuid.uuid4().hex[:8]}"


def build_orchestrator(
    request: Request,
    execution_id: str,
    tracing_context: Optional[TracingContext] = None,
) -> Orchestrator:
    """Orchestrator for one request, sharing the app's endpoint."""
    app_config = get_app_config(request)
    return Orchestrator(
        endpoint=get_endpoint(request),
        settings=app_config.orchestrator,
        generation=app_config.generation,
        tracing_context=tracing_context,
        execution_id=execution_id,
    )


def flush_tracing() -> None:
    """Flush tracing client if available."""
    client = get_tracing_client()
    if client:
        client.flush()
