"""
FastAPI application for ToolLoop.

Usage:
    # Development server with auto-reload
    uvicorn toolloop.api.main:app --reload --host 0.0.0.0 --port 8000

    # Debug mode (verbose logging)
    LOG_LEVEL=DEBUG uvicorn toolloop.api.main:app --reload --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config_loader import load_app_config
from ..endpoints import ModelEndpoint, OpenAIModelEndpoint
from ..errors import (
    ConcurrentRunError,
    ModelEndpointError,
    OrchestrationError,
)
from ..models import AppConfig
from ..orchestration import SessionStore
from ..tools import ToolRegistry, register_default_tools
from ..tracing import init_tracing_client, shutdown_tracing
from .routes import chat, health, sessions, tools
from .schemas import ErrorDetail, ErrorResponse


def configure_logging(level: Optional[str] = None) -> None:
    """Configure logging from the LOG_LEVEL / logging.level setting."""
    level_name = level or load_app_config().log_level
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("toolloop").setLevel(log_level)


configure_logging()
logger = logging.getLogger(__name__)


def error_status(exc: OrchestrationError) -> int:
    """HTTP status for a fatal orchestration error."""
    if isinstance(exc, ConcurrentRunError):
        return 409
    if isinstance(exc, ModelEndpointError):
        return 502
    return 422


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    app_config: AppConfig = app.state.app_config
    registry: ToolRegistry = app.state.registry
    logger.info("Starting ToolLoop API server")

    logger.info("=" * 60)
    logger.info("MODEL ENDPOINT")
    logger.info("  Base URL: %s", app_config.model.base_url)
    logger.info("  Model: %s", app_config.model.model)
    logger.info("  Temperature: %s", app_config.generation.temperature)

    logger.info("-" * 60)
    logger.info("ORCHESTRATOR")
    logger.info("  Max Turns: %d", app_config.orchestrator.max_turns)
    logger.info("  Explicit Control: %s", app_config.orchestrator.explicit_control)
    logger.info("  Tool Workers: %d", app_config.orchestrator.max_tool_workers)
    logger.info("  Tool Timeout: %s", app_config.orchestrator.tool_timeout or "none")

    logger.info("-" * 60)
    logger.info("REGISTERED TOOLS")
    for name, tool in registry.all_tools().items():
        logger.info("  - %s: %s", name, tool.description[:60])

    logger.info("-" * 60)
    logger.info("LANGFUSE OBSERVABILITY")
    tracing_client = init_tracing_client(app_config.langfuse)
    if tracing_client.enabled:
        logger.info("  Status: ENABLED")
        logger.info("  Host: %s", app_config.langfuse.host or "https://cloud.langfuse.com")
    else:
        logger.info("  Status: DISABLED")
        if tracing_client.error:
            logger.info("  Reason: %s", tracing_client.error)

    logger.info("=" * 60)

    yield

    logger.info("Shutting down ToolLoop API server")
    shutdown_tracing()
    close = getattr(app.state.endpoint, "close", None)
    if callable(close):
        close()


def create_app(
    app_config: Optional[AppConfig] = None,
    endpoint: Optional[ModelEndpoint] = None,
    registry: Optional[ToolRegistry] = None,
    store: Optional[SessionStore] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_config: Configuration (loaded from YAML/environment if not provided)
        endpoint: Model endpoint (OpenAI-compatible client from config if not provided)
        registry: Tools offered to the model (the example tools if not provided)
        store: Session store (a fresh in-memory store if not provided)

    Returns:
        Configured FastAPI application instance.
    """
    app_config = app_config or load_app_config()

    app = FastAPI(
        title="ToolLoop API",
        description=(
            "Bounded tool-calling orchestration over an OpenAI-compatible model "
            "endpoint. Sessions support explicit control: the loop can hand tool "
            "requests back to the client and resume once results are posted."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.app_config = app_config
    app.state.endpoint = endpoint or OpenAIModelEndpoint.from_config(app_config.model)
    app.state.registry = (
        registry
        if registry is not None
        else register_default_tools(ToolRegistry(), app_config.tools)
    )
    app.state.store = store if store is not None else SessionStore()

    # CORS middleware - allow all origins for development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(tools.router, tags=["Tools"])
    app.include_router(sessions.router, tags=["Sessions"])
    app.include_router(chat.router, tags=["Chat"])

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Log validation errors before returning 400 response."""
        logger.warning(
            "Validation error on %s %s: %s", request.method, request.url.path, exc.errors()
        )
        body = await request.body()
        logger.debug("Request body: %s", body.decode("utf-8", errors="replace")[:1000])
        return JSONResponse(status_code=400, content={"detail": exc.errors()})

    @app.exception_handler(OrchestrationError)
    async def orchestration_exception_handler(
        request: Request, exc: OrchestrationError
    ) -> JSONResponse:
        """Translate fatal orchestration errors into status codes."""
        status_code = error_status(exc)
        logger.warning(
            "%s on %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.message,
        )
        error = ErrorResponse(
            error=ErrorDetail(
                message=exc.message,
                type=type(exc).__name__,
                code=str(status_code),
                session_id=exc.session_id,
                turn_count=exc.turn_count,
            )
        )
        return JSONResponse(status_code=status_code, content=error.model_dump())

    return app


# Create the application instance
app = create_app()


def run_server():
    """
    Run the server using uvicorn.

    This is the entry point for running the server programmatically.
    """
    import uvicorn

    server = load_app_config().server
    uvicorn.run(
        "toolloop.api.main:app",
        host=server.host,
        port=server.port,
        reload=server.reload,
        workers=1 if server.reload else server.workers,
    )


if __name__ == "__main__":
    run_server()
