"""Health check endpoints."""

from fastapi import APIRouter, Depends

from ... import __version__
from ...models import AppConfig
from ..dependencies import get_app_config
from ..schemas import HealthResponse

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check if the API server is running and healthy.",
)
def health_check(app_config: AppConfig = Depends(get_app_config)) -> HealthResponse:
    """Return health status of the API server."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        model=app_config.model.model,
    )
