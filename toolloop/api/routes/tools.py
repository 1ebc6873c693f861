"""Tool listing endpoint."""

from fastapi import APIRouter, Depends

from ...tools import ToolRegistry
from ..dependencies import get_registry
from ..schemas import ToolInfo, ToolListResponse

router = APIRouter()


@router.get(
    "/v1/tools",
    response_model=ToolListResponse,
    summary="List tools",
    description="List the tools offered to the model, with their JSON schemas.",
)
def list_tools(registry: ToolRegistry = Depends(get_registry)) -> ToolListResponse:
    return ToolListResponse(
        data=[
            ToolInfo(
                name=declaration.name,
                description=declaration.description,
                input_schema=declaration.input_json_schema,
                output_schema=declaration.output_json_schema,
            )
            for declaration in registry.declarations()
        ]
    )
