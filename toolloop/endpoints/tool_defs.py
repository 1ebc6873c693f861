"""
Tool definitions in OpenAI function-calling format.

Converts registry declarations into the ``tools`` request parameter and
pydantic output schemas into a ``response_format`` block.
"""

import logging
from typing import Any, Sequence

from ..tools.registry import ToolDeclaration

logger = logging.getLogger(__name__)


def build_tool_definitions(declarations: Sequence[ToolDeclaration]) -> list[dict]:
    """
    Build OpenAI function-calling tool definitions from declarations.

    Args:
        declarations: Tools to advertise, in registry order.

    Returns:
        List of OpenAI-format tool definitions.
    """
    tools: list[dict] = []
    for declaration in declarations:
        parameters = declaration.input_json_schema
        if parameters.get("type") != "object":
            logger.warning(
                "Tool '%s' input schema is not an object schema; "
                "function calling expects one",
                declaration.name,
            )
        tools.append(
            {
                "type": "function",
                "function": {
                    "name": declaration.name,
                    "description": declaration.description,
                    "parameters": parameters,
                },
            }
        )
    return tools


def build_response_format(output_schema: Any) -> dict:
    """
    Build a ``response_format`` block requesting JSON matching a pydantic model.

    Args:
        output_schema: Pydantic model class describing the expected answer.
    """
    return {
        "type": "json_schema",
        "json_schema": {
            "name": output_schema.__name__,
            "schema": output_schema.model_json_schema(),
        },
    }
