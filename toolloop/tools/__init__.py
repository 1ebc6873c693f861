"""
ToolLoop Tools Package

Available tools:
- get_weather: Current weather via wttr.in
- get_character_quotes: Game of Thrones character quotes
"""

from typing import Optional

from ..models import ToolsConfig
from . import quotes, weather
from .registry import ToolContext, ToolDeclaration, ToolDefinition, ToolRegistry


def register_default_tools(
    registry: ToolRegistry, tools_config: Optional[ToolsConfig] = None
) -> ToolRegistry:
    """Install the example HTTP tools into a registry and return it."""
    tools_config = tools_config or ToolsConfig()
    weather.register(registry, tools_config)
    quotes.register(registry, tools_config)
    return registry


__all__ = [
    "ToolContext",
    "ToolDeclaration",
    "ToolDefinition",
    "ToolRegistry",
    "register_default_tools",
]
