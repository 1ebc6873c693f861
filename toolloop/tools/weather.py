"""
Current Weather Tool

Looks up current conditions for a location via the wttr.in JSON API.
"""

import logging

import requests
from pydantic import BaseModel, Field

from ..errors import ToolExecutionError
from ..models import ToolsConfig

logger = logging.getLogger(__name__)


class WeatherInput(BaseModel):
    location: str = Field(..., description="City or place name, e.g. 'Baltimore'")


class WeatherOutput(BaseModel):
    location: str
    temperature_f: float
    conditions: str


def get_weather(location: str, tools_config: ToolsConfig) -> WeatherOutput:
    """
    Fetch current weather for a location.

    Args:
        location: Place name understood by wttr.in
        tools_config: Endpoint and timeout settings

    Returns:
        WeatherOutput with temperature in Fahrenheit and a short description

    Raises:
        ToolExecutionError: If the location is empty or the API call fails
    """
    if not location or not location.strip():
        raise ToolExecutionError(
            'Location is empty. Please provide a location in format: {"location": "Baltimore"}',
            tool_name="get_weather",
        )

    url = f"{tools_config.weather_url.rstrip('/')}/{location.strip()}"
    try:
        response = requests.get(
            url, params={"format": "j1"}, timeout=tools_config.timeout
        )
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.RequestException as e:
        logger.error(f"Weather lookup failed: {e}")
        raise ToolExecutionError(f"Weather lookup failed: {e}", tool_name="get_weather") from e

    try:
        current = data["current_condition"][0]
        conditions = current["weatherDesc"][0]["value"]
        temperature = float(current["temp_F"])
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise ToolExecutionError(
            f"Unexpected weather API response: {e}", tool_name="get_weather"
        ) from e

    return WeatherOutput(
        location=location.strip(), temperature_f=temperature, conditions=conditions
    )


def register(registry, tools_config: ToolsConfig) -> None:
    """Register the weather tool with a registry."""

    def _handle(params: WeatherInput) -> WeatherOutput:
        return get_weather(params.location, tools_config)

    registry.register(
        name="get_weather",
        description="Get the current weather (temperature and conditions) for a location",
        handler=_handle,
        input_schema=WeatherInput,
        output_schema=WeatherOutput,
    )
