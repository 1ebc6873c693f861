"""
Game of Thrones Quotes Tool

Retrieves character quotes from the free gameofthronesquotes.xyz API.
"""

import logging

import requests
from pydantic import BaseModel, Field

from ..errors import ToolExecutionError
from ..models import ToolsConfig

logger = logging.getLogger(__name__)


class QuotesInput(BaseModel):
    name: str = Field(..., description="Character name of Game of Thrones")
    num_quotes: int = Field(default=1, ge=1, le=10, description="Number of quotes to retrieve")


class QuotesOutput(BaseModel):
    quotes: list[str] = Field(default_factory=list, description="Array of quotes")


def character_slug(name: str) -> str:
    """The API keys authors by lowercase first name ("Joffrey Lannister" -> "joffrey")."""
    parts = name.split()
    return parts[0].lower() if parts else ""


def get_character_quotes(
    name: str, num_quotes: int, tools_config: ToolsConfig
) -> QuotesOutput:
    """
    Fetch quotes said by a character.

    Raises:
        ToolExecutionError: If the name is empty or the API call fails
    """
    slug = character_slug(name or "")
    if not slug:
        raise ToolExecutionError(
            'Character name is empty. Please provide input in format: {"name": "Tyrion Lannister"}',
            tool_name="get_character_quotes",
        )

    url = f"{tools_config.quotes_url.rstrip('/')}/{slug}/{num_quotes}"
    try:
        response = requests.get(url, timeout=tools_config.timeout)
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.RequestException as e:
        logger.error(f"Quotes lookup failed: {e}")
        raise ToolExecutionError(
            f"Quotes lookup failed: {e}", tool_name="get_character_quotes"
        ) from e

    # A single quote comes back as an object rather than a list
    items = data if isinstance(data, list) else [data]
    quotes = [item["sentence"] for item in items if isinstance(item, dict) and item.get("sentence")]
    logger.debug("Retrieved %d quotes for %s", len(quotes), slug)
    return QuotesOutput(quotes=quotes)


def register(registry, tools_config: ToolsConfig) -> None:
    """Register the quotes tool with a registry."""

    def _handle(params: QuotesInput) -> QuotesOutput:
        return get_character_quotes(params.name, params.num_quotes, tools_config)

    registry.register(
        name="get_character_quotes",
        description="A free API to retrieve some quotes of Game of Thrones characters",
        handler=_handle,
        input_schema=QuotesInput,
        output_schema=QuotesOutput,
    )
