"""
Pytest configuration and fixtures for ToolLoop tests.
"""

import pytest

from toolloop.config_loader import reset_config_cache
from toolloop.models import ModelResponse, ToolInvocationRequest
from toolloop.tools import ToolRegistry
from toolloop.tracing import shutdown_tracing


class ScriptedEndpoint:
    """
    Model endpoint that replays a fixed list of responses.

    Items may be ModelResponse instances, exceptions (raised), or callables
    taking the history and returning a ModelResponse.
    """

    model = "scripted-model"

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def invoke(self, history, tool_declarations, generation):
        self.calls.append(
            {
                "history": tuple(history),
                "tools": [d.name for d in tool_declarations],
                "generation": generation,
            }
        )
        if not self.responses:
            raise RuntimeError("ScriptedEndpoint ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(history)
        return item

    def close(self):
        pass


@pytest.fixture
def scripted_endpoint():
    """Factory: ``scripted_endpoint(resp1, resp2, ...)``."""

    def factory(*responses):
        return ScriptedEndpoint(responses)

    return factory


@pytest.fixture
def weather_request():
    """Factory for a getWeather tool request."""

    def factory(location="Baltimore", reference_id="call_1"):
        return ToolInvocationRequest(
            name="getWeather", input={"location": location}, reference_id=reference_id
        )

    return factory


@pytest.fixture
def weather_registry():
    """Registry with a getWeather tool that always reports 63°F and sunny."""
    registry = ToolRegistry()
    calls = []

    def get_weather(params):
        calls.append(params)
        return "63°F and sunny"

    registry.register(
        name="getWeather",
        description="Gets the current weather in a given location",
        handler=get_weather,
        input_schema={
            "type": "object",
            "properties": {"location": {"type": "string"}},
            "required": ["location"],
        },
    )
    registry.calls = calls
    return registry


@pytest.fixture
def final_answer():
    return ModelResponse.final("The current weather in Baltimore is 63°F and sunny.")


@pytest.fixture(autouse=True)
def reset_global_state():
    """Keep the process-level tracing client and config cache out of tests."""
    shutdown_tracing()
    reset_config_cache()
    yield
    shutdown_tracing()
    reset_config_cache()
