"""Fixtures for API tests: an app wired to a scripted model endpoint."""

import pytest
from fastapi.testclient import TestClient

from toolloop.api.main import create_app
from toolloop.models import AppConfig, OrchestratorConfig
from toolloop.orchestration import SessionStore


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def make_client(scripted_endpoint, weather_registry, store):
    """Factory: ``make_client(resp1, resp2, ...)`` returns (client, endpoint)."""

    def factory(*responses, app_config=None):
        endpoint = scripted_endpoint(*responses)
        app = create_app(
            app_config=app_config or AppConfig(orchestrator=OrchestratorConfig(max_turns=3)),
            endpoint=endpoint,
            registry=weather_registry,
            store=store,
        )
        return TestClient(app), endpoint

    return factory
