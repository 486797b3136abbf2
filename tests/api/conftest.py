"""Fixtures for the HTTP surface: a TestClient over the shared test engine."""

import pytest
from fastapi.testclient import TestClient

from approval_api.app import create_app
from approval_config.settings import EngineSettings


@pytest.fixture
def app(engine):
    return create_app(engine=engine, settings=EngineSettings(load_builtin_templates=False))


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
