from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

import wayback_meta.workers.fetcher as fetcher_module
from wayback_meta.core.config import settings
from wayback_meta.main import app


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """No pacing or backoff waits unless a test asks for them."""
    monkeypatch.setattr(settings, "snapshot_delay", 0.0)
    monkeypatch.setattr(settings, "classifier_delay", 0.0)
    monkeypatch.setattr(settings, "http_backoff_base", 0.0)
    monkeypatch.setattr(settings, "snapshot_concurrency", 1)
    monkeypatch.setattr(settings, "classifier_api_key", None)


@pytest.fixture(autouse=True)
def fresh_http_client():
    """Each test gets its own shared AsyncClient, bound to its own event loop."""
    fetcher_module._http_client = None
    yield
    fetcher_module._http_client = None


@pytest.fixture
def client():
    """TestClient with the lifespan shutdown hook mocked."""
    with patch(
        "wayback_meta.main.close_http_client",
        new_callable=AsyncMock,
    ):
        with TestClient(app) as c:
            yield c
