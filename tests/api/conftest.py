"""Shared fixtures for API tests.

The app is built with default configuration and every router's
``_get_store`` stub is overridden with an ``InMemoryRecordStore``.  The
lifespan never runs under ``ASGITransport``, so no database is touched.
"""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI

from teamcal.api.app import create_app
from teamcal.api.routers import availability, feeds, records
from teamcal.config import TeamcalConfig
from tests.conftest import InMemoryRecordStore

VIEWER_HEADERS = {"X-Viewer-Id": "v"}


def wire_store(app: FastAPI, store: InMemoryRecordStore) -> None:
    for module in (availability, feeds, records):
        app.dependency_overrides[module._get_store] = lambda: store


@pytest.fixture
def app(store: InMemoryRecordStore) -> FastAPI:
    application = create_app(TeamcalConfig())
    wire_store(application, store)
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as http:
        yield http
