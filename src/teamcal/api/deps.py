"""Dependency injection for the HTTP API.

Holds the process-wide configuration and record store, and exposes them (and
the engine services built on them) as FastAPI dependencies.  Routers declare a
``_get_store`` stub that :func:`wire_store_dependencies` overrides at startup;
tests override the same stub with an in-memory store.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import FastAPI, Header

from teamcal.config import TeamcalConfig
from teamcal.core.logging import set_viewer_context
from teamcal.engine.availability import AvailabilityComputer
from teamcal.engine.feeds import FeedComposer
from teamcal.engine.models import Viewer
from teamcal.errors import UnauthenticatedError
from teamcal.store import RecordStore

logger = logging.getLogger(__name__)

VIEWER_HEADER = "X-Viewer-Id"

# ---------------------------------------------------------------------------
# Configuration singleton
# ---------------------------------------------------------------------------

_config: TeamcalConfig | None = None


def init_config(config: TeamcalConfig) -> TeamcalConfig:
    """Install the configuration singleton. Called once during app startup."""
    global _config  # noqa: PLW0603
    _config = config
    return config


def get_config() -> TeamcalConfig:
    """FastAPI dependency: the loaded configuration (defaults before startup)."""
    return _config if _config is not None else TeamcalConfig()


# ---------------------------------------------------------------------------
# RecordStore singleton
# ---------------------------------------------------------------------------

_store: RecordStore | None = None


def init_store(store: RecordStore) -> RecordStore:
    global _store  # noqa: PLW0603
    _store = store
    return store


def shutdown_store() -> None:
    global _store  # noqa: PLW0603
    _store = None


def get_store() -> RecordStore:
    """FastAPI dependency: provides the RecordStore singleton."""
    if _store is None:
        raise RuntimeError("RecordStore not initialized; call init_store() first")
    return _store


def wire_store_dependencies(app: FastAPI) -> None:
    """Override every router-level ``_get_store`` stub with the singleton."""
    from teamcal.api.routers import availability, feeds, records

    for module in (availability, feeds, records):
        app.dependency_overrides[module._get_store] = get_store
        logger.debug("Wired store dependency for router module: %s", module.__name__)


# ---------------------------------------------------------------------------
# Request-scoped dependencies
# ---------------------------------------------------------------------------


def get_viewer(x_viewer_id: str | None = Header(None, alias=VIEWER_HEADER)) -> Viewer:
    """Resolve the authenticated viewer from the upstream identity header."""
    user_id = (x_viewer_id or "").strip()
    if not user_id:
        raise UnauthenticatedError(f"Missing {VIEWER_HEADER} header")
    set_viewer_context(user_id)
    return Viewer(user_id=user_id)


def build_feed_composer(store: RecordStore, config: TeamcalConfig) -> FeedComposer:
    return FeedComposer(
        store,
        member_failure_policy=config.feeds.member_failure_policy,
        max_window=timedelta(days=config.feeds.max_window_days),
    )


def build_availability_computer(
    store: RecordStore, config: TeamcalConfig
) -> AvailabilityComputer:
    return AvailabilityComputer(
        store,
        workday_hours=config.availability.workday_hours,
        batch_concurrency=config.availability.batch_concurrency,
    )

