"""Calendar feed endpoints: self, team and project views."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from teamcal.api.deps import build_feed_composer, get_config, get_viewer
from teamcal.api.models import ApiResponse
from teamcal.config import TeamcalConfig
from teamcal.core.logging import set_feed_scope
from teamcal.engine.feeds import FeedComposer
from teamcal.engine.models import Feed, FeedWindow, Viewer
from teamcal.store import RecordStore

router = APIRouter(prefix="/api/calendar/feeds", tags=["calendar", "feeds"])
logger = logging.getLogger(__name__)


def _get_store() -> RecordStore:
    """Dependency stub, overridden at app startup or in tests."""
    raise RuntimeError("RecordStore not initialized")


def _composer(
    store: RecordStore = Depends(_get_store),
    config: TeamcalConfig = Depends(get_config),
) -> FeedComposer:
    return build_feed_composer(store, config)


def _window(
    start: datetime = Query(..., description="Inclusive ISO-8601 window start"),
    end: datetime = Query(..., description="Inclusive ISO-8601 window end"),
) -> FeedWindow:
    return FeedWindow.between(start, end)


@router.get("/me", response_model=ApiResponse[Feed])
async def get_self_feed(
    viewer: Viewer = Depends(get_viewer),
    window: FeedWindow = Depends(_window),
    composer: FeedComposer = Depends(_composer),
) -> ApiResponse[Feed]:
    """Return the viewer's own events and projected tasks, unredacted."""
    set_feed_scope("self")
    feed = await composer.self_feed(viewer, window)
    return ApiResponse[Feed](data=feed)


@router.get("/team/{organization_id}", response_model=ApiResponse[Feed])
async def get_team_feed(
    organization_id: str,
    viewer: Viewer = Depends(get_viewer),
    window: FeedWindow = Depends(_window),
    composer: FeedComposer = Depends(_composer),
) -> ApiResponse[Feed]:
    """Return shared items across an organization, privacy-filtered for the viewer."""
    set_feed_scope(f"team:{organization_id}")
    feed = await composer.team_feed(viewer, organization_id, window)
    return ApiResponse[Feed](data=feed, meta={"skipped_members": feed.skipped_members})


@router.get("/project/{project_id}", response_model=ApiResponse[Feed])
async def get_project_feed(
    project_id: str,
    viewer: Viewer = Depends(get_viewer),
    window: FeedWindow = Depends(_window),
    composer: FeedComposer = Depends(_composer),
) -> ApiResponse[Feed]:
    """Return a project's tasks, milestones and shared events."""
    set_feed_scope(f"project:{project_id}")
    feed = await composer.project_feed(viewer, project_id, window)
    return ApiResponse[Feed](data=feed)
