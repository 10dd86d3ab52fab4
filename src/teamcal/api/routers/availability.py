"""Availability endpoints: cached read with lazy compute, forced recompute.

A viewer may read their own availability or that of anyone they share an
organization with.  Only the user themselves may force a recompute.
"""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends

from teamcal.api.deps import build_availability_computer, get_config, get_viewer
from teamcal.api.models import ApiResponse, AvailabilityResponse
from teamcal.config import TeamcalConfig
from teamcal.engine.availability import AvailabilityComputer
from teamcal.engine.models import Viewer
from teamcal.errors import PermissionDeniedError
from teamcal.store import RecordStore

router = APIRouter(prefix="/api/availability", tags=["availability"])
logger = logging.getLogger(__name__)


def _get_store() -> RecordStore:
    """Dependency stub, overridden at app startup or in tests."""
    raise RuntimeError("RecordStore not initialized")


def _computer(
    store: RecordStore = Depends(_get_store),
    config: TeamcalConfig = Depends(get_config),
) -> AvailabilityComputer:
    return build_availability_computer(store, config)


@router.get("/{user_id}/{day}", response_model=ApiResponse[AvailabilityResponse])
async def get_availability(
    user_id: str,
    day: date,
    viewer: Viewer = Depends(get_viewer),
    computer: AvailabilityComputer = Depends(_computer),
) -> ApiResponse[AvailabilityResponse]:
    """Return the cached summary for ``(user_id, day)``, computing it on first read."""
    await computer.check_read_access(viewer.user_id, user_id)
    snapshot = await computer.get(user_id, day)
    return ApiResponse[AvailabilityResponse](data=AvailabilityResponse.from_snapshot(snapshot))


@router.post("/{user_id}/{day}/recompute", response_model=ApiResponse[AvailabilityResponse])
async def recompute_availability(
    user_id: str,
    day: date,
    viewer: Viewer = Depends(get_viewer),
    computer: AvailabilityComputer = Depends(_computer),
) -> ApiResponse[AvailabilityResponse]:
    """Recompute and overwrite the cached summary for ``(user_id, day)``."""
    if viewer.user_id != user_id:
        raise PermissionDeniedError(
            "Only the user can recompute their own availability",
            details={"user_id": user_id},
        )
    await computer.compute(user_id, day, requested_by=viewer.user_id)
    snapshot = await computer.get(user_id, day)
    logger.info("Availability recomputed on request: user=%s date=%s", user_id, day)
    return ApiResponse[AvailabilityResponse](data=AvailabilityResponse.from_snapshot(snapshot))
