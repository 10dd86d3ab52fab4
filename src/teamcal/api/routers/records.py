"""Task, event and milestone mutation endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Response

from teamcal.api.deps import get_viewer
from teamcal.api.models import (
    ApiResponse,
    EventCreateRequest,
    EventUpdateRequest,
    MilestoneCreateRequest,
    MilestoneUpdateRequest,
    TaskCreateRequest,
    TaskProgressRequest,
    TaskUpdateRequest,
)
from teamcal.engine.models import Viewer
from teamcal.engine.records import RecordService
from teamcal.store import RecordStore

router = APIRouter(prefix="/api", tags=["tasks", "events", "milestones"])
logger = logging.getLogger(__name__)


def _get_store() -> RecordStore:
    """Dependency stub, overridden at app startup or in tests."""
    raise RuntimeError("RecordStore not initialized")


def _service(store: RecordStore = Depends(_get_store)) -> RecordService:
    return RecordService(store)


@router.post("/events", status_code=201, response_model=ApiResponse[dict[str, Any]])
async def create_event(
    request: EventCreateRequest,
    viewer: Viewer = Depends(get_viewer),
    service: RecordService = Depends(_service),
) -> ApiResponse[dict[str, Any]]:
    """Create an event owned by the viewer."""
    event = await service.create_event(viewer.user_id, request.to_document())
    return ApiResponse[dict[str, Any]](data=event)


@router.patch("/events/{event_id}", response_model=ApiResponse[dict[str, Any]])
async def update_event(
    event_id: str,
    request: EventUpdateRequest,
    viewer: Viewer = Depends(get_viewer),
    service: RecordService = Depends(_service),
) -> ApiResponse[dict[str, Any]]:
    event = await service.update_event(event_id, request.to_document(), viewer.user_id)
    return ApiResponse[dict[str, Any]](data=event)


@router.delete("/events/{event_id}", status_code=204)
async def delete_event(
    event_id: str,
    viewer: Viewer = Depends(get_viewer),
    service: RecordService = Depends(_service),
) -> Response:
    await service.delete_event(event_id, viewer.user_id)
    return Response(status_code=204)


@router.post(
    "/projects/{project_id}/milestones",
    status_code=201,
    response_model=ApiResponse[dict[str, Any]],
)
async def create_milestone(
    project_id: str,
    request: MilestoneCreateRequest,
    viewer: Viewer = Depends(get_viewer),
    service: RecordService = Depends(_service),
) -> ApiResponse[dict[str, Any]]:
    """Create a milestone; the viewer must be a member of the project."""
    milestone = await service.create_milestone(
        project_id, request.to_document(), viewer.user_id
    )
    return ApiResponse[dict[str, Any]](data=milestone)


@router.patch("/milestones/{milestone_id}", response_model=ApiResponse[dict[str, Any]])
async def update_milestone(
    milestone_id: str,
    request: MilestoneUpdateRequest,
    viewer: Viewer = Depends(get_viewer),
    service: RecordService = Depends(_service),
) -> ApiResponse[dict[str, Any]]:
    milestone = await service.update_milestone(
        milestone_id, request.to_document(), viewer.user_id
    )
    return ApiResponse[dict[str, Any]](data=milestone)


@router.post(
    "/projects/{project_id}/tasks",
    status_code=201,
    response_model=ApiResponse[dict[str, Any]],
)
async def create_task(
    project_id: str,
    request: TaskCreateRequest,
    viewer: Viewer = Depends(get_viewer),
    service: RecordService = Depends(_service),
) -> ApiResponse[dict[str, Any]]:
    """Create a task in a project the viewer belongs to; the viewer becomes its creator."""
    task = await service.create_task(project_id, request.to_document(), viewer.user_id)
    return ApiResponse[dict[str, Any]](data=task)


@router.patch("/tasks/{task_id}", response_model=ApiResponse[dict[str, Any]])
async def update_task(
    task_id: str,
    request: TaskUpdateRequest,
    viewer: Viewer = Depends(get_viewer),
    service: RecordService = Depends(_service),
) -> ApiResponse[dict[str, Any]]:
    task = await service.update_task(task_id, request.to_document(), viewer.user_id)
    return ApiResponse[dict[str, Any]](data=task)


@router.put("/tasks/{task_id}/progress", response_model=ApiResponse[dict[str, Any]])
async def update_task_progress(
    task_id: str,
    request: TaskProgressRequest,
    viewer: Viewer = Depends(get_viewer),
    service: RecordService = Depends(_service),
) -> ApiResponse[dict[str, Any]]:
    task = await service.update_task_progress(
        task_id, request.progress_percent, viewer.user_id
    )
    return ApiResponse[dict[str, Any]](data=task)


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(
    task_id: str,
    viewer: Viewer = Depends(get_viewer),
    service: RecordService = Depends(_service),
) -> Response:
    await service.delete_task(task_id, viewer.user_id)
    return Response(status_code=204)
