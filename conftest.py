"""Root conftest: shared test doubles and fixtures for the teamcal suite.

``InMemoryRecordStore`` implements the full ``RecordStore`` contract over plain
dicts, mirroring the filtering done by the SQL in ``PostgresRecordStore`` so
engine and API tests can run without a database.  ``tests/conftest.py``
re-exports everything defined here.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

import pytest

from teamcal.engine.models import AvailabilitySnapshot, OrganizationMembership, Project
from teamcal.engine.normalizer import coerce_datetime
from teamcal.store import RecordStore


def at(hour: int, minute: int = 0, *, day: int = 10) -> datetime:
    """A UTC instant on 2025-03-``day``."""
    return datetime(2025, 3, day, hour, minute, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Raw document factories (stored camelCase shape)
# ---------------------------------------------------------------------------


def make_event_row(
    *,
    id: str | None = None,
    user_id: str = "u-owner",
    title: str = "Planning",
    start: datetime | None = None,
    end: datetime | None = None,
    privacy: str = "BusyOnly",
    audience: str = "Business",
    blocking_policy: str = "SoftBlock",
    category: str | None = "Work",
    project_id: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    start = start or at(9)
    return {
        "id": id or f"evt-{uuid.uuid4().hex[:8]}",
        "userId": user_id,
        "title": title,
        "startTime": start,
        "endTime": end or start.replace(hour=min(start.hour + 1, 23)),
        "privacy": privacy,
        "audience": audience,
        "blockingPolicy": blocking_policy,
        "category": category,
        "projectId": project_id,
        "description": "agenda",
        "location": "Room 4",
        **extra,
    }


def make_task_row(
    *,
    id: str | None = None,
    created_by: str = "u-owner",
    assignees: Sequence[str] = (),
    title: str = "Write report",
    deadline: datetime | None = None,
    share_policy: str = "StatusOnly",
    audience: str = "Business",
    projection: str = "Show",
    status: str = "in_progress",
    project_id: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": id or f"task-{uuid.uuid4().hex[:8]}",
        "createdBy": created_by,
        "assignees": list(assignees),
        "title": title,
        "description": "details",
        "deadline": deadline or at(12),
        "sharePolicy": share_policy,
        "audience": audience,
        "calendarProjection": projection,
        "status": status,
        "progressPercent": 40,
        "projectId": project_id,
        **extra,
    }


def make_milestone_row(
    *,
    id: str | None = None,
    project_id: str = "p-1",
    title: str = "Beta",
    due: datetime | None = None,
    visibility: str = "ProjectMembers",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": id or f"ms-{uuid.uuid4().hex[:8]}",
        "projectId": project_id,
        "title": title,
        "dueDate": due or at(17),
        "visibility": visibility,
        "status": "pending",
        **extra,
    }


# ---------------------------------------------------------------------------
# In-memory record store
# ---------------------------------------------------------------------------


def _start_of(doc: Mapping[str, Any], *keys: str) -> datetime | None:
    for key in keys:
        value = coerce_datetime(doc.get(key))
        if value is not None:
            return value
    return None


@dataclass
class InMemoryRecordStore(RecordStore):
    """Dict-backed ``RecordStore`` with per-call failure injection."""

    tasks: list[dict[str, Any]] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    milestones: list[dict[str, Any]] = field(default_factory=list)
    organizations: dict[str, dict[str, Any]] = field(default_factory=dict)
    memberships: list[OrganizationMembership] = field(default_factory=list)
    projects: dict[str, Project] = field(default_factory=dict)
    users: dict[str, dict[str, Any]] = field(default_factory=dict)
    availability: dict[str, AvailabilitySnapshot] = field(default_factory=dict)
    activity: list[dict[str, Any]] = field(default_factory=list)
    failing_task_owners: set[str] = field(default_factory=set)
    failing_event_owners: set[str] = field(default_factory=set)
    fail_activity: bool = False
    calls: list[str] = field(default_factory=list)

    # -- seeding helpers -----------------------------------------------------

    def add_organization(
        self, organization_id: str, members: Mapping[str, str] | Sequence[str]
    ) -> None:
        self.organizations[organization_id] = {"id": organization_id, "name": organization_id}
        roles = members if isinstance(members, Mapping) else dict.fromkeys(members, "member")
        for user_id, role in roles.items():
            self.memberships.append(OrganizationMembership(organization_id, user_id, role))
            self.users.setdefault(user_id, {"id": user_id})

    def add_project(self, project_id: str, members: Sequence[str]) -> None:
        self.projects[project_id] = Project(id=project_id, members=frozenset(members))

    # -- tasks ---------------------------------------------------------------

    def _tasks(self, predicate, projection: str) -> list[dict[str, Any]]:
        return [
            dict(task)
            for task in self.tasks
            if predicate(task) and task.get("calendarProjection", "Hide") == projection
        ]

    async def list_tasks_created_by(
        self, user_id: str, *, projection: str = "Show"
    ) -> list[dict[str, Any]]:
        self.calls.append(f"tasks_created_by:{user_id}")
        if user_id in self.failing_task_owners:
            raise RuntimeError(f"task query failed for {user_id}")
        return self._tasks(lambda t: t.get("createdBy") == user_id, projection)

    async def list_tasks_assigned_to(
        self, user_id: str, *, projection: str = "Show"
    ) -> list[dict[str, Any]]:
        self.calls.append(f"tasks_assigned_to:{user_id}")
        return self._tasks(lambda t: user_id in (t.get("assignees") or ()), projection)

    async def list_project_tasks(
        self, project_id: str, *, projection: str = "Show"
    ) -> list[dict[str, Any]]:
        return self._tasks(lambda t: t.get("projectId") == project_id, projection)

    async def get_task(self, task_id: str) -> dict[str, Any] | None:
        return next((dict(t) for t in self.tasks if t["id"] == task_id), None)

    async def insert_task(self, doc: Mapping[str, Any]) -> str:
        task_id = f"task-{len(self.tasks) + 1}"
        self.tasks.append({**doc, "id": task_id})
        return task_id

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> None:
        for task in self.tasks:
            if task["id"] == task_id:
                task.update(changes)

    async def delete_task(self, task_id: str) -> None:
        self.tasks = [t for t in self.tasks if t["id"] != task_id]

    # -- events --------------------------------------------------------------

    def _events(self, predicate, start: datetime, end: datetime) -> list[dict[str, Any]]:
        matched = []
        for event in self.events:
            event_start = _start_of(event, "startTime")
            if event_start is not None and start <= event_start <= end and predicate(event):
                matched.append(dict(event))
        return matched

    async def list_events_for_user(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        if user_id in self.failing_event_owners:
            raise RuntimeError(f"event query failed for {user_id}")
        return self._events(lambda e: e.get("userId") == user_id, start, end)

    async def list_events_by_audience(
        self,
        audiences: Sequence[str],
        start: datetime,
        end: datetime,
        *,
        owner_ids: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        return self._events(
            lambda e: e.get("audience") in audiences
            and (owner_ids is None or e.get("userId") in owner_ids),
            start,
            end,
        )

    async def list_project_events(
        self, project_id: str, audiences: Sequence[str], start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        return self._events(
            lambda e: e.get("projectId") == project_id and e.get("audience") in audiences,
            start,
            end,
        )

    async def get_event(self, event_id: str) -> dict[str, Any] | None:
        return next((dict(e) for e in self.events if e["id"] == event_id), None)

    async def insert_event(self, doc: Mapping[str, Any]) -> str:
        event_id = f"evt-{len(self.events) + 1}"
        self.events.append({**doc, "id": event_id})
        return event_id

    async def update_event(self, event_id: str, changes: Mapping[str, Any]) -> None:
        for event in self.events:
            if event["id"] == event_id:
                event.update(changes)

    async def delete_event(self, event_id: str) -> None:
        self.events = [e for e in self.events if e["id"] != event_id]

    # -- milestones ----------------------------------------------------------

    async def list_project_milestones(
        self, project_id: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        return [
            dict(m)
            for m in self.milestones
            if m.get("projectId") == project_id
            and (due := _start_of(m, "dueDate")) is not None
            and start <= due <= end
        ]

    async def get_milestone(self, milestone_id: str) -> dict[str, Any] | None:
        return next((dict(m) for m in self.milestones if m["id"] == milestone_id), None)

    async def insert_milestone(self, doc: Mapping[str, Any]) -> str:
        milestone_id = f"ms-{len(self.milestones) + 1}"
        self.milestones.append({**doc, "id": milestone_id})
        return milestone_id

    async def update_milestone(self, milestone_id: str, changes: Mapping[str, Any]) -> None:
        for milestone in self.milestones:
            if milestone["id"] == milestone_id:
                milestone.update(changes)

    # -- organizations, projects, users -------------------------------------

    async def get_organization(self, organization_id: str) -> dict[str, Any] | None:
        return self.organizations.get(organization_id)

    async def list_organization_members(
        self, organization_id: str
    ) -> list[OrganizationMembership]:
        return [m for m in self.memberships if m.organization_id == organization_id]

    async def list_user_organization_ids(self, user_id: str) -> list[str]:
        return sorted({m.organization_id for m in self.memberships if m.user_id == user_id})

    async def get_project(self, project_id: str) -> Project | None:
        return self.projects.get(project_id)

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        return self.users.get(user_id)

    async def list_user_ids(self) -> list[str]:
        return sorted(self.users)

    # -- availability and activity ------------------------------------------

    async def get_availability(self, user_id: str, day: date) -> AvailabilitySnapshot | None:
        return self.availability.get(f"{user_id}_{day.isoformat()}")

    async def upsert_availability(self, snapshot: AvailabilitySnapshot) -> None:
        self.availability[snapshot.key] = snapshot

    async def append_activity(
        self, event_type: str, user_id: str | None, metadata: Mapping[str, Any]
    ) -> None:
        if self.fail_activity:
            raise RuntimeError("activity log unavailable")
        self.activity.append(
            {
                "eventType": event_type,
                "userId": user_id,
                "metadata": dict(metadata),
                "timestamp": datetime.now(UTC),
            }
        )


@pytest.fixture
def store() -> InMemoryRecordStore:
    """A fresh, empty in-memory record store."""
    return InMemoryRecordStore()
