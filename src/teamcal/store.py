"""Record store access for calendar documents.

``RecordStore`` is the interface the engine depends on; composers and the
availability computer receive an instance explicitly instead of reaching for
a process-wide handle.  ``PostgresRecordStore`` implements it on top of an
asyncpg pool.

Each collection table keeps the full document in a ``doc`` JSONB column and
promotes the fields that queries filter on (owner, project, audience, start
time, ...) into ordinary indexed columns.  Readers get plain dicts: the
decoded document plus its ``id``.
"""

from __future__ import annotations

import abc
import json
import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

from teamcal.db import Database
from teamcal.engine.models import AvailabilitySnapshot, OrganizationMembership, Project
from teamcal.engine.normalizer import coerce_datetime

logger = logging.getLogger(__name__)

Document = dict[str, Any]


class RecordStore(abc.ABC):
    """Typed read/write operations over the calendar collections."""

    # -- tasks ---------------------------------------------------------------

    @abc.abstractmethod
    async def list_tasks_created_by(
        self, user_id: str, *, projection: str = "Show"
    ) -> list[Document]:
        """Tasks whose ``createdBy`` is *user_id* and that project onto calendars."""

    @abc.abstractmethod
    async def list_tasks_assigned_to(
        self, user_id: str, *, projection: str = "Show"
    ) -> list[Document]:
        """Tasks listing *user_id* among their ``assignees``."""

    @abc.abstractmethod
    async def list_project_tasks(
        self, project_id: str, *, projection: str = "Show"
    ) -> list[Document]:
        """Tasks belonging to *project_id*."""

    @abc.abstractmethod
    async def get_task(self, task_id: str) -> Document | None: ...

    @abc.abstractmethod
    async def insert_task(self, doc: Mapping[str, Any]) -> str:
        """Insert a new task document and return its id."""

    @abc.abstractmethod
    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> None:
        """Merge *changes* into the task and refresh its promoted columns."""

    @abc.abstractmethod
    async def delete_task(self, task_id: str) -> None: ...

    # -- events --------------------------------------------------------------

    @abc.abstractmethod
    async def list_events_for_user(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[Document]:
        """Events owned by *user_id* starting within ``[start, end]``."""

    @abc.abstractmethod
    async def list_events_by_audience(
        self,
        audiences: Sequence[str],
        start: datetime,
        end: datetime,
        *,
        owner_ids: Sequence[str] | None = None,
    ) -> list[Document]:
        """Events whose audience is in *audiences*, optionally limited to *owner_ids*."""

    @abc.abstractmethod
    async def list_project_events(
        self, project_id: str, audiences: Sequence[str], start: datetime, end: datetime
    ) -> list[Document]:
        """Project-scoped events whose audience is in *audiences*."""

    @abc.abstractmethod
    async def get_event(self, event_id: str) -> Document | None: ...

    @abc.abstractmethod
    async def insert_event(self, doc: Mapping[str, Any]) -> str:
        """Insert a new event document and return its id."""

    @abc.abstractmethod
    async def update_event(self, event_id: str, changes: Mapping[str, Any]) -> None: ...

    @abc.abstractmethod
    async def delete_event(self, event_id: str) -> None: ...

    # -- milestones ----------------------------------------------------------

    @abc.abstractmethod
    async def list_project_milestones(
        self, project_id: str, start: datetime, end: datetime
    ) -> list[Document]:
        """Milestones of *project_id* due within ``[start, end]``."""

    @abc.abstractmethod
    async def get_milestone(self, milestone_id: str) -> Document | None: ...

    @abc.abstractmethod
    async def insert_milestone(self, doc: Mapping[str, Any]) -> str: ...

    @abc.abstractmethod
    async def update_milestone(self, milestone_id: str, changes: Mapping[str, Any]) -> None: ...

    # -- organizations, projects, users -------------------------------------

    @abc.abstractmethod
    async def get_organization(self, organization_id: str) -> Document | None: ...

    @abc.abstractmethod
    async def list_organization_members(
        self, organization_id: str
    ) -> list[OrganizationMembership]: ...

    @abc.abstractmethod
    async def list_user_organization_ids(self, user_id: str) -> list[str]:
        """Ids of the organizations *user_id* belongs to."""

    @abc.abstractmethod
    async def get_project(self, project_id: str) -> Project | None: ...

    @abc.abstractmethod
    async def get_user(self, user_id: str) -> Document | None: ...

    @abc.abstractmethod
    async def list_user_ids(self) -> list[str]: ...

    # -- availability and activity ------------------------------------------

    @abc.abstractmethod
    async def get_availability(self, user_id: str, day: date) -> AvailabilitySnapshot | None: ...

    @abc.abstractmethod
    async def upsert_availability(self, snapshot: AvailabilitySnapshot) -> None:
        """Write *snapshot*, replacing any existing row with the same key."""

    @abc.abstractmethod
    async def append_activity(
        self, event_type: str, user_id: str | None, metadata: Mapping[str, Any]
    ) -> None:
        """Append one immutable activity-log entry."""


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------


def decode_doc(row: Mapping[str, Any]) -> Document:
    """Turn a ``(id, doc)`` row into a plain document dict."""
    raw = row["doc"]
    if isinstance(raw, str):
        raw = json.loads(raw)
    doc = dict(raw) if isinstance(raw, Mapping) else {}
    doc["id"] = str(row["id"])
    return doc


def _dumps(doc: Mapping[str, Any]) -> str:
    return json.dumps(doc, default=_json_default)


def _json_default(value: object) -> str:
    if isinstance(value, datetime | date):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class PostgresRecordStore(RecordStore):
    """``RecordStore`` backed by the tables created in ``alembic/versions/core``."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def _fetch_docs(self, query: str, *args: Any) -> list[Document]:
        rows = await self._db.fetch(query, *args)
        return [decode_doc(row) for row in rows]

    async def _fetch_doc(self, query: str, *args: Any) -> Document | None:
        row = await self._db.fetchrow(query, *args)
        return decode_doc(row) if row is not None else None

    # -- tasks ---------------------------------------------------------------

    async def list_tasks_created_by(
        self, user_id: str, *, projection: str = "Show"
    ) -> list[Document]:
        return await self._fetch_docs(
            "SELECT id, doc FROM tasks WHERE created_by = $1 AND calendar_projection = $2 "
            "ORDER BY created_at",
            user_id,
            projection,
        )

    async def list_tasks_assigned_to(
        self, user_id: str, *, projection: str = "Show"
    ) -> list[Document]:
        return await self._fetch_docs(
            "SELECT id, doc FROM tasks WHERE $1 = ANY(assignees) AND calendar_projection = $2 "
            "ORDER BY created_at",
            user_id,
            projection,
        )

    async def list_project_tasks(
        self, project_id: str, *, projection: str = "Show"
    ) -> list[Document]:
        return await self._fetch_docs(
            "SELECT id, doc FROM tasks WHERE project_id = $1 AND calendar_projection = $2 "
            "ORDER BY created_at",
            project_id,
            projection,
        )

    async def get_task(self, task_id: str) -> Document | None:
        return await self._fetch_doc("SELECT id, doc FROM tasks WHERE id = $1", task_id)

    async def insert_task(self, doc: Mapping[str, Any]) -> str:
        task_id = await self._db.fetchval(
            """
            INSERT INTO tasks (created_by, assignees, project_id, calendar_projection, doc)
            VALUES ($1, $2::text[], $3, $4, $5::jsonb)
            RETURNING id
            """,
            doc.get("createdBy"),
            list(doc.get("assignees") or ()),
            doc.get("projectId"),
            doc.get("calendarProjection") or "Hide",
            _dumps(doc),
        )
        return str(task_id)

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> None:
        # created_by and project_id are immutable; the other promoted columns
        # follow the merged document.
        await self._db.execute(
            """
            UPDATE tasks
            SET doc = doc || $2::jsonb,
                assignees = CASE
                    WHEN jsonb_typeof((doc || $2::jsonb)->'assignees') = 'array'
                    THEN ARRAY(
                        SELECT jsonb_array_elements_text((doc || $2::jsonb)->'assignees')
                    )
                    ELSE '{}'::text[]
                END,
                calendar_projection = COALESCE((doc || $2::jsonb)->>'calendarProjection', 'Hide')
            WHERE id = $1
            """,
            task_id,
            _dumps(changes),
        )

    async def delete_task(self, task_id: str) -> None:
        await self._db.execute("DELETE FROM tasks WHERE id = $1", task_id)

    # -- events --------------------------------------------------------------

    async def list_events_for_user(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[Document]:
        return await self._fetch_docs(
            "SELECT id, doc FROM events WHERE user_id = $1 "
            "AND start_time >= $2 AND start_time <= $3 ORDER BY start_time, id",
            user_id,
            start,
            end,
        )

    async def list_events_by_audience(
        self,
        audiences: Sequence[str],
        start: datetime,
        end: datetime,
        *,
        owner_ids: Sequence[str] | None = None,
    ) -> list[Document]:
        if owner_ids is None:
            return await self._fetch_docs(
                "SELECT id, doc FROM events WHERE audience = ANY($1::text[]) "
                "AND start_time >= $2 AND start_time <= $3 ORDER BY start_time, id",
                list(audiences),
                start,
                end,
            )
        return await self._fetch_docs(
            "SELECT id, doc FROM events WHERE audience = ANY($1::text[]) "
            "AND start_time >= $2 AND start_time <= $3 AND user_id = ANY($4::text[]) "
            "ORDER BY start_time, id",
            list(audiences),
            start,
            end,
            list(owner_ids),
        )

    async def list_project_events(
        self, project_id: str, audiences: Sequence[str], start: datetime, end: datetime
    ) -> list[Document]:
        return await self._fetch_docs(
            "SELECT id, doc FROM events WHERE project_id = $1 AND audience = ANY($2::text[]) "
            "AND start_time >= $3 AND start_time <= $4 ORDER BY start_time, id",
            project_id,
            list(audiences),
            start,
            end,
        )

    async def get_event(self, event_id: str) -> Document | None:
        return await self._fetch_doc("SELECT id, doc FROM events WHERE id = $1", event_id)

    async def insert_event(self, doc: Mapping[str, Any]) -> str:
        event_id = await self._db.fetchval(
            """
            INSERT INTO events (user_id, project_id, audience, start_time, doc)
            VALUES ($1, $2, $3, $4, $5::jsonb)
            RETURNING id
            """,
            doc.get("userId"),
            doc.get("projectId"),
            doc.get("audience"),
            coerce_datetime(doc.get("startTime")),
            _dumps(doc),
        )
        return str(event_id)

    async def update_event(self, event_id: str, changes: Mapping[str, Any]) -> None:
        # Promoted columns are recomputed from the merged document.
        await self._db.execute(
            """
            UPDATE events
            SET doc = doc || $2::jsonb,
                project_id = (doc || $2::jsonb)->>'projectId',
                audience = (doc || $2::jsonb)->>'audience',
                start_time = COALESCE($3, start_time),
                updated_at = now()
            WHERE id = $1
            """,
            event_id,
            _dumps(changes),
            coerce_datetime(changes.get("startTime")),
        )

    async def delete_event(self, event_id: str) -> None:
        await self._db.execute("DELETE FROM events WHERE id = $1", event_id)

    # -- milestones ----------------------------------------------------------

    async def list_project_milestones(
        self, project_id: str, start: datetime, end: datetime
    ) -> list[Document]:
        return await self._fetch_docs(
            "SELECT id, doc FROM milestones WHERE project_id = $1 "
            "AND due_date >= $2 AND due_date <= $3 ORDER BY due_date, id",
            project_id,
            start,
            end,
        )

    async def get_milestone(self, milestone_id: str) -> Document | None:
        return await self._fetch_doc("SELECT id, doc FROM milestones WHERE id = $1", milestone_id)

    async def insert_milestone(self, doc: Mapping[str, Any]) -> str:
        milestone_id = await self._db.fetchval(
            """
            INSERT INTO milestones (project_id, due_date, doc)
            VALUES ($1, $2, $3::jsonb)
            RETURNING id
            """,
            doc.get("projectId"),
            coerce_datetime(doc.get("dueDate")),
            _dumps(doc),
        )
        return str(milestone_id)

    async def update_milestone(self, milestone_id: str, changes: Mapping[str, Any]) -> None:
        await self._db.execute(
            """
            UPDATE milestones
            SET doc = doc || $2::jsonb,
                due_date = COALESCE($3, due_date),
                updated_at = now()
            WHERE id = $1
            """,
            milestone_id,
            _dumps(changes),
            coerce_datetime(changes.get("dueDate")),
        )

    # -- organizations, projects, users -------------------------------------

    async def get_organization(self, organization_id: str) -> Document | None:
        return await self._fetch_doc(
            "SELECT id, doc FROM organizations WHERE id = $1", organization_id
        )

    async def list_organization_members(
        self, organization_id: str
    ) -> list[OrganizationMembership]:
        rows = await self._db.fetch(
            "SELECT organization_id, user_id, role FROM organization_members "
            "WHERE organization_id = $1 ORDER BY joined_at, user_id",
            organization_id,
        )
        return [
            OrganizationMembership(
                organization_id=row["organization_id"],
                user_id=row["user_id"],
                role=row["role"] or "member",
            )
            for row in rows
        ]

    async def list_user_organization_ids(self, user_id: str) -> list[str]:
        rows = await self._db.fetch(
            "SELECT organization_id FROM organization_members WHERE user_id = $1 "
            "ORDER BY organization_id",
            user_id,
        )
        return [row["organization_id"] for row in rows]

    async def get_project(self, project_id: str) -> Project | None:
        row = await self._db.fetchrow(
            "SELECT id, organization_id, name, members FROM projects WHERE id = $1", project_id
        )
        if row is None:
            return None
        return Project(
            id=str(row["id"]),
            organization_id=row["organization_id"],
            name=row["name"],
            members=frozenset(row["members"] or ()),
        )

    async def get_user(self, user_id: str) -> Document | None:
        return await self._fetch_doc("SELECT id, doc FROM users WHERE id = $1", user_id)

    async def list_user_ids(self) -> list[str]:
        rows = await self._db.fetch("SELECT id FROM users ORDER BY id")
        return [str(row["id"]) for row in rows]

    # -- availability and activity ------------------------------------------

    async def get_availability(self, user_id: str, day: date) -> AvailabilitySnapshot | None:
        row = await self._db.fetchrow(
            """
            SELECT user_id, day, available_hours, busy_hours, ooo,
                   window_start, window_end, computed_at
            FROM availability
            WHERE user_id = $1 AND day = $2
            """,
            user_id,
            day,
        )
        if row is None:
            return None
        return AvailabilitySnapshot(
            user_id=row["user_id"],
            day=row["day"],
            available_hours=row["available_hours"],
            busy_hours=row["busy_hours"],
            ooo=row["ooo"],
            window_start=row["window_start"],
            window_end=row["window_end"],
            computed_at=row["computed_at"],
        )

    async def upsert_availability(self, snapshot: AvailabilitySnapshot) -> None:
        await self._db.execute(
            """
            INSERT INTO availability
                (key, user_id, day, available_hours, busy_hours, ooo,
                 window_start, window_end, computed_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (key) DO UPDATE
                SET available_hours = EXCLUDED.available_hours,
                    busy_hours = EXCLUDED.busy_hours,
                    ooo = EXCLUDED.ooo,
                    window_start = EXCLUDED.window_start,
                    window_end = EXCLUDED.window_end,
                    computed_at = EXCLUDED.computed_at
            """,
            snapshot.key,
            snapshot.user_id,
            snapshot.day,
            snapshot.available_hours,
            snapshot.busy_hours,
            snapshot.ooo,
            snapshot.window_start,
            snapshot.window_end,
            snapshot.computed_at,
        )

    async def append_activity(
        self, event_type: str, user_id: str | None, metadata: Mapping[str, Any]
    ) -> None:
        await self._db.execute(
            "INSERT INTO activity_log (event_type, user_id, metadata) VALUES ($1, $2, $3::jsonb)",
            event_type,
            user_id,
            _dumps(metadata),
        )

