"""Daily availability: busy/available hours and out-of-office per user.

The summary for ``(user_id, day)`` is derived from the user's own events that
start within that calendar day (UTC boundaries, no timezone negotiation).
Results are cached as snapshots and recomputed by the daily batch; both the
lazy path and the batch share one code path, so identical events always
produce identical numbers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta

from opentelemetry import trace

from teamcal.core.activity import log_activity
from teamcal.engine.models import (
    AvailabilitySnapshot,
    AvailabilitySummary,
    BatchResult,
    BlockingPolicy,
    CalendarItem,
    ItemKind,
)
from teamcal.engine.normalizer import normalize_many
from teamcal.errors import InternalError, PermissionDeniedError, TeamcalError
from teamcal.store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_WORKDAY_HOURS = 8.0
OOO_CATEGORY = "OOO"
_BUSY_POLICIES = frozenset({BlockingPolicy.HARD_BLOCK, BlockingPolicy.SOFT_BLOCK})
_SECONDS_PER_HOUR = 3600.0


def day_window(day: date) -> tuple[datetime, datetime]:
    """``[00:00:00, 23:59:59.999]`` of *day* in UTC."""
    start = datetime.combine(day, time.min, tzinfo=UTC)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start, end


def duration_hours(item: CalendarItem) -> float:
    """Length of *item* in hours; zero when the end is missing or precedes the start."""
    if item.start_time is None or item.end_time is None:
        return 0.0
    seconds = (item.end_time - item.start_time).total_seconds()
    return max(0.0, seconds / _SECONDS_PER_HOUR)


def summarize(
    events: Iterable[CalendarItem], workday_hours: float = DEFAULT_WORKDAY_HOURS
) -> AvailabilitySummary:
    """Fold a day's events into busy/available totals.

    Events are summed in ``(start_time, id)`` order so float accumulation is
    independent of the order the store returned them in.
    """
    ordered = sorted(
        events,
        key=lambda e: (e.start_time or datetime.min.replace(tzinfo=UTC), e.id),
    )
    busy_hours = 0.0
    ooo = False
    for event in ordered:
        if event.blocking_policy in _BUSY_POLICIES:
            busy_hours += duration_hours(event)
        if event.category == OOO_CATEGORY:
            ooo = True
    return AvailabilitySummary(
        available_hours=max(0.0, workday_hours - busy_hours),
        busy_hours=busy_hours,
        ooo=ooo,
    )


class AvailabilityComputer:
    """Computes, caches and batch-recomputes availability snapshots."""

    def __init__(
        self,
        store: RecordStore,
        *,
        workday_hours: float = DEFAULT_WORKDAY_HOURS,
        batch_concurrency: int = 8,
    ) -> None:
        self.store = store
        self.workday_hours = workday_hours
        self.batch_concurrency = batch_concurrency
        self._tracer = trace.get_tracer("teamcal")

    async def compute(
        self, user_id: str, day: date, *, requested_by: str | None = None
    ) -> AvailabilitySummary:
        """Recompute the summary for ``(user_id, day)`` and upsert its snapshot.

        *requested_by* names the user who asked for the recompute; batch runs
        leave it unset.
        """
        snapshot = await self._refresh(user_id, day, requested_by=requested_by)
        return snapshot.summary()

    async def check_read_access(self, viewer_id: str, user_id: str) -> None:
        """Raise unless *viewer_id* is *user_id* or shares an organization with them."""
        if viewer_id == user_id:
            return
        viewer_orgs, target_orgs = await asyncio.gather(
            self.store.list_user_organization_ids(viewer_id),
            self.store.list_user_organization_ids(user_id),
        )
        if set(viewer_orgs).isdisjoint(target_orgs):
            raise PermissionDeniedError(
                "Availability is only visible within a shared organization",
                details={"user_id": user_id},
            )

    async def get(self, user_id: str, day: date) -> AvailabilitySnapshot:
        """Return the cached snapshot, computing and caching it on first read."""
        cached = await self.store.get_availability(user_id, day)
        if cached is not None:
            return cached
        return await self._refresh(user_id, day)

    async def _refresh(
        self, user_id: str, day: date, *, requested_by: str | None = None
    ) -> AvailabilitySnapshot:
        snapshot = await self._compute_snapshot(user_id, day)
        await self.store.upsert_availability(snapshot)
        metadata = {"date": day.isoformat(), **snapshot.summary().model_dump()}
        if requested_by is not None:
            metadata["requestedBy"] = requested_by
        await log_activity(self.store, "availability.recomputed", user_id, metadata)
        return snapshot

    async def _compute_snapshot(self, user_id: str, day: date) -> AvailabilitySnapshot:
        window_start, window_end = day_window(day)
        try:
            rows = await self.store.list_events_for_user(user_id, window_start, window_end)
        except TeamcalError:
            raise
        except Exception as exc:
            raise InternalError(
                f"Failed to load events for {user_id} on {day.isoformat()}",
                details={"user_id": user_id, "date": day.isoformat()},
            ) from exc
        events = [
            event
            for event in normalize_many(rows, ItemKind.EVENT)
            if event.start_time is not None and window_start <= event.start_time <= window_end
        ]
        summary = summarize(events, self.workday_hours)
        return AvailabilitySnapshot(
            user_id=user_id,
            day=day,
            available_hours=summary.available_hours,
            busy_hours=summary.busy_hours,
            ooo=summary.ooo,
            window_start=window_start,
            window_end=window_end,
            computed_at=datetime.now(UTC),
        )

    async def recompute_all(self, day: date | None = None) -> BatchResult:
        """Recompute *day* (default: today, UTC) for every known user.

        A failure for one user is logged and recorded in the result; the
        remaining users are still processed.
        """
        day = day or datetime.now(UTC).date()
        result = BatchResult(day=day)
        with self._tracer.start_as_current_span("teamcal.availability.batch") as span:
            user_ids = await self.store.list_user_ids()
            span.set_attribute("users", len(user_ids))
            semaphore = asyncio.Semaphore(self.batch_concurrency)

            async def _one(user_id: str) -> None:
                async with semaphore:
                    try:
                        await self.compute(user_id, day)
                    except Exception as exc:
                        logger.exception(
                            "Availability recompute failed: user=%s date=%s", user_id, day
                        )
                        result.failed[user_id] = str(exc)
                    else:
                        result.processed.append(user_id)

            await asyncio.gather(*(_one(user_id) for user_id in user_ids))

            span.set_attribute("processed", len(result.processed))
            span.set_attribute("failed", len(result.failed))
        logger.info(
            "Daily availability recomputed: date=%s processed=%d failed=%d",
            day,
            len(result.processed),
            len(result.failed),
        )
        return result
