"""Daily availability trigger.

Sleeps until the next occurrence of the configured cron expression (UTC),
then runs :meth:`AvailabilityComputer.recompute_all` for the current day.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from croniter import croniter
from opentelemetry import trace

from teamcal.engine.availability import AvailabilityComputer
from teamcal.engine.models import BatchResult

logger = logging.getLogger(__name__)

DEFAULT_CRON = "0 2 * * *"


def next_run(cron: str = DEFAULT_CRON, *, now: datetime | None = None) -> datetime:
    """Compute the next run time for a cron expression from now (UTC)."""
    anchor = now or datetime.now(UTC)
    return croniter(cron, anchor).get_next(datetime).replace(tzinfo=UTC)


async def run_once(computer: AvailabilityComputer, *, now: datetime | None = None) -> BatchResult:
    """Run one batch for the UTC day containing *now*."""
    tracer = trace.get_tracer("teamcal")
    anchor = now or datetime.now(UTC)
    with tracer.start_as_current_span("teamcal.scheduler.tick") as span:
        span.set_attribute("day", anchor.date().isoformat())
        return await computer.recompute_all(anchor.date())


async def run_daily(
    computer: AvailabilityComputer,
    cron: str = DEFAULT_CRON,
    *,
    stop: asyncio.Event | None = None,
) -> None:
    """Loop forever (or until *stop* is set), running the batch on schedule."""
    stop = stop or asyncio.Event()
    while not stop.is_set():
        due = next_run(cron)
        delay = max(0.0, (due - datetime.now(UTC)).total_seconds())
        logger.info("Next availability recompute at %s", due.isoformat())
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
        except TimeoutError:
            pass
        else:
            break
        try:
            await run_once(computer, now=due)
        except Exception:
            logger.exception("Availability batch failed; retrying at next schedule")
