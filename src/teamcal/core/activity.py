"""Append-only activity log for mutating operations.

Fire-and-forget: exceptions are logged and swallowed so that activity
logging never blocks or breaks the primary operation.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from teamcal.store import RecordStore

logger = logging.getLogger(__name__)


async def log_activity(
    store: RecordStore | None,
    event_type: str,
    user_id: str | None,
    metadata: Mapping[str, Any] | None = None,
) -> None:
    """Append an activity entry through *store*.

    Parameters
    ----------
    store:
        Record store to write through.  If ``None``, the call is a silent no-op.
    event_type:
        Dotted activity type (e.g. ``"calendar.created"``).
    user_id:
        User the activity is attributed to.
    metadata:
        Arbitrary JSON-serialisable details.
    """
    if store is None:
        return

    try:
        await store.append_activity(event_type, user_id, dict(metadata or {}))
    except Exception:
        logger.warning(
            "Failed to write activity entry: event_type=%s user_id=%s",
            event_type,
            user_id,
            exc_info=True,
        )
