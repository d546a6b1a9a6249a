"""Test support utilities for the blocksync package.

Plain factory functions for building calendar events; they have no
dependency on pytest so they can be used from any test context.
"""

from __future__ import annotations

import itertools
from datetime import UTC, datetime, timedelta

from blocksync.models import BusyState, CalendarEvent

DEFAULT_DAY = datetime(2030, 3, 4, tzinfo=UTC)

_ids = itertools.count(1)


def at(hour: int, minute: int = 0, *, day: datetime = DEFAULT_DAY) -> datetime:
    """Return a UTC timestamp on *day* at ``hour:minute``."""
    return day.replace(hour=hour, minute=minute)


def make_event(
    account: str,
    start: datetime,
    end: datetime | None = None,
    *,
    subject: str = "Meeting",
    source_id: str | None = None,
    event_id: str | None = None,
    all_day: bool = False,
    busy_state: BusyState = BusyState.busy,
    location: str | None = None,
    organizer: str | None = None,
) -> CalendarEvent:
    """Build a real meeting; *end* defaults to one hour after *start*."""
    event_id = event_id or f"evt-{next(_ids)}"
    return CalendarEvent(
        event_id=event_id,
        source_id=source_id or event_id,
        account=account,
        start_at=start,
        end_at=end if end is not None else start + timedelta(hours=1),
        subject=subject,
        all_day=all_day,
        busy_state=busy_state,
        location=location,
        organizer=organizer,
    )


def make_blocker(
    account: str,
    correlation_tag: str,
    start: datetime,
    end: datetime | None = None,
    *,
    event_id: str | None = None,
    subject: str = "Blocked",
    location: str | None = None,
) -> CalendarEvent:
    """Build a blocker representing *correlation_tag* in *account*."""
    event_id = event_id or f"blk-{next(_ids)}"
    return CalendarEvent(
        event_id=event_id,
        source_id=event_id,
        account=account,
        start_at=start,
        end_at=end if end is not None else start + timedelta(hours=1),
        subject=subject,
        location=location,
        correlation_tag=correlation_tag,
    )
