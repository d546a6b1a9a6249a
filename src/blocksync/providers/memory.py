"""In-memory calendar provider.

Holds already-expanded occurrences per account. Used by the test suite and
for rehearsing reconciliation logic without touching a real calendar.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from blocksync.errors import ProviderRequestError
from blocksync.models import BlockerTemplate, CalendarEvent, SyncWindow
from blocksync.providers.base import CalendarProvider


class InMemoryCalendarProvider(CalendarProvider):
    """Serve any number of accounts from plain lists.

    ``fail_operations`` holds ``(operation, account)`` pairs whose calls
    raise ``ProviderRequestError``; ``fail_event_ids`` makes deletes of
    specific events fail.
    """

    def __init__(self, events: Iterable[CalendarEvent] = ()) -> None:
        self._events: dict[str, list[CalendarEvent]] = {}
        self.fail_operations: set[tuple[str, str]] = set()
        self.fail_event_ids: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.closed = False
        for event in events:
            self.add(event)

    @property
    def name(self) -> str:
        return "memory"

    def add(self, event: CalendarEvent) -> CalendarEvent:
        self._events.setdefault(event.account, []).append(event)
        return event

    def events(self, account: str) -> list[CalendarEvent]:
        return list(self._events.get(account, []))

    def blockers(self, account: str) -> list[CalendarEvent]:
        return [event for event in self.events(account) if event.is_blocker]

    def _check(self, operation: str, account: str) -> None:
        self.calls.append((operation, account))
        if (operation, account) in self.fail_operations:
            raise ProviderRequestError(
                status_code=503,
                message="simulated provider failure",
                account=account,
                operation=operation,
            )

    async def list_events(
        self,
        *,
        account: str,
        window: SyncWindow | None,
    ) -> list[CalendarEvent]:
        self._check("list_events", account)
        events = self.events(account)
        if window is None:
            return events
        return [event for event in events if window.contains(event.start_at)]

    async def create_blocker(
        self,
        *,
        account: str,
        template: BlockerTemplate,
    ) -> CalendarEvent:
        self._check("create_blocker", account)
        event = CalendarEvent(
            event_id=f"blk-{uuid.uuid4().hex[:12]}",
            source_id=f"blk-{uuid.uuid4().hex[:12]}",
            account=account,
            start_at=template.start_at,
            end_at=template.end_at,
            subject=template.subject,
            all_day=template.all_day,
            busy_state=template.busy_state,
            correlation_tag=template.correlation_tag,
        )
        return self.add(event)

    async def delete_event(self, *, account: str, event: CalendarEvent) -> None:
        self._check("delete_event", account)
        if event.event_id in self.fail_event_ids:
            raise ProviderRequestError(
                status_code=500,
                message=f"simulated delete failure for {event.event_id}",
                account=account,
                operation="delete_event",
            )
        self._events[account] = [
            existing for existing in self._events.get(account, [])
            if existing.event_id != event.event_id
        ]

    async def close(self) -> None:
        self.closed = True
