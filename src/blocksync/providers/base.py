"""Provider abstraction consumed by the snapshot loader and the action executor."""

from __future__ import annotations

import abc

from blocksync.models import BlockerTemplate, CalendarEvent, SyncWindow

# Private extended-property key under which a blocker stores the source id
# of the real meeting it represents.
CORRELATION_TAG_KEY = "blocksync_source"


class CalendarProvider(abc.ABC):
    """Read/write access to one or more accounts' calendars.

    Implementations expand recurrences into discrete occurrences and populate
    ``CalendarEvent.correlation_tag`` from their own tagging mechanism.
    Failures are raised as ``blocksync.errors.ProviderError`` subclasses.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., ``google``)."""
        ...

    @abc.abstractmethod
    async def list_events(
        self,
        *,
        account: str,
        window: SyncWindow | None,
    ) -> list[CalendarEvent]:
        """Return occurrences whose start falls in *window* (all events when ``None``)."""
        ...

    @abc.abstractmethod
    async def create_blocker(
        self,
        *,
        account: str,
        template: BlockerTemplate,
    ) -> CalendarEvent:
        """Insert a blocker carrying ``template.correlation_tag``."""
        ...

    @abc.abstractmethod
    async def delete_event(self, *, account: str, event: CalendarEvent) -> None:
        """Remove *event*. An event that is already gone counts as deleted."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release provider resources."""
