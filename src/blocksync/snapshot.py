"""Snapshot loading: one provider read per account, converted to pure data.

Provider I/O for a pass is serialized; accounts are read one after another.
Any read failure aborts the pass, since reconciling against an incomplete
view would delete blockers that are still needed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from blocksync.core.logging import account_context
from blocksync.errors import EventReadError, ProviderError
from blocksync.models import CalendarEvent, SyncWindow
from blocksync.providers.base import CalendarProvider

logger = logging.getLogger(__name__)

ProviderLookup = Callable[[str], CalendarProvider]


@dataclass(frozen=True)
class AccountSnapshot:
    """Events of one account within one window, split by kind."""

    account: str
    real_meetings: tuple[CalendarEvent, ...] = field(default_factory=tuple)
    blockers: tuple[CalendarEvent, ...] = field(default_factory=tuple)


def dedupe_occurrences(events: Iterable[CalendarEvent]) -> list[CalendarEvent]:
    """Keep the first occurrence per (source id, start, end, subject)."""
    seen: set[tuple] = set()
    unique: list[CalendarEvent] = []
    for event in events:
        identity = (event.source_id, event.start_at, event.end_at, event.subject)
        if identity in seen:
            continue
        seen.add(identity)
        unique.append(event)
    return unique


def build_snapshot(
    account: str,
    events: Iterable[CalendarEvent],
    window: SyncWindow | None = None,
) -> AccountSnapshot:
    """Partition *events* into real meetings and blockers for *account*."""
    real: list[CalendarEvent] = []
    blockers: list[CalendarEvent] = []
    for event in events:
        if window is not None and not window.contains(event.start_at):
            continue
        if event.is_blocker:
            blockers.append(event)
        else:
            real.append(event)
    return AccountSnapshot(
        account=account,
        real_meetings=tuple(dedupe_occurrences(real)),
        blockers=tuple(blockers),
    )


async def load_snapshot(
    provider: CalendarProvider,
    account: str,
    window: SyncWindow | None,
) -> AccountSnapshot:
    """Read *account* through *provider* and return its snapshot.

    Raises
    ------
    EventReadError
        If the provider call fails for any reason.
    """
    with account_context(account):
        try:
            events = await provider.list_events(account=account, window=window)
        except EventReadError:
            raise
        except ProviderError as exc:
            raise EventReadError(exc.message, account=account, operation="list_events") from exc
        except Exception as exc:
            raise EventReadError(str(exc), account=account, operation="list_events") from exc

        snapshot = build_snapshot(account, events, window)
        logger.debug(
            "Loaded %d real meeting(s) and %d blocker(s) for %s",
            len(snapshot.real_meetings),
            len(snapshot.blockers),
            account,
        )
        return snapshot


async def load_snapshots(
    provider_for: ProviderLookup,
    accounts: Iterable[str],
    window: SyncWindow | None,
) -> list[AccountSnapshot]:
    """Load every account in order; the first failure aborts the whole load."""
    snapshots: list[AccountSnapshot] = []
    for account in accounts:
        snapshots.append(await load_snapshot(provider_for(account), account, window))
    return snapshots
