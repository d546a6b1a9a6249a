"""Tests for snapshot loading."""

import pytest

from blocksync.errors import EventReadError
from blocksync.models import SyncWindow
from blocksync.providers.memory import InMemoryCalendarProvider
from blocksync.snapshot import build_snapshot, dedupe_occurrences, load_snapshot, load_snapshots
from blocksync.testing import at, make_blocker, make_event

pytestmark = pytest.mark.unit


class TestBuildSnapshot:
    def test_partitions_real_meetings_and_blockers(self):
        meeting = make_event("a", at(10))
        blocker = make_blocker("a", "src-9", at(12))
        snapshot = build_snapshot("a", [meeting, blocker])
        assert snapshot.real_meetings == (meeting,)
        assert snapshot.blockers == (blocker,)

    def test_drops_occurrences_outside_window(self):
        inside = make_event("a", at(10))
        outside = make_event("a", at(18))
        snapshot = build_snapshot("a", [inside, outside], SyncWindow(start=at(9), end=at(17)))
        assert snapshot.real_meetings == (inside,)

    def test_duplicate_blockers_are_kept_for_the_engine(self):
        first = make_blocker("a", "src-1", at(10))
        second = make_blocker("a", "src-1", at(10))
        assert len(build_snapshot("a", [first, second]).blockers) == 2


class TestDedupeOccurrences:
    def test_collapses_identical_occurrences_of_one_series(self):
        first = make_event("a", at(10), subject="Standup", source_id="series-1")
        repeat = make_event("a", at(10), subject="Standup", source_id="series-1")
        later = make_event("a", at(11), subject="Standup", source_id="series-1")
        assert dedupe_occurrences([first, repeat, later]) == [first, later]

    def test_keeps_distinct_meetings_at_same_time(self):
        first = make_event("a", at(10), subject="Standup")
        other = make_event("a", at(10), subject="Standup")
        assert len(dedupe_occurrences([first, other])) == 2


class TestLoadSnapshot:
    async def test_reads_account_through_provider(self):
        meeting = make_event("a", at(10))
        provider = InMemoryCalendarProvider([meeting, make_event("b", at(11))])
        snapshot = await load_snapshot(provider, "a", SyncWindow(start=at(0), end=at(23)))
        assert snapshot.account == "a"
        assert snapshot.real_meetings == (meeting,)

    async def test_provider_failure_becomes_event_read_error(self):
        provider = InMemoryCalendarProvider()
        provider.fail_operations.add(("list_events", "a"))
        with pytest.raises(EventReadError) as excinfo:
            await load_snapshot(provider, "a", None)
        assert excinfo.value.account == "a"
        assert excinfo.value.operation == "list_events"

    async def test_load_snapshots_aborts_on_first_failure(self):
        provider = InMemoryCalendarProvider()
        provider.fail_operations.add(("list_events", "a"))
        with pytest.raises(EventReadError):
            await load_snapshots(lambda _: provider, ["a", "b"], None)
        assert ("list_events", "b") not in provider.calls

    async def test_load_snapshots_preserves_account_order(self):
        provider = InMemoryCalendarProvider()
        snapshots = await load_snapshots(lambda _: provider, ["b", "a", "c"], None)
        assert [s.account for s in snapshots] == ["b", "a", "c"]
