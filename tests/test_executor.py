"""Tests for plan execution."""

import logging

import pytest

from blocksync.executor import execute_plan
from blocksync.models import AccountPlan, BlockerTemplate, ReconciliationPlan
from blocksync.providers.memory import InMemoryCalendarProvider
from blocksync.testing import at, make_blocker

pytestmark = pytest.mark.unit


def _template(tag="m1", hour=10):
    return BlockerTemplate(
        start_at=at(hour),
        end_at=at(hour + 1),
        correlation_tag=tag,
        source_subject="Budget Review",
    )


def _plan(*, creates=(), deletes=(), account="b"):
    return ReconciliationPlan(
        accounts={
            account: AccountPlan(account=account, to_create=list(creates), to_delete=list(deletes))
        }
    )


class TestExecutePlan:
    async def test_applies_creates_and_deletes(self):
        stale = make_blocker("b", "old", at(9))
        provider = InMemoryCalendarProvider([stale])

        report = await execute_plan(
            _plan(creates=[_template()], deletes=[stale]), lambda _: provider
        )

        assert report.ok
        assert (report.created, report.deleted) == (1, 1)
        blockers = provider.blockers("b")
        assert [(b.correlation_tag, b.start_at) for b in blockers] == [("m1", at(10))]

    async def test_creates_run_before_deletes(self):
        stale = make_blocker("b", "old", at(9))
        provider = InMemoryCalendarProvider([stale])
        await execute_plan(_plan(creates=[_template()], deletes=[stale]), lambda _: provider)
        operations = [op for op, _ in provider.calls]
        assert operations == ["create_blocker", "delete_event"]

    async def test_dry_run_changes_nothing(self, caplog):
        stale = make_blocker("b", "old", at(9))
        provider = InMemoryCalendarProvider([stale])

        with caplog.at_level(logging.INFO, logger="blocksync.executor"):
            report = await execute_plan(
                _plan(creates=[_template()], deletes=[stale]),
                lambda _: provider,
                dry_run=True,
            )

        assert report.dry_run
        assert (report.created, report.deleted) == (1, 1)
        assert provider.calls == []
        assert provider.events("b") == [stale]
        assert "[Test] Would create blocker in b for 'Budget Review'" in caplog.text
        assert "[Test] Would delete blocker in b" in caplog.text

    async def test_failed_create_does_not_stop_other_actions(self):
        stale = make_blocker("b", "old", at(9))
        provider = InMemoryCalendarProvider([stale])
        provider.fail_operations.add(("create_blocker", "b"))

        report = await execute_plan(
            _plan(creates=[_template("m1", 10), _template("m2", 12)], deletes=[stale]),
            lambda _: provider,
        )

        assert not report.ok
        assert report.created == 0
        assert report.deleted == 1
        assert [f.operation for f in report.failures] == ["create_blocker", "create_blocker"]
        assert report.failures[0].account == "b"

    async def test_failed_delete_is_recorded(self):
        keep = make_blocker("b", "x", at(9), event_id="stuck")
        gone = make_blocker("b", "y", at(11))
        provider = InMemoryCalendarProvider([keep, gone])
        provider.fail_event_ids.add("stuck")

        report = await execute_plan(_plan(deletes=[keep, gone]), lambda _: provider)

        assert report.deleted == 1
        assert len(report.failures) == 1
        assert "stuck" in report.failures[0].error
        assert provider.events("b") == [keep]

    async def test_empty_account_plans_never_resolve_a_provider(self):
        def provider_for(account):
            raise AssertionError(f"unexpected lookup for {account}")

        report = await execute_plan(_plan(), provider_for)
        assert report.ok
        assert report.created == report.deleted == 0
