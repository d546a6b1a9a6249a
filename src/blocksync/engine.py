"""Reconciliation engine.

Pure computation over account snapshots: given the real meetings and the
existing blockers of every account, decide which blockers to create and
which to delete so that each account mirrors the busy time of all others.
Nothing here touches a provider and nothing here raises domain errors.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from blocksync.matching import (
    DEFAULT_EXCLUDED_SUBJECTS,
    ExclusionPolicy,
    find_equivalent,
    is_eligible,
)
from blocksync.models import (
    DEFAULT_BLOCKER_SUBJECT,
    BlockerKey,
    BlockerTemplate,
    CalendarEvent,
    ReconciliationPlan,
)
from blocksync.snapshot import AccountSnapshot


@dataclass(frozen=True)
class ReconcileOptions:
    """Policy knobs for one reconciliation pass."""

    blocker_subject: str = DEFAULT_BLOCKER_SUBJECT
    exclusion_policy: ExclusionPolicy = ExclusionPolicy.exact
    excluded_subjects: tuple[str, ...] = DEFAULT_EXCLUDED_SUBJECTS
    match_organizer: bool = False
    min_suffix_length: int = 0


def eligible_pool(
    snapshots: Sequence[AccountSnapshot],
    options: ReconcileOptions,
) -> list[CalendarEvent]:
    """Return every account's eligible real meetings, in snapshot order."""
    return [
        meeting
        for snapshot in snapshots
        for meeting in snapshot.real_meetings
        if is_eligible(
            meeting,
            policy=options.exclusion_policy,
            excluded=options.excluded_subjects,
        )
    ]


def _blocker_for(meeting: CalendarEvent, options: ReconcileOptions) -> BlockerTemplate:
    return BlockerTemplate(
        subject=options.blocker_subject,
        start_at=meeting.start_at,
        end_at=meeting.end_at,
        correlation_tag=meeting.source_id,
        source_subject=meeting.subject,
    )


def reconcile(
    snapshots: Sequence[AccountSnapshot],
    options: ReconcileOptions | None = None,
) -> ReconciliationPlan:
    """Compute the create/delete actions that bring every account up to date.

    For each target account, every eligible meeting owned elsewhere either
    confirms an existing blocker, is already visible natively through an
    equivalent real meeting, or needs a new blocker. Blockers left
    unconfirmed are stale. Duplicate blockers for the same key keep the
    first and mark the rest stale.
    """
    options = options or ReconcileOptions()
    pool = eligible_pool(snapshots, options)
    plan = ReconciliationPlan()

    for target in snapshots:
        account_plan = plan.for_account(target.account)

        existing: dict[BlockerKey, CalendarEvent] = {}
        for blocker in target.blockers:
            key = blocker.blocker_key
            assert key is not None
            if key in existing:
                account_plan.to_delete.append(blocker)
            else:
                existing[key] = blocker

        # Only eligible meetings of the target itself can stand in for a blocker.
        native = [meeting for meeting in pool if meeting.account == target.account]
        claimed: set[BlockerKey] = set()
        for meeting in pool:
            if meeting.account == target.account:
                continue

            key = BlockerKey(meeting.source_id, meeting.start_at)
            if key in claimed:
                continue
            if existing.pop(key, None) is not None:
                claimed.add(key)
                continue
            if (
                find_equivalent(
                    meeting,
                    native,
                    match_organizer=options.match_organizer,
                    min_suffix_length=options.min_suffix_length,
                )
                is not None
            ):
                continue

            account_plan.to_create.append(_blocker_for(meeting, options))
            claimed.add(key)

        account_plan.to_delete.extend(existing.values())

    return plan


def plan_reset(snapshots: Sequence[AccountSnapshot]) -> ReconciliationPlan:
    """Plan deletion of every blocker, sparing those with a location.

    A location on a blocker means someone attached a room or call link to
    it afterwards; those are left alone.
    """
    plan = ReconciliationPlan()
    for snapshot in snapshots:
        account_plan = plan.for_account(snapshot.account)
        account_plan.to_delete.extend(
            blocker for blocker in snapshot.blockers if not blocker.location
        )
    return plan
