"""Apply (or, in test mode, report) a reconciliation plan.

The provider is non-transactional, so each action stands alone: a failed
create or delete is logged and recorded, and the executor moves on. The
next pass re-derives the same action from unchanged calendar state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from blocksync.core.logging import account_context
from blocksync.errors import ActionApplyError, ProviderError
from blocksync.models import ReconciliationPlan
from blocksync.snapshot import ProviderLookup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionFailure:
    """One create or delete that the provider rejected."""

    account: str
    operation: str
    error: str


@dataclass
class ExecutionReport:
    """Outcome of executing one plan."""

    dry_run: bool = False
    created: int = 0
    deleted: int = 0
    failures: list[ActionFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def _as_apply_error(exc: Exception, *, account: str, operation: str) -> ActionApplyError:
    message = exc.message if isinstance(exc, ProviderError) else str(exc)
    return ActionApplyError(message, account=account, operation=operation)


async def execute_plan(
    plan: ReconciliationPlan,
    provider_for: ProviderLookup,
    *,
    dry_run: bool = False,
) -> ExecutionReport:
    """Run every action in *plan*, account by account, creates before deletes.

    In *dry_run* mode nothing is sent to the provider; the actions are only
    logged and counted.
    """
    report = ExecutionReport(dry_run=dry_run)
    create_verb = "[Test] Would create" if dry_run else "Creating"
    delete_verb = "[Test] Would delete" if dry_run else "Deleting"

    for account, account_plan in plan.accounts.items():
        if account_plan.is_empty:
            continue
        provider = provider_for(account)

        with account_context(account):
            for template in account_plan.to_create:
                logger.info(
                    "%s blocker in %s for '%s' at %s",
                    create_verb,
                    account,
                    template.source_subject,
                    template.start_at.isoformat(),
                )
                if dry_run:
                    report.created += 1
                    continue
                try:
                    await provider.create_blocker(account=account, template=template)
                except Exception as exc:
                    error = _as_apply_error(exc, account=account, operation="create_blocker")
                    logger.error("Failed to create blocker: %s", error)
                    report.failures.append(
                        ActionFailure(account=account, operation="create_blocker", error=str(error))
                    )
                    continue
                report.created += 1

            for blocker in account_plan.to_delete:
                logger.info(
                    "%s blocker in %s at %s",
                    delete_verb,
                    account,
                    blocker.start_at.isoformat(),
                )
                if dry_run:
                    report.deleted += 1
                    continue
                try:
                    await provider.delete_event(account=account, event=blocker)
                except Exception as exc:
                    error = _as_apply_error(exc, account=account, operation="delete_event")
                    logger.error("Failed to delete blocker %s: %s", blocker.event_id, error)
                    report.failures.append(
                        ActionFailure(account=account, operation="delete_event", error=str(error))
                    )
                    continue
                report.deleted += 1

    return report
