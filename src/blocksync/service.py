"""One reconciliation pass, end to end.

``SyncService.run_pass`` opens a provider per account, loads snapshots,
plans, executes, and closes the providers again. No state survives between
passes; every pass re-reads the calendars from scratch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from blocksync.config import AccountConfig, BlocksyncConfig
from blocksync.core.telemetry import get_tracer
from blocksync.engine import ReconcileOptions, plan_reset, reconcile
from blocksync.errors import ConfigError, ProviderError, ProviderUnavailableError
from blocksync.executor import ExecutionReport, execute_plan
from blocksync.models import ReconciliationPlan, SyncWindow
from blocksync.providers.base import CalendarProvider
from blocksync.providers.google import GoogleCalendarProvider, GoogleOAuthCredentials
from blocksync.snapshot import load_snapshots

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[AccountConfig], CalendarProvider]

MIN_ACCOUNTS = 2


class PassMode(StrEnum):
    sync = "sync"
    reset = "reset"


@dataclass
class PassResult:
    """Plan and execution outcome of one pass."""

    mode: PassMode
    plan: ReconciliationPlan
    report: ExecutionReport
    window: SyncWindow | None = None


def build_provider(account: AccountConfig) -> CalendarProvider:
    """Construct the provider for *account* from its configuration."""
    if account.provider == "google":
        credentials = GoogleOAuthCredentials.from_json(account.read_credentials())
        return GoogleCalendarProvider(
            calendar_id=account.calendar_id,
            credentials=credentials,
            timezone=account.timezone,
        )
    raise ConfigError(f"Unsupported provider {account.provider!r} for account {account.name!r}")


def reconcile_options(config: BlocksyncConfig) -> ReconcileOptions:
    sync = config.sync
    return ReconcileOptions(
        blocker_subject=sync.blocker_subject,
        exclusion_policy=sync.exclusion_policy,
        excluded_subjects=sync.excluded_subjects,
        match_organizer=sync.match_organizer,
        min_suffix_length=sync.min_suffix_length,
    )


class SyncService:
    """Runs sync or reset passes for the configured accounts."""

    def __init__(
        self,
        config: BlocksyncConfig,
        *,
        provider_factory: ProviderFactory = build_provider,
        dry_run: bool = False,
        days: int | None = None,
        start: datetime | None = None,
    ) -> None:
        self.config = config
        self.dry_run = dry_run
        self.days = days if days is not None else config.sync.days
        self.start = start
        self._provider_factory = provider_factory

    def window(self) -> SyncWindow:
        return SyncWindow.from_days(self.days, start=self.start)

    def reset_window(self) -> SyncWindow | None:
        """Window a reset pass reads, or None to read every event.

        With ``reset_days`` configured the reset covers that many days either
        side of the pass start; otherwise the whole calendar is listed.
        """
        reset_days = self.config.sync.reset_days
        if reset_days is None:
            return None
        anchor = self.start if self.start is not None else datetime.now(UTC)
        return SyncWindow.from_days(2 * reset_days, start=anchor - timedelta(days=reset_days))

    async def _open_providers(self) -> dict[str, CalendarProvider]:
        providers: dict[str, CalendarProvider] = {}
        try:
            for account in self.config.accounts:
                providers[account.name] = self._provider_factory(account)
        except (ConfigError, ProviderError) as exc:
            await _close_all(providers)
            raise ProviderUnavailableError(
                getattr(exc, "message", str(exc)),
                account=account.name,
                operation="connect",
            ) from exc
        return providers

    async def run_pass(self, mode: PassMode = PassMode.sync) -> PassResult:
        """Run one full pass.

        Raises
        ------
        ProviderUnavailableError
            Fewer than two accounts, or a provider could not be constructed.
        EventReadError
            Reading any account failed; nothing was changed.
        """
        accounts = self.config.account_names
        if len(accounts) < MIN_ACCOUNTS:
            raise ProviderUnavailableError(
                f"At least {MIN_ACCOUNTS} accounts must be configured (found {len(accounts)})",
                operation="connect",
            )

        window = self.window() if mode is PassMode.sync else self.reset_window()
        tracer = get_tracer()
        with tracer.start_as_current_span("blocksync.pass") as span:
            span.set_attribute("blocksync.mode", mode.value)
            span.set_attribute("blocksync.accounts", len(accounts))
            span.set_attribute("blocksync.dry_run", self.dry_run)

            if window is not None:
                logger.info(
                    "%s %d account(s) from %s to %s%s",
                    "Syncing" if mode is PassMode.sync else "Resetting blockers in",
                    len(accounts),
                    window.start.isoformat(),
                    window.end.isoformat(),
                    " [TEST MODE]" if self.dry_run else "",
                )
            else:
                logger.info(
                    "Resetting blockers in %d account(s)%s",
                    len(accounts),
                    " [TEST MODE]" if self.dry_run else "",
                )

            providers = await self._open_providers()
            try:
                snapshots = await load_snapshots(providers.__getitem__, accounts, window)
                if mode is PassMode.sync:
                    plan = reconcile(snapshots, reconcile_options(self.config))
                else:
                    plan = plan_reset(snapshots)
                report = await execute_plan(plan, providers.__getitem__, dry_run=self.dry_run)
            finally:
                await _close_all(providers)

            span.set_attribute("blocksync.creates", plan.total_creates)
            span.set_attribute("blocksync.deletes", plan.total_deletes)
            span.set_attribute("blocksync.failures", len(report.failures))

        logger.info(
            "Pass finished: %d create(s), %d delete(s), %d failure(s)",
            report.created,
            report.deleted,
            len(report.failures),
        )
        return PassResult(mode=mode, plan=plan, report=report, window=window)


async def _close_all(providers: dict[str, CalendarProvider]) -> None:
    for account, provider in providers.items():
        try:
            await provider.close()
        except Exception:
            logger.warning("Failed to close provider for %s", account, exc_info=True)
