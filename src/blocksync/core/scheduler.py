"""Background worker that runs one reconciliation pass per tick.

Ticks come from a fixed interval or a cron expression (evaluated with
croniter). The loop awaits each pass before computing the next tick, so
passes never overlap; a tick that falls due while a pass is running simply
fires once the pass is done. A failing pass is logged and the worker keeps
going, since the next pass re-reconciles everything from scratch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from croniter import croniter

logger = logging.getLogger(__name__)

PassRunner = Callable[[], Awaitable[Any]]


def next_run(
    *,
    interval: timedelta | None = None,
    cron: str | None = None,
    now: datetime | None = None,
) -> datetime:
    """Compute the next tick from *now* (UTC).

    A cron expression takes precedence over a fixed interval.
    """
    anchor = now or datetime.now(UTC)
    if cron:
        return croniter(cron, anchor).get_next(datetime).replace(tzinfo=UTC)
    if interval is None or interval <= timedelta(0):
        raise ValueError("either a cron expression or a positive interval is required")
    return anchor + interval


class SyncWorker:
    """Periodic pass runner.

    Parameters
    ----------
    run_pass:
        Coroutine function executing one full pass.
    interval:
        Fixed period between ticks, used when *cron* is not set.
    cron:
        Optional cron expression for tick times.
    run_immediately:
        Run one pass as soon as the worker starts instead of waiting for
        the first tick.
    """

    def __init__(
        self,
        run_pass: PassRunner,
        *,
        interval: timedelta = timedelta(hours=1),
        cron: str | None = None,
        run_immediately: bool = True,
    ) -> None:
        self._run_pass = run_pass
        self._interval = interval
        self._cron = cron
        self._run_immediately = run_immediately
        self._task: asyncio.Task | None = None
        self.passes_run = 0
        self.passes_failed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the worker loop as a background task."""
        if self._task is not None:
            logger.warning("Sync worker already running")
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Started sync worker (%s)",
            f"cron={self._cron}" if self._cron else f"interval={self._interval}",
        )

    async def stop(self) -> None:
        """Cancel the worker loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sync worker stopped")

    async def _run_once(self) -> None:
        try:
            await self._run_pass()
        except Exception:
            self.passes_failed += 1
            logger.exception("Sync pass failed; retrying on the next tick")
        finally:
            self.passes_run += 1

    async def _loop(self) -> None:
        try:
            if self._run_immediately:
                await self._run_once()
            while True:
                due = next_run(interval=self._interval, cron=self._cron)
                delay = max((due - datetime.now(UTC)).total_seconds(), 0.0)
                logger.debug("Next sync pass at %s", due.isoformat())
                await asyncio.sleep(delay)
                await self._run_once()
        except asyncio.CancelledError:
            logger.debug("Sync worker loop cancelled")
            raise
