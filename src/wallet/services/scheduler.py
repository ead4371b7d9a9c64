"""Daily midnight trigger for the YNAB category sync."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)


def next_midnight(now: datetime) -> datetime:
    """
    First midnight strictly after ``now``, in now's timezone.

    The date arithmetic happens on the calendar date and the result is
    re-attached to the zone, so days that are 23 or 25 hours long still
    land on midnight.
    """
    tomorrow = now.date() + timedelta(days=1)
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=now.tzinfo)


def seconds_until(now: datetime, target: datetime) -> float:
    """Elapsed seconds on the UTC timeline; naive values count as system local time."""
    return max(0.0, target.timestamp() - now.timestamp())


def _local_now() -> datetime:
    # Naive: system local wall time
    return datetime.now()


class DailySyncScheduler:
    """Runs ``sync_all`` once a day at local midnight.

    Cancellation only ever interrupts a sleep; a sync that has started runs
    to completion even when ``stop()`` is called.
    """

    def __init__(
        self,
        sync_all: Callable[[], Awaitable[object]],
        clock: Callable[[], datetime] = _local_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter_seconds: float = 1.0,
        timezone: str | None = None,
    ):
        self.sync_all = sync_all
        self.clock = clock
        self.sleep = sleep
        self.jitter_seconds = jitter_seconds
        self.zone: tzinfo | None = ZoneInfo(timezone) if timezone else None
        self._task: asyncio.Task | None = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _now(self) -> datetime:
        now = self.clock()
        if self.zone is not None:
            return now.astimezone(self.zone)
        return now

    def next_run(self, now: datetime) -> datetime:
        """
        Next midnight after ``now``.

        A naive ``now`` is system local time; its midnight is resolved with
        the OS zone rules for that instant, so the offset may differ from now's.
        """
        if now.tzinfo is None:
            return next_midnight(now).astimezone()
        return next_midnight(now)

    def start(self) -> None:
        if self.running:
            logger.debug("YNAB sync scheduler already running")
            return
        self._stopping = False
        self._task = asyncio.create_task(self.run(), name="ynab-daily-sync")
        logger.info("YNAB sync scheduler started")

    async def stop(self) -> None:
        """Cancel the pending sleep and wait for the loop to exit."""
        self._stopping = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("YNAB sync scheduler stopped")

    async def run(self) -> None:
        while not self._stopping:
            now = self._now()
            target = self.next_run(now)
            delay = seconds_until(now, target)
            logger.info(f"Next YNAB categories sync scheduled for {target.isoformat()}")

            await self.sleep(delay)
            await self.run_once()
            await self.sleep(self.jitter_seconds)

    async def run_once(self) -> None:
        """Run one sync round; errors are logged and never escape."""
        logger.info("Running scheduled YNAB categories sync")
        round_task = asyncio.ensure_future(self._guarded_sync())
        # Shielded so stop() during a round lets the round finish
        await asyncio.shield(round_task)

    async def _guarded_sync(self) -> None:
        try:
            await self.sync_all()
        except Exception:
            logger.exception("Scheduled YNAB categories sync failed")
