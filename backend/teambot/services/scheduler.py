import asyncio
import logging
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from teambot.core.config import settings
from teambot.core.errors import TeamBotError

logger = logging.getLogger(__name__)


def seconds_until(hour: int, now: datetime) -> float:
    """Seconds from ``now`` to the next ``hour``:00 in now's timezone."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    # compare in UTC, wall-clock subtraction ignores a DST shift in between
    return (target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()


class PaymentScheduler:
    """
    Runs the payment check on a fixed interval and the sweep once a day.

    Every run, scheduled or triggered from chat, goes through one lock. A
    tick that finds it held is skipped, not queued.
    """

    def __init__(self, reconciler, poll_interval: int = settings.POLL_INTERVAL,
                 sweep_hour: int = settings.SWEEP_HOUR, timezone: str = settings.TIMEZONE):
        self.reconciler = reconciler
        self.poll_interval = poll_interval
        self.sweep_hour = sweep_hour
        self.tz = ZoneInfo(timezone)
        self.lock = asyncio.Lock()
        self.tasks: list[asyncio.Task] = []

    @property
    def busy(self) -> bool:
        return self.lock.locked()

    async def run_check(self):
        """One reconciliation cycle, or None when another run is in progress."""
        if self.lock.locked():
            logger.warning("Previous run still in progress, skipping payments check")
            return None
        async with self.lock:
            try:
                return await self.reconciler.check_new_payments()
            except (TeamBotError, SQLAlchemyError):
                logger.exception("Payments check aborted")
                return None

    async def run_sweep(self):
        if self.lock.locked():
            logger.warning("Previous run still in progress, skipping sweep")
            return None
        async with self.lock:
            try:
                return await self.reconciler.sweep()
            except (TeamBotError, SQLAlchemyError):
                logger.exception("Sweep aborted")
                return None

    async def _check_loop(self):
        while True:
            try:
                await self.run_check()
            except Exception:
                logger.exception("Unexpected error in payments check")
            await asyncio.sleep(self.poll_interval)

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(seconds_until(self.sweep_hour, datetime.now(self.tz)))
            try:
                await self.run_sweep()
            except Exception:
                logger.exception("Unexpected error in sweep")

    def start(self):
        if self.tasks:
            return
        self.tasks = [
            asyncio.create_task(self._check_loop()),
            asyncio.create_task(self._sweep_loop()),
        ]
        logger.info("Scheduler started: check every %ds, sweep daily at %02d:00 %s",
                    self.poll_interval, self.sweep_hour, self.tz.key)

    async def stop(self):
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []
