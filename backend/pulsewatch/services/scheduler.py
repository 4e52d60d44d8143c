"""Scheduler service - decides every tick which monitors are due and probes them.

Scheduling rules:
- One tick per ``tick_seconds`` (default a minute); ticks never overlap
- A monitor is due when its interval has passed since its last check,
  or immediately when it has never been checked
- HTTP monitors with a valid random range use a jittered interval drawn
  uniformly from [check_interval, check_interval_max]; a fresh draw is
  cached each time the monitor is actually probed
- passive_listen monitors are never probed
"""
import asyncio
import logging
import random
from datetime import datetime, timedelta
from typing import Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import async_session
from ..exceptions import UnknownTarget
from ..models import Monitor, MonitorCheck
from ..models.monitor import ACTIVE_CHECK_TYPES
from ..utils.db_utils import retry_on_lock
from .checker import checker_service, CheckerService
from .incidents import incident_tracker, IncidentTracker, PROBE_PATH, Transition
from .state import monitor_state_store, MonitorStateStore
from .telegram import telegram_service, TelegramService, format_status_message

logger = logging.getLogger(__name__)

# Maximum concurrent probes within one tick
MAX_CONCURRENT_CHECKS = 10

# Fallback when a monitor has no interval configured (minutes)
DEFAULT_INTERVAL_MINUTES = 5


class SchedulerService:
    """Service for scheduling and running periodic checks."""

    def __init__(
        self,
        checker: Optional[CheckerService] = None,
        tracker: Optional[IncidentTracker] = None,
        state_store: Optional[MonitorStateStore] = None,
        telegram: Optional[TelegramService] = None,
        rng: Optional[random.Random] = None,
    ):
        self.checker = checker if checker is not None else checker_service
        self.tracker = tracker if tracker is not None else incident_tracker
        self.state_store = state_store if state_store is not None else monitor_state_store
        self.telegram = telegram if telegram is not None else telegram_service
        self.rng = rng or random.Random()
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()

        first_run = {}
        if settings.run_on_startup:
            first_run["next_run_time"] = datetime.now()

        self.scheduler.add_job(
            self._run_checks,
            trigger=IntervalTrigger(seconds=settings.tick_seconds),
            id="run_checks",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=settings.tick_seconds,
            **first_run,
        )

        self.scheduler.add_job(
            self._cleanup_old_records,
            trigger=IntervalTrigger(hours=24),
            id="cleanup_old_records",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True
        logger.info(f"Scheduler started (tick={settings.tick_seconds}s, max_concurrent={MAX_CONCURRENT_CHECKS})")

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    def roll_interval(self, low: int, high: int) -> int:
        """Uniform integer draw from the inclusive range [low, high]."""
        return self.rng.randint(low, high)

    def interval_for(self, monitor: Monitor) -> int:
        """Interval in minutes to apply this tick."""
        bounds = monitor.random_interval_range
        if bounds is None:
            return monitor.check_interval or DEFAULT_INTERVAL_MINUTES

        state = self.state_store.get(monitor.id)
        if state.next_interval is None:
            state.next_interval = self.roll_interval(*bounds)
        return state.next_interval

    def select_if_due(
        self,
        monitor: Monitor,
        last_checked: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> bool:
        """Decide whether a monitor is due; a due random-range monitor gets a new interval."""
        now = now or datetime.utcnow()
        interval = self.interval_for(monitor)

        if last_checked is not None:
            elapsed = (now - last_checked).total_seconds()
            if elapsed < interval * 60:
                return False

        bounds = monitor.random_interval_range
        if bounds is not None:
            next_interval = self.roll_interval(*bounds)
            self.state_store.get(monitor.id).next_interval = next_interval
            logger.info(
                f"Monitor {monitor.name}: next check in {next_interval} minutes "
                f"(random {bounds[0]}-{bounds[1]})"
            )
        return True

    async def run_due(self) -> int:
        """Probe every due monitor once; returns how many were probed."""
        async with async_session() as session:
            last_checked = (
                select(MonitorCheck.monitor_id, func.max(MonitorCheck.checked_at).label("last_checked"))
                .group_by(MonitorCheck.monitor_id)
                .subquery()
            )
            result = await session.execute(
                select(Monitor, last_checked.c.last_checked)
                .outerjoin(last_checked, Monitor.id == last_checked.c.monitor_id)
                .where(
                    Monitor.is_active == 1,
                    Monitor.check_type.in_(ACTIVE_CHECK_TYPES),
                )
                .order_by(Monitor.sort_order, Monitor.created_at)
            )
            rows = result.all()

        now = datetime.utcnow()
        due_monitors = [
            monitor.id for monitor, last in rows
            if self.select_if_due(monitor, last, now)
        ]
        if not due_monitors:
            return 0

        logger.debug(f"Checking {len(due_monitors)} due monitors out of {len(rows)} total")

        semaphore = asyncio.Semaphore(MAX_CONCURRENT_CHECKS)

        async def check_with_limit(monitor_id: str):
            async with semaphore:
                await self._check_single_monitor(monitor_id)

        await asyncio.gather(*[check_with_limit(mid) for mid in due_monitors])
        return len(due_monitors)

    async def _run_checks(self):
        """Scheduled tick; errors are logged so the next tick still runs."""
        try:
            await self.run_due()
        except Exception as e:
            logger.error(f"Error running checks: {e}")

    async def _check_single_monitor(self, monitor_id: str):
        """Check a single monitor in its own session."""
        try:
            async with async_session() as session:
                monitor = await session.get(Monitor, monitor_id)
                if monitor:
                    await self.check_monitor(session, monitor)
        except Exception as e:
            logger.error(f"Error checking monitor {monitor_id}: {e}")

    async def check_monitor(
        self,
        session: AsyncSession,
        monitor: Monitor,
    ) -> Tuple[MonitorCheck, Optional[Transition]]:
        """Probe one monitor, record the observation and act on any transition."""
        result = await self.checker.check(monitor)
        check, transition = await self.tracker.observe(
            session,
            monitor,
            result.status,
            response_time=result.response_time_ms,
            status_code=result.status_code,
            error=result.error,
            path=PROBE_PATH,
        )

        if transition is not None and monitor.notify_chat_id:
            await self.telegram.send_message(
                monitor.notify_chat_id,
                format_status_message(monitor.name, check.status, detail=check.error_message or None),
            )

        logger.debug(f"Monitor {monitor.name}: {check.status}")
        return check, transition

    async def probe_now(self, session: AsyncSession, monitor_id: str) -> MonitorCheck:
        """Probe a monitor immediately, outside the schedule."""
        monitor = await session.get(Monitor, monitor_id)
        if monitor is None:
            raise UnknownTarget(monitor_id)
        check, _ = await self.check_monitor(session, monitor)
        return check

    async def _cleanup_old_records(self):
        """Delete observations older than the retention window."""
        try:
            cutoff = datetime.utcnow() - timedelta(days=settings.check_retention_days)

            async with async_session() as session:
                await session.execute(
                    delete(MonitorCheck).where(MonitorCheck.checked_at < cutoff)
                )
                await retry_on_lock(session.commit)
                logger.info("Cleaned up old check records")
        except Exception as e:
            logger.error(f"Error cleaning up records: {e}")


# Global instance
scheduler_service = SchedulerService()
