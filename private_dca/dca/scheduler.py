"""
DCA Schedule Engine

Persists schedules, fires them on cron timers and records every run.

The store on disk is the only source of schedule data. The job map kept here
records which schedules *this process* is firing and nothing more; a fresh
process calls rehydrate() to pick up every active schedule again.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from private_dca.dca.models import Execution, Schedule, ScheduleFrequency
from private_dca.dca.store import JsonScheduleStore
from private_dca.errors import NotFoundError, ValidationError
from private_dca.logging_config import CorrelationContext

logger = logging.getLogger(__name__)

# Called with the schedule; returns an object exposing ``signature`` and
# ``output_amount``. Raising marks the run as failed.
OnFire = Callable[[Schedule], Awaitable[Any]]


def cron_expression(frequency: ScheduleFrequency, hour: int = 9) -> str:
    """Human-readable cron string for a frequency."""
    return {
        ScheduleFrequency.HOURLY: "0 * * * *",
        ScheduleFrequency.DAILY: f"0 {hour} * * *",
        ScheduleFrequency.WEEKLY: f"0 {hour} * * 1",
        ScheduleFrequency.MONTHLY: f"0 {hour} 1 * *",
    }[ScheduleFrequency(frequency)]


class ScheduleEngine:
    """
    Owns schedule lifecycle: create, pause, resume, cancel and timer fires.

    Timer fires enforce the execution cap. executed_count only moves on a
    successful run, and the schedule is deactivated the moment it reaches
    total_executions.
    """

    def __init__(
        self,
        store: JsonScheduleStore,
        timezone_name: str = "UTC",
        fire_hour: int = 9,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.store = store
        self.timezone_name = timezone_name
        self.fire_hour = fire_hour
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone_name)
        self._jobs: Dict[str, str] = {}
        self._callbacks: Dict[str, OnFire] = {}
        self._default_on_fire: Optional[OnFire] = None
        self._on_executed: List[Callable[[Schedule, Execution], None]] = []
        self._run_locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # timers
    # ------------------------------------------------------------------

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Schedule engine started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Schedule engine stopped")

    def trigger_for(self, frequency: ScheduleFrequency) -> CronTrigger:
        frequency = ScheduleFrequency(frequency)
        tz = self.timezone_name
        if frequency == ScheduleFrequency.HOURLY:
            return CronTrigger(minute=0, timezone=tz)
        if frequency == ScheduleFrequency.DAILY:
            return CronTrigger(hour=self.fire_hour, minute=0, timezone=tz)
        if frequency == ScheduleFrequency.WEEKLY:
            return CronTrigger(day_of_week="mon", hour=self.fire_hour, minute=0, timezone=tz)
        return CronTrigger(day=1, hour=self.fire_hour, minute=0, timezone=tz)

    def _register(self, schedule: Schedule, on_fire: Optional[OnFire]) -> bool:
        on_fire = on_fire or self._callbacks.get(schedule.id) or self._default_on_fire
        if on_fire is None:
            logger.debug(f"No fire handler in this process for {schedule.id[:8]}; timer not registered")
            return False

        self._callbacks[schedule.id] = on_fire
        job_id = f"dca-{schedule.id}"
        self._scheduler.add_job(
            self.fire,
            self.trigger_for(schedule.frequency),
            args=[schedule.id],
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._jobs[schedule.id] = job_id
        logger.info(f"Timer registered for {schedule.id[:8]} ({cron_expression(schedule.frequency, self.fire_hour)})")
        return True

    def _unregister(self, schedule_id: str) -> None:
        job_id = self._jobs.pop(schedule_id, None)
        if job_id and self._scheduler.get_job(job_id):
            self._scheduler.remove_job(job_id)

    def is_registered(self, schedule_id: str) -> bool:
        return schedule_id in self._jobs

    def on_executed(self, callback: Callable[[Schedule, Execution], None]) -> None:
        """Register a callback run after every recorded execution."""
        self._on_executed.append(callback)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def create(self, schedule: Schedule, on_fire: Optional[OnFire] = None) -> Schedule:
        """Validate, persist and start firing a new schedule."""
        schedule.validate()
        if self.store.get_schedule(schedule.id):
            raise ValidationError(f"Schedule {schedule.id} already exists")

        schedule.active = True
        self.store.save_schedule(schedule)
        self._register(schedule, on_fire)
        logger.info(
            f"Created schedule {schedule.id[:8]}: {schedule.amount_per_execution} "
            f"{schedule.from_token} -> {schedule.to_token} {schedule.frequency.value}"
        )
        return schedule

    async def pause(self, schedule_id: str) -> bool:
        """Stop firing a schedule. Returns whether it exists."""
        schedule = self.store.get_schedule(schedule_id)
        if schedule is None:
            return False

        self._unregister(schedule_id)
        if schedule.active:
            schedule.active = False
            self.store.save_schedule(schedule)
            logger.info(f"Paused schedule {schedule_id[:8]}")
        return True

    async def resume(self, schedule_id: str, on_fire: Optional[OnFire] = None) -> bool:
        """Start firing a paused schedule again. Returns whether it exists."""
        schedule = self.store.get_schedule(schedule_id)
        if schedule is None:
            return False
        if schedule.cap_reached():
            raise ValidationError(
                f"Schedule {schedule_id[:8]} already completed {schedule.executed_count} executions"
            )

        if not schedule.active:
            schedule.active = True
            self.store.save_schedule(schedule)
            logger.info(f"Resumed schedule {schedule_id[:8]}")
        self._register(schedule, on_fire)
        return True

    async def cancel(self, schedule_id: str) -> bool:
        """Remove a schedule for good. Its execution history is kept."""
        self._unregister(schedule_id)
        self._callbacks.pop(schedule_id, None)
        lock = self._run_locks.get(schedule_id)
        if lock is not None and not lock.locked():
            del self._run_locks[schedule_id]
        removed = self.store.remove_schedule(schedule_id)
        if removed:
            logger.info(f"Cancelled schedule {schedule_id[:8]}")
        return removed

    async def rehydrate(self, on_fire: OnFire) -> int:
        """Register timers for every active persisted schedule. Returns how many."""
        self._default_on_fire = on_fire
        count = 0
        for schedule in self.store.list_schedules():
            if schedule.active and not schedule.cap_reached():
                if self._register(schedule, on_fire):
                    count += 1
        logger.info(f"Rehydrated {count} active schedules")
        return count

    # ------------------------------------------------------------------
    # firing
    # ------------------------------------------------------------------

    async def fire(self, schedule_id: str, on_fire: Optional[OnFire] = None) -> Optional[Execution]:
        """
        Run one execution of a schedule.

        Returns the recorded Execution, or None when the schedule is gone,
        paused, or has already hit its cap. Failures are recorded, not raised.
        Runs of the same schedule are serialized: a fire issued while another
        is in flight waits for it, then sees its outcome.
        """
        lock = self._run_locks.setdefault(schedule_id, asyncio.Lock())
        async with lock:
            return await self._fire_locked(schedule_id, on_fire)

    async def _fire_locked(self, schedule_id: str, on_fire: Optional[OnFire]) -> Optional[Execution]:
        schedule = self.store.get_schedule(schedule_id)
        if schedule is None:
            self._unregister(schedule_id)
            return None
        if not schedule.active:
            return None
        if schedule.cap_reached():
            schedule.active = False
            self.store.save_schedule(schedule)
            self._unregister(schedule_id)
            logger.info(f"Schedule {schedule_id[:8]} reached its cap; paused")
            return None

        handler = on_fire or self._callbacks.get(schedule_id) or self._default_on_fire
        if handler is None:
            raise ValidationError(f"No fire handler for schedule {schedule_id[:8]}")

        with CorrelationContext(schedule_id=schedule_id):
            try:
                result = await handler(schedule)
            except Exception as e:
                logger.error(f"Execution of {schedule_id[:8]} failed: {e}")
                execution = Execution(schedule_id=schedule_id, success=False, error=str(e))
            else:
                execution = Execution(
                    schedule_id=schedule_id,
                    success=True,
                    signature=getattr(result, "signature", None),
                    output_amount=getattr(result, "output_amount", None),
                )

            self.store.append_execution(execution)

            # Re-read: the schedule may have been paused or cancelled during the run.
            current = self.store.get_schedule(schedule_id)
            if current is not None:
                if execution.success and not current.cap_reached():
                    current.executed_count += 1
                if current.cap_reached():
                    current.active = False
                    self._unregister(schedule_id)
                    logger.info(f"Schedule {schedule_id[:8]} completed {current.executed_count} executions")
                self.store.save_schedule(current)
                schedule = current

        for callback in self._on_executed:
            try:
                callback(schedule, execution)
            except Exception as e:
                logger.error(f"Execution callback error: {e}")
        return execution

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get(self, schedule_id: str) -> Schedule:
        schedule = self.store.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule not found: {schedule_id}", {"schedule_id": schedule_id})
        return schedule

    def list(self) -> List[Schedule]:
        return self.store.list_schedules()

    def history(self, schedule_id: Optional[str] = None) -> List[Execution]:
        return self.store.list_executions(schedule_id)

    def next_fire_time(self, schedule_id: str, now: Optional[datetime] = None) -> Optional[datetime]:
        """Next timer fire for an active schedule, or None."""
        schedule = self.store.get_schedule(schedule_id)
        if schedule is None or not schedule.active:
            return None
        now = now or datetime.now(timezone.utc)
        return self.trigger_for(schedule.frequency).get_next_fire_time(None, now)
