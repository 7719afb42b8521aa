"""TimerRegistry — one armed APScheduler job per enabled task."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimerInfo:
    """Point-in-time view of an armed timer."""

    task_id: str
    fire_at: datetime


@dataclass(frozen=True)
class ReconcileResult:
    """Drift between enabled tasks and armed timers.

    ``missing`` must be re-registered by the caller; ``orphaned`` timers have
    already been cancelled.
    """

    missing: list[str] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)

    @property
    def missing_count(self) -> int:
        return len(self.missing)

    @property
    def orphaned_count(self) -> int:
        return len(self.orphaned)


class TimerRegistry:
    """Maps task ids to deferred callbacks on an ``AsyncIOScheduler``.

    Each timer is a one-shot ``DateTrigger`` job whose id is the task id. A
    timer leaves the registry the moment it fires; the executor re-arms it
    once the run has been recorded.

    Args:
        scheduler: Scheduler to arm jobs on (a fresh one when omitted).
        timezone: IANA timezone for a freshly created scheduler.
    """

    def __init__(
        self,
        scheduler: AsyncIOScheduler | None = None,
        timezone: str = "UTC",
    ) -> None:
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self._timers: dict[str, TimerInfo] = {}
        self._housekeeping: set[str] = set()

    # -- Lifecycle -------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Start firing timers. Must be called from inside the event loop."""
        if not self._scheduler.running:
            self._scheduler.start()

    def shutdown(self) -> None:
        """Cancel every timer and stop the scheduler."""
        self.clear()
        for job_id in list(self._housekeeping):
            self._remove_job(job_id)
        self._housekeeping.clear()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    # -- Task timers -----------------------------------------------------------

    def register(
        self,
        task_id: str,
        fire_at: datetime,
        on_fire: Callable[[], Awaitable[None]],
    ) -> TimerInfo:
        """Arm a timer for *task_id*, replacing any existing one."""
        self.unregister(task_id)
        info = TimerInfo(task_id=task_id, fire_at=fire_at)
        self._scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=fire_at),
            id=task_id,
            name=f"task:{task_id}",
            args=[info, on_fire],
            misfire_grace_time=None,
            replace_existing=True,
        )
        self._timers[task_id] = info
        logger.debug("Armed timer for task %s at %s", task_id, fire_at.isoformat())
        return info

    def unregister(self, task_id: str) -> bool:
        """Cancel the timer for *task_id*. Returns False if there was none."""
        info = self._timers.pop(task_id, None)
        if info is None:
            return False
        self._remove_job(task_id)
        logger.debug("Cancelled timer for task %s", task_id)
        return True

    def clear(self) -> int:
        """Cancel every task timer. Returns how many were cancelled."""
        task_ids = list(self._timers)
        for task_id in task_ids:
            self.unregister(task_id)
        return len(task_ids)

    def get(self, task_id: str) -> TimerInfo | None:
        return self._timers.get(task_id)

    def list(self) -> list[TimerInfo]:
        """All armed timers, soonest first."""
        return sorted(self._timers.values(), key=lambda t: (t.fire_at, t.task_id))

    def task_ids(self) -> set[str]:
        return set(self._timers)

    def reconcile(self, enabled_task_ids: Iterable[str]) -> ReconcileResult:
        """Compare armed timers with *enabled_task_ids* and drop the orphans."""
        enabled = set(enabled_task_ids)
        registered = set(self._timers)
        missing = sorted(enabled - registered)
        orphaned = sorted(registered - enabled)
        for task_id in orphaned:
            self.unregister(task_id)
        if missing or orphaned:
            logger.info(
                "Timer drift: %d missing, %d orphaned (orphans cancelled)",
                len(missing),
                len(orphaned),
            )
        return ReconcileResult(missing=missing, orphaned=orphaned)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._timers

    def __len__(self) -> int:
        return len(self._timers)

    # -- Housekeeping jobs -----------------------------------------------------

    def add_interval_job(
        self,
        job_id: str,
        seconds: float,
        callback: Callable[[], Awaitable[object]],
    ) -> None:
        """Run *callback* every *seconds*. Not a task timer: never listed or reconciled."""
        self._scheduler.add_job(
            callback,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=job_id,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._housekeeping.add(job_id)
        logger.info("Housekeeping job %s every %.0fs", job_id, seconds)

    # -- Internal --------------------------------------------------------------

    async def _fire(self, info: TimerInfo, on_fire: Callable[[], Awaitable[None]]) -> None:
        """Job body: forget the spent timer, then hand over to the callback."""
        if self._timers.get(info.task_id) is info:
            del self._timers[info.task_id]
        await on_fire()

    def _remove_job(self, job_id: str) -> None:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug("Job %s not found in scheduler (already fired)", job_id)
