"""Next-run computation for task schedules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger

from media_scheduler.scheduler.models import Schedule, ScheduleKind

if TYPE_CHECKING:
    from media_scheduler.config import Settings

_ONE_MICROSECOND = timedelta(microseconds=1)


def build_trigger(schedule: Schedule, timezone: str) -> CronTrigger:
    """Convert a weekly or daily schedule into an APScheduler cron trigger."""
    if schedule.kind is ScheduleKind.WEEKLY:
        # APScheduler numbers weekdays like we do: 0 = Monday
        return CronTrigger(
            day_of_week=schedule.day_of_week,
            hour=schedule.hour,
            minute=schedule.minute,
            second=0,
            timezone=timezone,
        )
    if schedule.kind is ScheduleKind.DAILY:
        return CronTrigger(hour=schedule.hour, minute=schedule.minute, second=0, timezone=timezone)
    msg = f"No cron trigger for {schedule.kind} schedules"
    raise ValueError(msg)


def compute_next_run(schedule: Schedule, now: datetime, timezone: str) -> datetime:
    """Return the soonest fire time strictly after *now*.

    Weekly and daily slots are resolved in *timezone*; a *now* that falls
    exactly on a slot counts as already passed. Interval schedules fire
    ``interval_seconds`` after *now*.
    """
    if now.tzinfo is None:
        msg = "compute_next_run needs a timezone-aware 'now'"
        raise ValueError(msg)

    schedule.validate()
    if schedule.kind is ScheduleKind.INTERVAL:
        next_run = now + timedelta(seconds=float(schedule.interval_seconds or 0))
    else:
        trigger = build_trigger(schedule, timezone)
        next_run = trigger.get_next_fire_time(None, now + _ONE_MICROSECOND)

    if next_run is None or next_run <= now:
        msg = f"Schedule {schedule.to_dict()} produced no fire time after {now.isoformat()}"
        raise ValueError(msg)
    return next_run


@dataclass(frozen=True)
class BackoffPolicy:
    """Spaces out runs of a task that keeps failing.

    Below *threshold* consecutive failures the schedule is followed as is.
    From then on the next run is pushed to the first schedule slot at least
    ``base_seconds * 2 ** (failures - threshold)`` away, capped at
    *max_seconds*. A zero base disables backoff.
    """

    base_seconds: float = 0.0
    max_seconds: float = 0.0
    threshold: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> BackoffPolicy:
        return cls(
            base_seconds=settings.backoff_base_seconds,
            max_seconds=settings.backoff_max_seconds,
            threshold=settings.backoff_failure_threshold,
        )

    def delay_for(self, consecutive_failures: int) -> timedelta:
        if self.base_seconds <= 0 or consecutive_failures < self.threshold:
            return timedelta(0)
        seconds = self.base_seconds * 2 ** (consecutive_failures - self.threshold)
        if self.max_seconds > 0:
            seconds = min(seconds, self.max_seconds)
        return timedelta(seconds=seconds)

    def next_run(
        self,
        schedule: Schedule,
        now: datetime,
        timezone: str,
        consecutive_failures: int = 0,
    ) -> datetime:
        """Next schedule slot after *now*, honouring the failure backoff."""
        next_run = compute_next_run(schedule, now, timezone)
        delay = self.delay_for(consecutive_failures)
        if not delay:
            return next_run
        earliest = now + delay
        while next_run < earliest:
            next_run = compute_next_run(schedule, next_run, timezone)
        return next_run
