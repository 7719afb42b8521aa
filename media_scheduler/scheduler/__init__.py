"""Scheduled task system — schedules, timers, execution, and association upkeep."""

from media_scheduler.scheduler.engine import RunNowResult, SchedulerEngine, SchedulerStatus
from media_scheduler.scheduler.executor import ExecutionResult, TaskExecutor, Trigger
from media_scheduler.scheduler.models import RunStatus, Schedule, ScheduledTask, TaskType
from media_scheduler.scheduler.store import TaskStore
from media_scheduler.scheduler.timers import TimerRegistry
from media_scheduler.scheduler.validator import AssociationValidator

__all__ = [
    "Schedule",
    "ScheduledTask",
    "TaskType",
    "RunStatus",
    "TaskStore",
    "TimerRegistry",
    "TaskExecutor",
    "ExecutionResult",
    "Trigger",
    "AssociationValidator",
    "SchedulerEngine",
    "SchedulerStatus",
    "RunNowResult",
]
