"""Scheduler health check — spot tasks whose timers drifted from their records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from media_scheduler.scheduler.models import ScheduledTask
    from media_scheduler.scheduler.timers import TimerRegistry

MAX_ITEM_ID_LENGTH = 50


class Severity(StrEnum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class HealthIssue:
    task_id: str
    task_name: str
    issue: str
    severity: Severity
    auto_fixable: bool


@dataclass
class HealthReport:
    checked_at: datetime
    is_initialized: bool
    active_timers: int
    running_task_ids: list[str]
    total_tasks: int
    enabled_tasks: int
    issues: list[HealthIssue] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return sum(1 for i in self.issues if i.severity is Severity.ERROR)

    @property
    def warnings(self) -> int:
        return sum(1 for i in self.issues if i.severity is Severity.WARNING)

    @property
    def auto_fixable(self) -> int:
        return sum(1 for i in self.issues if i.auto_fixable)

    @property
    def healthy(self) -> bool:
        return not self.issues


def _item_id_malformed(item_id: str) -> bool:
    return not item_id or len(item_id) > MAX_ITEM_ID_LENGTH or any(c.isspace() for c in item_id)


def check_health(
    tasks: Iterable[ScheduledTask],
    timers: TimerRegistry,
    running_ids: Iterable[str],
    *,
    now: datetime,
    missed_grace: timedelta,
    is_initialized: bool = True,
) -> HealthReport:
    """Inspect tasks against armed timers.

    Auto-fixable issues go away with ``SchedulerEngine.reconcile_timers()``
    or a reinitialize; malformed item ids need the association validator or
    a manual edit.
    """
    tasks = list(tasks)
    running = set(running_ids)
    report = HealthReport(
        checked_at=now,
        is_initialized=is_initialized,
        active_timers=len(timers),
        running_task_ids=sorted(running),
        total_tasks=len(tasks),
        enabled_tasks=sum(1 for t in tasks if t.enabled),
    )

    def flag(task: ScheduledTask, issue: str, severity: Severity, auto_fixable: bool) -> None:
        report.issues.append(HealthIssue(task.id, task.name, issue, severity, auto_fixable))

    for task in tasks:
        if not task.enabled:
            if task.id in timers:
                flag(task, "Task is disabled but still has a timer", Severity.ERROR, True)
            continue

        if task.id not in timers and task.id not in running:
            flag(task, "Task is enabled but has no active timer", Severity.ERROR, True)

        if task.next_run_at:
            overdue = now - datetime.fromisoformat(task.next_run_at)
            if overdue > missed_grace and task.id not in running:
                minutes = round(overdue.total_seconds() / 60)
                flag(task, f"Task missed its run by {minutes} minute(s)", Severity.ERROR, True)
        else:
            flag(task, "Task has no next run time", Severity.WARNING, True)

        if _item_id_malformed(task.item_id):
            flag(task, "Task's item id is malformed", Severity.ERROR, False)

    return report
