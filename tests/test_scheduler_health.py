"""Tests for the scheduler health check."""

from datetime import UTC, datetime, timedelta

from media_scheduler.scheduler.health import Severity, check_health
from media_scheduler.scheduler.models import Schedule, ScheduledTask, TaskType
from media_scheduler.scheduler.timers import TimerRegistry

NOW = datetime(2025, 3, 3, 12, 0, tzinfo=UTC)
GRACE = timedelta(minutes=5)


async def _noop() -> None:
    pass


def _make_task(task_id: str = "task1", **kwargs) -> ScheduledTask:
    defaults = {
        "item_id": "item-1",
        "name": "Episode check",
        "task_type": TaskType.EPISODE_UPDATE,
        "schedule": Schedule.daily(9),
        "next_run_at": (NOW + timedelta(hours=21)).isoformat(),
    }
    defaults.update(kwargs)
    return ScheduledTask(id=task_id, **defaults)


def _check(tasks, timers, running=()):
    return check_health(tasks, timers, running, now=NOW, missed_grace=GRACE)


def test_healthy(timers: TimerRegistry) -> None:
    timers.register("task1", NOW + timedelta(hours=21), _noop)

    report = _check([_make_task()], timers)

    assert report.healthy
    assert report.active_timers == 1
    assert report.total_tasks == 1
    assert report.enabled_tasks == 1


def test_enabled_without_timer(timers: TimerRegistry) -> None:
    report = _check([_make_task()], timers)

    assert len(report.issues) == 1
    issue = report.issues[0]
    assert issue.issue == "Task is enabled but has no active timer"
    assert issue.severity is Severity.ERROR
    assert issue.auto_fixable is True


def test_running_task_without_timer_is_fine(timers: TimerRegistry) -> None:
    report = _check([_make_task()], timers, running=["task1"])

    assert report.healthy
    assert report.running_task_ids == ["task1"]


def test_missed_run_beyond_grace(timers: TimerRegistry) -> None:
    timers.register("task1", NOW + timedelta(days=1), _noop)
    task = _make_task(next_run_at=(NOW - timedelta(minutes=10)).isoformat())

    report = _check([task], timers)

    assert [i.issue for i in report.issues] == ["Task missed its run by 10 minute(s)"]
    assert report.errors == 1


def test_late_within_grace_is_fine(timers: TimerRegistry) -> None:
    timers.register("task1", NOW, _noop)
    task = _make_task(next_run_at=(NOW - timedelta(minutes=2)).isoformat())

    assert _check([task], timers).healthy


def test_missing_next_run_is_warning(timers: TimerRegistry) -> None:
    timers.register("task1", NOW, _noop)

    report = _check([_make_task(next_run_at=None)], timers)

    assert report.warnings == 1
    assert report.errors == 0
    assert report.issues[0].severity is Severity.WARNING


def test_malformed_item_ids(timers: TimerRegistry) -> None:
    timers.register("spaced", NOW + timedelta(hours=1), _noop)
    timers.register("long", NOW + timedelta(hours=1), _noop)
    tasks = [
        _make_task("spaced", item_id="item 1"),
        _make_task("long", item_id="x" * 51),
    ]

    report = _check(tasks, timers)

    assert {i.task_id for i in report.issues} == {"spaced", "long"}
    assert all(not i.auto_fixable for i in report.issues)
    assert report.auto_fixable == 0


def test_disabled_with_timer(timers: TimerRegistry) -> None:
    timers.register("task1", NOW, _noop)

    report = _check([_make_task(enabled=False)], timers)

    assert report.issues[0].issue == "Task is disabled but still has a timer"
    assert report.enabled_tasks == 0


def test_disabled_without_timer_is_fine(timers: TimerRegistry) -> None:
    task = _make_task(enabled=False, next_run_at=(NOW - timedelta(days=3)).isoformat())

    assert _check([task], timers).healthy


def test_counts(timers: TimerRegistry) -> None:
    timers.register("stale", NOW, _noop)
    tasks = [
        _make_task("untimed"),
        _make_task("stale", enabled=False),
        _make_task("broken", item_id=""),
    ]

    report = _check(tasks, timers)

    # "broken" has no timer and a malformed item id
    assert report.errors == 4
    assert report.auto_fixable == 3
    assert not report.healthy
