"""Tests for TaskExecutor — single-flight runs, history, and re-arming."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from media_scheduler.actions.base import ActionResult
from media_scheduler.scheduler.calculator import BackoffPolicy
from media_scheduler.scheduler.errors import AlreadyRunningError, NotFoundError
from media_scheduler.scheduler.executor import TaskExecutor, Trigger
from media_scheduler.scheduler.models import RunStatus, Schedule, ScheduledTask, TaskType
from media_scheduler.scheduler.store import TaskStore
from media_scheduler.scheduler.timers import TimerRegistry

FIXED_NOW = datetime(2030, 6, 3, 12, 0, tzinfo=UTC)


def _make_task(task_id: str = "task1", **kwargs) -> ScheduledTask:
    defaults = {
        "item_id": "item-1",
        "item_title": "Severance",
        "name": "Episode check",
        "task_type": TaskType.EPISODE_UPDATE,
        "schedule": Schedule.every(24 * 3600),
    }
    defaults.update(kwargs)
    return ScheduledTask(id=task_id, **defaults)


@pytest.fixture
def fixed_executor(store, action, timers, locks) -> TaskExecutor:
    return TaskExecutor(
        store=store, action=action, timers=timers, locks=locks, clock=lambda: FIXED_NOW
    )


# -- Successful and failed runs ------------------------------------------------


async def test_success_records_history_and_rearms(
    executor: TaskExecutor, store: TaskStore, timers: TimerRegistry, action
) -> None:
    await store.add_task(_make_task(action={"force_refresh": True}))

    result = await executor.execute("task1")

    assert result.executed is True
    assert result.success is True
    assert result.status is RunStatus.SUCCESS
    assert result.trigger is Trigger.MANUAL

    fetched = await store.get_task("task1")
    assert fetched.last_run_status is RunStatus.SUCCESS
    assert fetched.last_run_error is None
    assert fetched.consecutive_failures == 0
    assert fetched.last_run_at is not None
    assert fetched.next_run_at == result.next_run_at
    assert timers.get("task1").fire_at.isoformat() == fetched.next_run_at

    request = action.calls[0]
    assert request.task_id == "task1"
    assert request.item_id == "item-1"
    assert request.task_type == "episode-update"
    assert request.options == {"force_refresh": True}


async def test_interval_rearms_from_execution_end(
    fixed_executor: TaskExecutor, store: TaskStore
) -> None:
    await store.add_task(_make_task())

    result = await fixed_executor.execute("task1")

    fetched = await store.get_task("task1")
    assert fetched.last_run_at == FIXED_NOW.isoformat()
    assert fetched.next_run_at == (FIXED_NOW + timedelta(hours=24)).isoformat()
    assert result.next_run_at == fetched.next_run_at


async def test_failed_result_is_recorded(
    executor: TaskExecutor, store: TaskStore, timers: TimerRegistry, action
) -> None:
    await store.add_task(_make_task(consecutive_failures=1))
    action.result = ActionResult.failed("Execute endpoint returned 500: oops")

    result = await executor.execute("task1")

    assert result.executed is True
    assert result.success is False
    assert result.error == "Execute endpoint returned 500: oops"

    fetched = await store.get_task("task1")
    assert fetched.last_run_status is RunStatus.FAILURE
    assert fetched.last_run_error == "Execute endpoint returned 500: oops"
    assert fetched.consecutive_failures == 2
    assert "task1" in timers


async def test_success_resets_failure_count(executor: TaskExecutor, store: TaskStore) -> None:
    await store.add_task(
        _make_task(
            consecutive_failures=4, last_run_status=RunStatus.FAILURE, last_run_error="old"
        )
    )

    await executor.execute("task1")

    fetched = await store.get_task("task1")
    assert fetched.consecutive_failures == 0
    assert fetched.last_run_error is None


async def test_action_exception_becomes_failure(
    executor: TaskExecutor, store: TaskStore, action
) -> None:
    await store.add_task(_make_task())
    action.error = RuntimeError("connection reset")

    result = await executor.execute("task1")

    assert result.success is False
    assert (await store.get_task("task1")).last_run_error == "connection reset"


async def test_execution_timeout(store: TaskStore, action, timers, locks) -> None:
    executor = TaskExecutor(
        store=store, action=action, timers=timers, locks=locks, execution_timeout=0.05
    )
    await store.add_task(_make_task())
    action.block()

    result = await executor.execute("task1")

    assert result.success is False
    assert result.error == "Execution timed out after 0.05s"
    assert executor.is_running("task1") is False
    assert (await store.get_task("task1")).last_run_status is RunStatus.FAILURE


async def test_backoff_delays_next_run(store: TaskStore, action, timers, locks) -> None:
    executor = TaskExecutor(
        store=store,
        action=action,
        timers=timers,
        locks=locks,
        backoff=BackoffPolicy(base_seconds=7200, max_seconds=86400, threshold=1),
        clock=lambda: FIXED_NOW,
    )
    await store.add_task(_make_task(schedule=Schedule.every(3600)))
    action.result = ActionResult.failed("boom")

    result = await executor.execute("task1")

    assert result.next_run_at == (FIXED_NOW + timedelta(hours=2)).isoformat()


async def test_next_run_is_after_rearm_time(
    fixed_executor: TaskExecutor, store: TaskStore
) -> None:
    await store.add_task(_make_task(schedule=Schedule.weekly(0, 12)))  # FIXED_NOW is Monday noon

    result = await fixed_executor.execute("task1")

    assert datetime.fromisoformat(result.next_run_at) > FIXED_NOW
    assert result.next_run_at == (FIXED_NOW + timedelta(days=7)).isoformat()


# -- Guards --------------------------------------------------------------------


async def test_missing_task_raises(executor: TaskExecutor, timers: TimerRegistry, action) -> None:
    with pytest.raises(NotFoundError):
        await executor.execute("missing-id")
    assert action.calls == []
    assert len(timers) == 0


async def test_concurrent_run_is_rejected(
    executor: TaskExecutor, store: TaskStore, action
) -> None:
    await store.add_task(_make_task())
    release = action.block()

    first = asyncio.create_task(executor.execute("task1"))
    await action.started.wait()
    assert executor.is_running("task1") is True
    assert executor.running_task_ids() == ["task1"]

    with pytest.raises(AlreadyRunningError):
        await executor.execute("task1")

    release.set()
    result = await first
    assert result.success is True
    assert len(action.calls) == 1
    assert executor.is_running("task1") is False


async def test_disabled_task_is_not_run(executor: TaskExecutor, store: TaskStore, action) -> None:
    await store.add_task(_make_task(enabled=False))

    result = await executor.execute("task1")

    assert result.executed is False
    assert result.error == "Task is disabled"
    assert result.status is RunStatus.NEVER
    assert action.calls == []
    assert executor.is_running("task1") is False


# -- Changes during a run ------------------------------------------------------


async def test_disabled_during_run_keeps_stale_next_run(
    executor: TaskExecutor, store: TaskStore, timers: TimerRegistry, action
) -> None:
    task = _make_task()
    await store.add_task(task)
    await executor.arm(task)
    stale = (await store.get_task("task1")).next_run_at
    release = action.block()

    running = asyncio.create_task(executor.execute("task1"))
    await action.started.wait()
    task.enabled = False
    await store.update_task(task)
    release.set()
    result = await running

    assert result.next_run_at is None
    assert "task1" not in timers
    fetched = await store.get_task("task1")
    assert fetched.enabled is False
    assert fetched.next_run_at == stale
    assert fetched.last_run_status is RunStatus.SUCCESS


async def test_deleted_during_run_discards_result(
    executor: TaskExecutor, store: TaskStore, timers: TimerRegistry, action
) -> None:
    task = _make_task()
    await store.add_task(task)
    await executor.arm(task)
    release = action.block()

    running = asyncio.create_task(executor.execute("task1"))
    await action.started.wait()
    await store.delete_task("task1")
    release.set()
    result = await running

    assert result.discarded is True
    assert result.executed is True
    assert "task1" not in timers
    assert await store.get_task("task1") is None


async def test_edit_during_run_is_kept(
    executor: TaskExecutor, store: TaskStore, action
) -> None:
    task = _make_task()
    await store.add_task(task)
    release = action.block()

    running = asyncio.create_task(executor.execute("task1"))
    await action.started.wait()
    task.name = "Renamed while running"
    await store.update_task(task)
    release.set()
    await running

    fetched = await store.get_task("task1")
    assert fetched.name == "Renamed while running"
    assert fetched.last_run_status is RunStatus.SUCCESS


# -- Timer callback ------------------------------------------------------------


async def test_run_scheduled_uses_timer_trigger(
    executor: TaskExecutor, store: TaskStore, action
) -> None:
    await store.add_task(_make_task())

    await executor.run_scheduled("task1")

    assert len(action.calls) == 1
    assert (await store.get_task("task1")).last_run_status is RunStatus.SUCCESS


async def test_run_scheduled_for_deleted_task_drops_timer(
    executor: TaskExecutor, timers: TimerRegistry
) -> None:
    async def _noop() -> None:
        pass

    timers.register("ghost", FIXED_NOW, _noop)

    await executor.run_scheduled("ghost")

    assert "ghost" not in timers


async def test_run_scheduled_while_running_is_skipped(
    executor: TaskExecutor, store: TaskStore, action
) -> None:
    await store.add_task(_make_task())
    release = action.block()

    running = asyncio.create_task(executor.execute("task1"))
    await action.started.wait()
    await executor.run_scheduled("task1")
    release.set()
    await running

    assert len(action.calls) == 1


async def test_arm_persists_and_registers(
    fixed_executor: TaskExecutor, store: TaskStore, timers: TimerRegistry
) -> None:
    task = _make_task(schedule=Schedule.every(600))
    await store.add_task(task)

    fire_at = await fixed_executor.arm(task)

    assert fire_at == FIXED_NOW + timedelta(minutes=10)
    assert (await store.get_task("task1")).next_run_at == fire_at.isoformat()
    assert timers.get("task1").fire_at == fire_at


async def test_arm_missing_task_registers_nothing(
    executor: TaskExecutor, timers: TimerRegistry
) -> None:
    assert await executor.arm(_make_task("ghost")) is None
    assert "ghost" not in timers


async def test_row_gone_before_rearm_leaves_no_timer(
    executor: TaskExecutor, store: TaskStore, timers: TimerRegistry
) -> None:
    await store.add_task(_make_task())
    record_run = store.record_run

    async def record_then_vanish(task_id, **kwargs):
        recorded = await record_run(task_id, **kwargs)
        await store.delete_task(task_id)
        return recorded

    with patch.object(store, "record_run", record_then_vanish):
        result = await executor.execute("task1")

    assert result.executed is True
    assert result.next_run_at is None
    assert "task1" not in timers
