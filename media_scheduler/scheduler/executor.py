"""TaskExecutor — single-flight execution of scheduled tasks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING

from media_scheduler.actions.base import ActionRequest, ActionResult
from media_scheduler.scheduler.calculator import BackoffPolicy
from media_scheduler.scheduler.errors import (
    AlreadyRunningError,
    NotFoundError,
    SchedulerError,
)
from media_scheduler.scheduler.locks import KeyedLock, RunGuard
from media_scheduler.scheduler.models import RunStatus

if TYPE_CHECKING:
    from collections.abc import Callable

    from media_scheduler.actions.base import TaskAction
    from media_scheduler.scheduler.models import ScheduledTask
    from media_scheduler.scheduler.store import TaskStore
    from media_scheduler.scheduler.timers import TimerRegistry

logger = logging.getLogger(__name__)


class Trigger(StrEnum):
    TIMER = "timer"
    MANUAL = "manual"


@dataclass
class ExecutionResult:
    """Outcome of one ``TaskExecutor.execute`` call.

    Attributes:
        task_id: The task that was asked to run.
        trigger: What started the run.
        executed: Whether the task action was actually invoked.
        success: Whether the action reported success.
        status: Run status of this run (the stored status when nothing ran).
        error: Error message from the action, or why nothing ran.
        next_run_at: The re-armed fire time, None when not re-armed.
        discarded: The task was deleted while running; nothing was recorded.
    """

    task_id: str
    trigger: Trigger
    executed: bool
    success: bool
    status: RunStatus
    error: str | None = None
    next_run_at: str | None = None
    discarded: bool = False


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TaskExecutor:
    """Runs a task's action at most once at a time and records the outcome.

    Also owns arming: after every recorded run an enabled task gets a fresh
    timer whose callback comes back to ``run_scheduled``.

    Args:
        store: TaskStore holding the task records.
        action: Task action collaborator.
        timers: TimerRegistry to (re-)arm timers on.
        timezone: IANA timezone for weekly/daily schedules.
        execution_timeout: Seconds before a running action is abandoned and
            recorded as failed (None = no deadline).
        backoff: Policy spacing out runs of repeatedly failing tasks.
        locks: Per-task write lock shared with other store writers.
        clock: Returns the current aware datetime (injectable for tests).
    """

    def __init__(
        self,
        store: TaskStore,
        action: TaskAction,
        timers: TimerRegistry,
        *,
        timezone: str = "UTC",
        execution_timeout: float | None = None,
        backoff: BackoffPolicy | None = None,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._action = action
        self._timers = timers
        self._timezone = timezone
        self._execution_timeout = execution_timeout
        self._backoff = backoff or BackoffPolicy()
        self._locks = locks if locks is not None else KeyedLock()
        self._guard = RunGuard()
        self._clock = clock

    # -- Run state -------------------------------------------------------------

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    def is_running(self, task_id: str) -> bool:
        return self._guard.is_running(task_id)

    def running_task_ids(self) -> list[str]:
        return self._guard.running_ids()

    # -- Execution -------------------------------------------------------------

    async def execute(self, task_id: str, trigger: Trigger = Trigger.MANUAL) -> ExecutionResult:
        """Run *task_id* now.

        Raises:
            NotFoundError: No such task.
            AlreadyRunningError: The task is already executing.
            PersistenceError: The store could not be read or written.
        """
        task = await self._store.get_task(task_id)
        if task is None:
            raise NotFoundError(task_id)
        if not self._guard.try_acquire(task_id):
            raise AlreadyRunningError(task_id)

        try:
            if not task.enabled:
                logger.info("Skipping disabled task: '%s' (%s)", task.name, task_id)
                return ExecutionResult(
                    task_id=task_id,
                    trigger=trigger,
                    executed=False,
                    success=False,
                    status=task.last_run_status,
                    error="Task is disabled",
                )

            logger.info(
                "Executing task: '%s' (%s) type=%s item=%s trigger=%s",
                task.name,
                task_id,
                task.task_type,
                task.item_id,
                trigger,
            )
            outcome = await self._invoke(task)
            if outcome.success:
                logger.info("Task executed successfully: '%s' (%s)", task.name, task_id)
            else:
                logger.warning(
                    "Task execution failed: '%s' (%s): %s", task.name, task_id, outcome.error
                )
            return await self._finish(task_id, trigger, outcome)
        finally:
            self._guard.release(task_id)

    async def run_scheduled(self, task_id: str) -> None:
        """Timer callback. Never lets a scheduler error escape into the event loop."""
        try:
            await self.execute(task_id, Trigger.TIMER)
        except AlreadyRunningError:
            logger.info("Timer fired for %s while it is still running; skipped", task_id)
        except NotFoundError:
            logger.warning("Timer fired for deleted task %s; dropping timer", task_id)
            self._timers.unregister(task_id)
        except SchedulerError:
            logger.exception("Scheduled run of %s could not be completed", task_id)

    async def _invoke(self, task: ScheduledTask) -> ActionResult:
        """Call the task action; every failure becomes a failed result."""
        request = ActionRequest(
            task_id=task.id,
            item_id=task.item_id,
            task_type=task.task_type.value,
            options=dict(task.action),
        )
        try:
            if self._execution_timeout:
                return await asyncio.wait_for(
                    self._action.run(request), timeout=self._execution_timeout
                )
            return await self._action.run(request)
        except TimeoutError:
            return ActionResult.failed(
                f"Execution timed out after {self._execution_timeout:g}s"
            )
        except Exception as exc:
            logger.exception("Task action raised for task %s", task.id)
            return ActionResult.failed(str(exc) or type(exc).__name__)

    async def _finish(
        self, task_id: str, trigger: Trigger, outcome: ActionResult
    ) -> ExecutionResult:
        """Record the run against the task as it is *now*, then re-arm or disarm."""
        async with self._locks.hold(task_id):
            task = await self._store.get_task(task_id)
            if task is None:
                logger.info("Task %s was deleted while running; discarding result", task_id)
                self._timers.unregister(task_id)
                return ExecutionResult(
                    task_id=task_id,
                    trigger=trigger,
                    executed=True,
                    success=outcome.success,
                    status=RunStatus.SUCCESS if outcome.success else RunStatus.FAILURE,
                    error=outcome.error,
                    discarded=True,
                )

            now = self._clock()
            if outcome.success:
                task.last_run_status = RunStatus.SUCCESS
                task.last_run_error = None
                task.consecutive_failures = 0
            else:
                task.last_run_status = RunStatus.FAILURE
                task.last_run_error = outcome.error or "Unknown error"
                task.consecutive_failures += 1
            task.last_run_at = now.isoformat()
            await self._store.record_run(
                task_id,
                last_run_at=task.last_run_at,
                status=task.last_run_status,
                error=task.last_run_error,
                consecutive_failures=task.consecutive_failures,
            )

            next_run_at = None
            if task.enabled:
                next_run = await self.arm_locked(task, now)
                next_run_at = next_run.isoformat() if next_run else None
            elif self._timers.unregister(task_id):
                logger.info("Task %s was disabled while running; timer removed", task_id)

        return ExecutionResult(
            task_id=task_id,
            trigger=trigger,
            executed=True,
            success=outcome.success,
            status=task.last_run_status,
            error=task.last_run_error,
            next_run_at=next_run_at,
        )

    # -- Arming ----------------------------------------------------------------

    async def arm(self, task: ScheduledTask, now: datetime | None = None) -> datetime | None:
        """Compute, persist and register the next fire time for *task*."""
        async with self._locks.hold(task.id):
            return await self.arm_locked(task, now)

    async def arm_locked(
        self, task: ScheduledTask, now: datetime | None = None
    ) -> datetime | None:
        """Like ``arm`` for callers already holding ``locks.hold(task.id)``.

        Returns None, and leaves no timer behind, when the task is no longer stored.
        """
        now = now or self._clock()
        next_run = self._backoff.next_run(
            task.schedule, now, self._timezone, task.consecutive_failures
        )
        task.next_run_at = next_run.isoformat()
        if not await self._store.update_next_run(task.id, task.next_run_at):
            self._timers.unregister(task.id)
            logger.info("Task %s is gone; not arming", task.id)
            return None
        self._timers.register(task.id, next_run, partial(self.run_scheduled, task.id))
        logger.info("Task '%s' (%s) next run at %s", task.name, task.id, task.next_run_at)
        return next_run
