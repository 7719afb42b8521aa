"""SchedulerEngine — public entry point composing store, timers, executor and validator."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from media_scheduler.scheduler.errors import (
    AlreadyRunningError,
    ExecutionError,
    NotFoundError,
    SchedulerError,
)
from media_scheduler.scheduler.executor import Trigger
from media_scheduler.scheduler.health import HealthReport, check_health
from media_scheduler.scheduler.timers import ReconcileResult
from media_scheduler.scheduler.validator import CleanupReport, ValidationReport

if TYPE_CHECKING:
    from media_scheduler.scheduler.executor import TaskExecutor
    from media_scheduler.scheduler.models import RunStatus, ScheduledTask
    from media_scheduler.scheduler.store import TaskStore
    from media_scheduler.scheduler.timers import TimerInfo, TimerRegistry
    from media_scheduler.scheduler.validator import AssociationValidator

logger = logging.getLogger(__name__)

VALIDATION_JOB_ID = "__validate_associations__"


class SchedulerState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


@dataclass
class SchedulerStatus:
    """Point-in-time snapshot for monitoring."""

    is_initialized: bool
    state: SchedulerState
    running_task_ids: list[str]
    timer_details: list[TimerInfo]
    total_tasks: int
    enabled_tasks: int

    @property
    def active_timers(self) -> int:
        return len(self.timer_details)


@dataclass
class RunNowResult:
    """Answer to a "run now" request. Errors are carried, not raised."""

    task_id: str
    success: bool
    message: str
    last_run_status: RunStatus | None = None
    next_run_at: str | None = None
    error: SchedulerError | None = field(default=None, repr=False)

    @property
    def error_type(self) -> str | None:
        return type(self.error).__name__ if self.error else None


class SchedulerEngine:
    """Keeps one timer per enabled task and runs tasks through the executor.

    States: ``uninitialized -> initializing -> ready``; ``reinitialize()``
    goes ``ready -> initializing -> ready``.

    Args:
        store: TaskStore for persistence.
        executor: TaskExecutor that runs and arms tasks.
        timers: TimerRegistry shared with the executor.
        validator: AssociationValidator for task/item consistency.
        validation_interval: Seconds between automatic association checks
            (None or 0 = only on demand).
        missed_run_grace: How late a run may be before the health check flags it.
    """

    def __init__(
        self,
        store: TaskStore,
        executor: TaskExecutor,
        timers: TimerRegistry,
        validator: AssociationValidator,
        *,
        validation_interval: float | None = None,
        missed_run_grace: float = 300.0,
    ) -> None:
        self._store = store
        self._executor = executor
        self._timers = timers
        self._validator = validator
        self._validation_interval = validation_interval
        self._missed_run_grace = timedelta(seconds=missed_run_grace)
        self._state = SchedulerState.UNINITIALIZED
        self._init_lock = asyncio.Lock()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is SchedulerState.READY

    # -- Lifecycle -------------------------------------------------------------

    async def initialize(self, *, force: bool = False) -> int:
        """Load tasks and arm a timer for every enabled one.

        A no-op when already ready unless *force* is set. Returns the number
        of timers armed (0 for a no-op).
        """
        async with self._init_lock:
            if self._state is SchedulerState.READY and not force:
                return 0

            self._state = SchedulerState.INITIALIZING
            try:
                tasks = await self._store.list_tasks()
                self._timers.clear()
                self._timers.start()
                now = datetime.now(UTC)
                armed = 0
                for task in tasks:
                    if task.enabled and await self._executor.arm(task, now):
                        armed += 1
                if self._validation_interval:
                    self._timers.add_interval_job(
                        VALIDATION_JOB_ID, self._validation_interval, self.validate_and_fix_all
                    )
            except Exception:
                self._state = SchedulerState.UNINITIALIZED
                logger.exception("Scheduler initialization failed")
                raise

            self._state = SchedulerState.READY
            logger.info(
                "Scheduler initialized: %d task(s), %d timer(s) armed", len(tasks), armed
            )
            return armed

    async def reinitialize(self) -> int:
        """Rebuild every timer from the store."""
        logger.info("Reinitializing scheduler")
        return await self.initialize(force=True)

    async def shutdown(self) -> None:
        """Cancel all timers and stop firing."""
        self._timers.shutdown()
        self._state = SchedulerState.UNINITIALIZED
        logger.info("Scheduler stopped")

    # -- Execution -------------------------------------------------------------

    async def run_task_now(self, task_id: str) -> RunNowResult:
        """Run a task immediately, bypassing its timer."""
        try:
            result = await self._executor.execute(task_id, Trigger.MANUAL)
        except AlreadyRunningError as exc:
            logger.info("Run-now rejected: %s", exc)
            return RunNowResult(task_id=task_id, success=False, message=str(exc), error=exc)
        except SchedulerError as exc:
            if not isinstance(exc, NotFoundError):
                logger.exception("Run-now of %s failed", task_id)
            return RunNowResult(task_id=task_id, success=False, message=str(exc), error=exc)

        if not result.executed:
            message = f"Task {task_id} not executed: {result.error}"
            error = None
        elif result.discarded:
            message = f"Task {task_id} was deleted while running; result discarded"
            error = None
        elif result.success:
            message = f"Task {task_id} executed successfully"
            error = None
        else:
            message = f"Task {task_id} failed: {result.error}"
            error = ExecutionError(result.error or "Unknown error")

        return RunNowResult(
            task_id=task_id,
            success=result.executed and result.success,
            message=message,
            last_run_status=result.status,
            next_run_at=result.next_run_at,
            error=error,
        )

    def is_task_running(self, task_id: str) -> bool:
        return self._executor.is_running(task_id)

    # -- Monitoring ------------------------------------------------------------

    async def get_scheduler_status(self) -> SchedulerStatus:
        tasks = await self._store.list_tasks()
        return SchedulerStatus(
            is_initialized=self.is_initialized,
            state=self._state,
            running_task_ids=self._executor.running_task_ids(),
            timer_details=self._timers.list(),
            total_tasks=len(tasks),
            enabled_tasks=sum(1 for t in tasks if t.enabled),
        )

    async def check_health(self, now: datetime | None = None) -> HealthReport:
        tasks = await self._store.list_tasks()
        return check_health(
            tasks,
            self._timers,
            self._executor.running_task_ids(),
            now=now or datetime.now(UTC),
            missed_grace=self._missed_run_grace,
            is_initialized=self.is_initialized,
        )

    async def reconcile_timers(self) -> ReconcileResult:
        """Cancel orphaned timers and arm missing ones without a full reinitialize."""
        tasks = {t.id: t for t in await self._store.list_enabled_tasks()}
        # A running task is between timers; its run re-arms it.
        expected = set(tasks) | set(self._executor.running_task_ids())
        result = self._timers.reconcile(expected)
        armed = []
        for task_id in result.missing:
            task = tasks.get(task_id)
            if task is None or self._executor.is_running(task_id):
                continue
            if await self._executor.arm(task):
                armed.append(task_id)
        reconciled = ReconcileResult(missing=armed, orphaned=result.orphaned)
        if reconciled.missing_count or reconciled.orphaned_count:
            logger.warning(
                "Timer reconcile: armed %d missing, cancelled %d orphaned",
                reconciled.missing_count,
                reconciled.orphaned_count,
            )
        return reconciled

    # -- Association maintenance -----------------------------------------------

    async def validate_and_fix_all(self) -> ValidationReport:
        """Repair or remove tasks whose item is gone. Never raises."""
        try:
            report = await self._validator.validate_and_fix_all()
        except SchedulerError as exc:
            logger.exception("Association validation failed")
            return ValidationReport(error=str(exc))
        for task_id in report.deleted_task_ids:
            self._timers.unregister(task_id)
        return report

    async def cleanup_completed_tasks(self) -> CleanupReport:
        """Delete opted-in tasks whose item is completed. Never raises."""
        try:
            report = await self._validator.cleanup_completed_tasks()
        except SchedulerError as exc:
            logger.exception("Completed-task cleanup failed")
            return CleanupReport(error=str(exc))
        for task_id in report.deleted_task_ids:
            self._timers.unregister(task_id)
        return report

    # -- Task management -------------------------------------------------------

    async def get_task(self, task_id: str) -> ScheduledTask:
        task = await self._store.get_task(task_id)
        if task is None:
            raise NotFoundError(task_id)
        return task

    async def list_tasks(self) -> list[ScheduledTask]:
        return await self._store.list_tasks()

    async def tasks_for_item(self, item_id: str) -> list[ScheduledTask]:
        return await self._store.list_tasks_for_item(item_id)

    async def add_task(self, task: ScheduledTask) -> bool:
        """Persist a new task and arm it when enabled and the engine is ready."""
        added = await self._store.add_task(task)
        if added and task.enabled and self.is_initialized:
            await self._executor.arm(task)
        return added

    async def update_task(self, task: ScheduledTask) -> bool:
        """Persist an edited task and re-register (or drop) its timer."""
        async with self._executor.locks.hold(task.id):
            current = await self._store.get_task(task.id)
            if current is None:
                raise NotFoundError(task.id)
            # Run history and the armed fire time belong to the executor.
            task.next_run_at = current.next_run_at
            task.last_run_at = current.last_run_at
            task.last_run_status = current.last_run_status
            task.last_run_error = current.last_run_error
            task.consecutive_failures = current.consecutive_failures
            task.touch()
            if not await self._store.update_task(task):
                return False

            if not task.enabled:
                self._timers.unregister(task.id)
            elif self.is_initialized and not self._executor.is_running(task.id):
                await self._executor.arm_locked(task)
            return True

    async def delete_task(self, task_id: str) -> bool:
        """Remove a task and cancel its timer. A running execution finishes on its own."""
        async with self._executor.locks.hold(task_id):
            deleted = await self._store.delete_task(task_id)
            self._timers.unregister(task_id)
        return deleted
