"""Application wiring — builds the scheduler from settings and keeps it running."""

from __future__ import annotations

import asyncio
import logging
import signal

from media_scheduler.actions.dispatch import ActionDispatcher
from media_scheduler.actions.http import HttpTaskAction
from media_scheduler.config import settings
from media_scheduler.items.store import ItemStore
from media_scheduler.scheduler.calculator import BackoffPolicy
from media_scheduler.scheduler.engine import SchedulerEngine
from media_scheduler.scheduler.executor import TaskExecutor
from media_scheduler.scheduler.locks import KeyedLock
from media_scheduler.scheduler.models import TaskType
from media_scheduler.scheduler.store import TaskStore
from media_scheduler.scheduler.timers import TimerRegistry
from media_scheduler.scheduler.validator import AssociationValidator

logger = logging.getLogger(__name__)


def init_scheduler() -> SchedulerEngine:
    """Create the scheduler engine and its collaborators (not yet initialized)."""
    store = TaskStore.get()
    items = ItemStore.get()

    # Every task type goes through the same execute endpoint for now.
    http_action = HttpTaskAction()
    dispatcher = ActionDispatcher()
    for task_type in TaskType:
        dispatcher.register(task_type, http_action.run)

    timers = TimerRegistry(timezone=settings.scheduler_timezone)
    locks = KeyedLock()
    executor = TaskExecutor(
        store=store,
        action=dispatcher,
        timers=timers,
        timezone=settings.scheduler_timezone,
        execution_timeout=settings.get_execution_timeout(),
        backoff=BackoffPolicy.from_settings(settings),
        locks=locks,
    )
    validator = AssociationValidator(store, items, locks=locks)
    return SchedulerEngine(
        store=store,
        executor=executor,
        timers=timers,
        validator=validator,
        validation_interval=settings.validation_interval_seconds,
        missed_run_grace=settings.missed_run_grace_seconds,
    )


async def run() -> None:
    """Initialize the scheduler and run until SIGINT or SIGTERM."""
    engine = init_scheduler()

    # Repair broken links before arming so no timer points at a dead item.
    report = await engine.validate_and_fix_all()
    if report.invalid_tasks:
        logger.info(
            "Startup association check: %d fixed, %d deleted",
            report.fixed_tasks,
            report.deleted_tasks,
        )
    await engine.initialize()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        await engine.shutdown()
