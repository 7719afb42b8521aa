"""Error taxonomy for the scheduled-task subsystem."""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for every error raised by the scheduler."""


class ValidationError(SchedulerError):
    """A task record is malformed (missing id/item_id/name, bad schedule)."""


class NotFoundError(SchedulerError):
    """An operation referenced a task id that does not exist."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Scheduled task not found: {task_id}")
        self.task_id = task_id


class AlreadyRunningError(SchedulerError):
    """A second execution was requested while the task is still running.

    Routine, not a failure: callers log it at info level.
    """

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Scheduled task is already running: {task_id}")
        self.task_id = task_id


class OrphanedAssociationError(SchedulerError):
    """A task references an item that no longer exists.

    Only ever attached to validation reports, never raised.
    """

    def __init__(self, task_id: str, item_id: str, item_title: str = "") -> None:
        hint = f" ('{item_title}')" if item_title else ""
        super().__init__(f"Task {task_id} references missing item {item_id}{hint}")
        self.task_id = task_id
        self.item_id = item_id
        self.item_title = item_title


class ExecutionError(SchedulerError):
    """The task action failed. Captured into ``last_run_error``."""


class PersistenceError(SchedulerError):
    """Reading from or writing to a store failed."""
