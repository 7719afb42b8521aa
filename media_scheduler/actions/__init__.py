"""Task actions — the work a scheduled task triggers."""

from media_scheduler.actions.base import ActionRequest, ActionResult, TaskAction
from media_scheduler.actions.dispatch import ActionDispatcher
from media_scheduler.actions.http import HttpTaskAction

__all__ = [
    "ActionRequest",
    "ActionResult",
    "TaskAction",
    "ActionDispatcher",
    "HttpTaskAction",
]
