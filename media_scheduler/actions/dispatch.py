"""Action dispatch — routes a task to the handler for its type."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from media_scheduler.actions.base import ActionRequest, ActionResult
from media_scheduler.scheduler.errors import ExecutionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    Handler = Callable[[ActionRequest], Awaitable[ActionResult]]

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Task action that picks a handler by ``task_type``.

    Handlers are async callables taking an ``ActionRequest`` (e.g. the bound
    ``run`` of an ``HttpTaskAction``). An unknown type or a raising handler
    yields a failed result.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, task_type: str, handler: Handler) -> None:
        self._handlers[str(task_type)] = handler

    def registered_types(self) -> list[str]:
        return sorted(self._handlers)

    async def run(self, request: ActionRequest) -> ActionResult:
        handler = self._handlers.get(request.task_type)
        try:
            if handler is None:
                msg = f"Unknown task type: {request.task_type}"
                raise ExecutionError(msg)
            return await handler(request)
        except ExecutionError as exc:
            logger.warning("Task %s not dispatched: %s", request.task_id, exc)
            return ActionResult.failed(str(exc))
        except Exception as exc:
            logger.exception("Action %s failed for task %s", request.task_type, request.task_id)
            return ActionResult.failed(f"{type(exc).__name__}: {exc}")
