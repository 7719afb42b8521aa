"""Base types for task actions — the work a scheduled task triggers."""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, Field


class ActionRequest(BaseModel):
    """What the executor hands to the task action."""

    task_id: str
    item_id: str
    task_type: str
    options: dict[str, Any] = Field(default_factory=dict)


class ActionResult(BaseModel):
    """Outcome reported by a task action."""

    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> ActionResult:
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> ActionResult:
        return cls(success=False, error=error)


class TaskAction(Protocol):
    """Anything that can run a task's action. May be long-running."""

    async def run(self, request: ActionRequest) -> ActionResult: ...
