"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from media_scheduler.actions.base import ActionRequest, ActionResult
from media_scheduler.items.store import ItemStore
from media_scheduler.scheduler.executor import TaskExecutor
from media_scheduler.scheduler.locks import KeyedLock
from media_scheduler.scheduler.store import TaskStore
from media_scheduler.scheduler.timers import TimerRegistry


class FakeAction:
    """Task action whose outcome and timing a test controls.

    Call ``block()`` before a run to hold the action open until the returned
    event is set; ``started`` is set as soon as the action is entered.
    """

    def __init__(self) -> None:
        self.result = ActionResult.ok()
        self.error: Exception | None = None
        self.calls: list[ActionRequest] = []
        self.started = asyncio.Event()
        self._release: asyncio.Event | None = None

    def block(self) -> asyncio.Event:
        self._release = asyncio.Event()
        return self._release

    async def run(self, request: ActionRequest) -> ActionResult:
        self.calls.append(request)
        self.started.set()
        if self._release is not None:
            await self._release.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def store(db_path: Path) -> TaskStore:
    return TaskStore(db_path=db_path)


@pytest.fixture
def items(db_path: Path) -> ItemStore:
    return ItemStore(db_path=db_path)


@pytest.fixture
def action() -> FakeAction:
    return FakeAction()


@pytest.fixture
def timers():
    """A registry on a scheduler that is not started unless a test starts it."""
    registry = TimerRegistry()
    yield registry
    registry.shutdown()


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def executor(
    store: TaskStore, action: FakeAction, timers: TimerRegistry, locks: KeyedLock
) -> TaskExecutor:
    return TaskExecutor(store=store, action=action, timers=timers, locks=locks)
