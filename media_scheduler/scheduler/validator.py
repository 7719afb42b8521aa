"""AssociationValidator — keeps task-to-item links pointing at real items."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from media_scheduler.scheduler.errors import OrphanedAssociationError
from media_scheduler.scheduler.locks import KeyedLock

if TYPE_CHECKING:
    from media_scheduler.items.models import Item
    from media_scheduler.items.store import ItemStore
    from media_scheduler.scheduler.models import ScheduledTask
    from media_scheduler.scheduler.store import TaskStore

logger = logging.getLogger(__name__)


# -- Matching ------------------------------------------------------------------


class TitleMatcher(Protocol):
    """Decides whether an item could be the one a task's title hint refers to."""

    def matches(self, task_item_title: str, item_title: str) -> bool: ...


class SubstringTitleMatcher:
    """Case-insensitive substring match in either direction. Empty titles never match."""

    def matches(self, task_item_title: str, item_title: str) -> bool:
        hint = task_item_title.strip().casefold()
        title = item_title.strip().casefold()
        if not hint or not title:
            return False
        return hint in title or title in hint


# -- Reports -------------------------------------------------------------------


class RepairAction(StrEnum):
    FIXED = "fixed"
    DELETED = "deleted"


@dataclass
class AssociationDetail:
    """What happened to one orphaned task."""

    task_id: str
    task_name: str
    action: RepairAction
    problem: OrphanedAssociationError
    new_item_id: str | None = None
    candidates: int = 0

    @property
    def message(self) -> str:
        if self.action is RepairAction.FIXED:
            return f"{self.problem}; relinked to {self.new_item_id}"
        if self.candidates:
            return f"{self.problem}; {self.candidates} candidate items, deleted"
        return f"{self.problem}; no candidate item, deleted"


@dataclass
class ValidationReport:
    total_tasks: int = 0
    invalid_tasks: int = 0
    fixed_tasks: int = 0
    deleted_tasks: int = 0
    details: list[AssociationDetail] = field(default_factory=list)
    error: str | None = None

    @property
    def deleted_task_ids(self) -> list[str]:
        return [d.task_id for d in self.details if d.action is RepairAction.DELETED]


@dataclass
class CleanupReport:
    checked_tasks: int = 0
    deleted_tasks: int = 0
    deleted_task_ids: list[str] = field(default_factory=list)
    error: str | None = None


# -- Validator -----------------------------------------------------------------


class AssociationValidator:
    """Cross-checks tasks against tracked items and repairs broken links.

    Args:
        store: TaskStore to read and repair.
        items: ItemStore used for existence checks (read-only).
        matcher: Strategy for finding the item a broken task meant.
        locks: Per-task write lock shared with the executor.
    """

    def __init__(
        self,
        store: TaskStore,
        items: ItemStore,
        *,
        matcher: TitleMatcher | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self._store = store
        self._items = items
        self._matcher = matcher or SubstringTitleMatcher()
        self._locks = locks if locks is not None else KeyedLock()

    def find_candidates(self, task: ScheduledTask, items: list[Item]) -> list[Item]:
        return [item for item in items if self._matcher.matches(task.item_title, item.title)]

    async def validate_and_fix_all(self) -> ValidationReport:
        """Relink or delete every task whose item no longer exists.

        A task with exactly one candidate item is relinked; zero or several
        candidates mean there is no safe target and the task is deleted.
        """
        tasks = await self._store.list_tasks()
        items = await self._items.list_items()
        known = {item.id for item in items}
        report = ValidationReport(total_tasks=len(tasks))

        for task in tasks:
            if task.item_id in known:
                continue
            detail = await self._repair(task.id, items, known)
            if detail is None:
                continue
            report.invalid_tasks += 1
            report.details.append(detail)
            if detail.action is RepairAction.FIXED:
                report.fixed_tasks += 1
            else:
                report.deleted_tasks += 1

        logger.info(
            "Association check: %d task(s), %d invalid, %d fixed, %d deleted",
            report.total_tasks,
            report.invalid_tasks,
            report.fixed_tasks,
            report.deleted_tasks,
        )
        return report

    async def _repair(
        self, task_id: str, items: list[Item], known: set[str]
    ) -> AssociationDetail | None:
        async with self._locks.hold(task_id):
            # Re-read: the task may have been edited or deleted since listing.
            task = await self._store.get_task(task_id)
            if task is None or task.item_id in known:
                return None

            problem = OrphanedAssociationError(task.id, task.item_id, task.item_title)
            candidates = self.find_candidates(task, items)
            if len(candidates) == 1:
                target = candidates[0]
                await self._store.relink_item(task.id, target.id, target.title)
                logger.info(
                    "Relinked task '%s' (%s): item %s -> %s ('%s')",
                    task.name,
                    task.id,
                    task.item_id,
                    target.id,
                    target.title,
                )
                return AssociationDetail(
                    task_id=task.id,
                    task_name=task.name,
                    action=RepairAction.FIXED,
                    problem=problem,
                    new_item_id=target.id,
                    candidates=1,
                )

            await self._store.delete_task(task.id)
            logger.warning(
                "Deleted orphaned task '%s' (%s): %d candidate item(s) for '%s'",
                task.name,
                task.id,
                len(candidates),
                task.item_title,
            )
            return AssociationDetail(
                task_id=task.id,
                task_name=task.name,
                action=RepairAction.DELETED,
                problem=problem,
                candidates=len(candidates),
            )

    async def cleanup_completed_tasks(self) -> CleanupReport:
        """Delete enabled tasks that opted into removal once their item is completed."""
        tasks = await self._store.list_enabled_tasks()
        items = {item.id: item for item in await self._items.list_items()}
        candidates = [t for t in tasks if t.action.get("auto_delete_when_completed")]
        report = CleanupReport(checked_tasks=len(candidates))

        for task in candidates:
            item = items.get(task.item_id)
            if item is None or not item.is_completed:
                continue
            async with self._locks.hold(task.id):
                if await self._store.delete_task(task.id):
                    report.deleted_tasks += 1
                    report.deleted_task_ids.append(task.id)
                    logger.info(
                        "Deleted task '%s' (%s): item '%s' is completed",
                        task.name,
                        task.id,
                        item.title,
                    )
        return report
