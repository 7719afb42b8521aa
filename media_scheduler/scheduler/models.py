"""ScheduledTask data model."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from media_scheduler.scheduler.errors import ValidationError


class TaskType(StrEnum):
    """Which maintenance action a task triggers."""

    EPISODE_UPDATE = "episode-update"
    METADATA_REFRESH = "metadata-refresh"
    TMDB_IMPORT = "tmdb-import"


class RunStatus(StrEnum):
    NEVER = "never"
    SUCCESS = "success"
    FAILURE = "failure"


class ScheduleKind(StrEnum):
    WEEKLY = "weekly"
    DAILY = "daily"
    INTERVAL = "interval"


@dataclass(frozen=True)
class Schedule:
    """When a task fires.

    Attributes:
        kind: ``weekly``, ``daily`` or ``interval``.
        day_of_week: 0 (Monday) .. 6 (Sunday), weekly schedules only.
        hour: 0-23, weekly and daily schedules.
        minute: 0-59, weekly and daily schedules.
        interval_seconds: Fixed period, interval schedules only.
    """

    kind: ScheduleKind
    day_of_week: int | None = None
    hour: int = 0
    minute: int = 0
    interval_seconds: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", ScheduleKind(self.kind))

    @classmethod
    def weekly(cls, day_of_week: int, hour: int, minute: int = 0) -> Schedule:
        return cls(kind=ScheduleKind.WEEKLY, day_of_week=day_of_week, hour=hour, minute=minute)

    @classmethod
    def daily(cls, hour: int, minute: int = 0) -> Schedule:
        return cls(kind=ScheduleKind.DAILY, hour=hour, minute=minute)

    @classmethod
    def every(cls, seconds: float) -> Schedule:
        return cls(kind=ScheduleKind.INTERVAL, interval_seconds=seconds)

    def validate(self) -> None:
        """Raise ValidationError if the fields do not describe a usable schedule."""
        if self.kind is ScheduleKind.INTERVAL:
            if self.interval_seconds is None or self.interval_seconds <= 0:
                msg = "Interval schedules need a positive interval_seconds"
                raise ValidationError(msg)
            return
        if not 0 <= self.hour <= 23:
            msg = f"Invalid hour: {self.hour}"
            raise ValidationError(msg)
        if not 0 <= self.minute <= 59:
            msg = f"Invalid minute: {self.minute}"
            raise ValidationError(msg)
        if self.kind is ScheduleKind.WEEKLY and (
            self.day_of_week is None or not 0 <= self.day_of_week <= 6
        ):
            msg = f"Weekly schedules need day_of_week 0-6, got {self.day_of_week}"
            raise ValidationError(msg)

    # -- Serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        if self.kind is ScheduleKind.INTERVAL:
            return {"type": self.kind.value, "interval_seconds": self.interval_seconds}
        data: dict[str, Any] = {"type": self.kind.value, "hour": self.hour, "minute": self.minute}
        if self.kind is ScheduleKind.WEEKLY:
            data["day_of_week"] = self.day_of_week
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Schedule:
        try:
            kind = ScheduleKind(data.get("type", ""))
        except ValueError:
            msg = f"Unknown schedule type: {data.get('type')!r}"
            raise ValidationError(msg) from None
        if kind is ScheduleKind.INTERVAL:
            seconds = data.get("interval_seconds")
            return cls(kind=kind, interval_seconds=float(seconds) if seconds is not None else None)
        day = data.get("day_of_week")
        return cls(
            kind=kind,
            day_of_week=int(day) if day is not None else None,
            hour=int(data.get("hour", 0)),
            minute=int(data.get("minute", 0)),
        )


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class ScheduledTask:
    """A recurring maintenance action against one tracked item.

    ``is_running`` is not a field: the run flag lives in memory with the
    executor and never survives a restart.

    Attributes:
        id: Unique identifier (UUID hex), immutable.
        item_id: Id of the tracked item the task works on.
        name: Human-readable name.
        task_type: Which action to invoke.
        schedule: When to fire.
        item_title: Copy of the item's title, used to repair broken links.
        action: Options forwarded to the task action.
        enabled: Disabled tasks hold no timer.
        next_run_at: ISO 8601 timestamp of the next planned execution.
        last_run_at: ISO 8601 timestamp of the last execution.
        last_run_status: Outcome of the last execution.
        last_run_error: Error message of the last failed execution.
        consecutive_failures: Failed runs since the last success.
        created_at: ISO 8601 timestamp.
        updated_at: ISO 8601 timestamp of the last user edit.
    """

    id: str
    item_id: str
    name: str
    task_type: TaskType
    schedule: Schedule
    item_title: str = ""
    action: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    next_run_at: str | None = None
    last_run_at: str | None = None
    last_run_status: RunStatus = RunStatus.NEVER
    last_run_error: str | None = None
    consecutive_failures: int = 0
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        self.task_type = TaskType(self.task_type)
        self.last_run_status = RunStatus(self.last_run_status)
        if isinstance(self.schedule, dict):
            self.schedule = Schedule.from_dict(self.schedule)
        if not self.created_at:
            self.created_at = _now_iso()
        if not self.updated_at:
            self.updated_at = self.created_at

    def validate(self) -> None:
        """Reject records that must never reach the scheduler."""
        for attr in ("id", "item_id", "name"):
            if not str(getattr(self, attr) or "").strip():
                msg = f"Scheduled task is missing '{attr}'"
                raise ValidationError(msg)
        self.schedule.validate()

    def touch(self) -> None:
        self.updated_at = _now_iso()

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``scheduled_tasks`` column order."""
        return (
            self.id,
            self.item_id,
            self.item_title,
            self.name,
            self.task_type.value,
            json.dumps(self.schedule.to_dict()),
            json.dumps(self.action),
            int(self.enabled),
            self.next_run_at,
            self.last_run_at,
            self.last_run_status.value,
            self.last_run_error,
            self.consecutive_failures,
            self.created_at,
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> ScheduledTask:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            item_id=row[1],
            item_title=row[2] or "",
            name=row[3],
            task_type=TaskType(row[4]),
            schedule=Schedule.from_dict(json.loads(row[5])),
            action=json.loads(row[6]),
            enabled=bool(row[7]),
            next_run_at=row[8],
            last_run_at=row[9],
            last_run_status=RunStatus(row[10] or RunStatus.NEVER),
            last_run_error=row[11],
            consecutive_failures=int(row[12] or 0),
            created_at=row[13],
            updated_at=row[14],
        )


def make_task_id() -> str:
    """Generate a new task ID."""
    return uuid.uuid4().hex
