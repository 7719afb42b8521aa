#!/usr/bin/env python3
"""Inspect and maintain scheduled tasks from the command line.

Works on the configured database directly and never starts timers. After
``validate`` or ``cleanup`` the running scheduler drops stale timers on its
next reconcile or restart.

Usage examples:
    # List every task with its next and last run
    uv run python scripts/tasks.py status

    # Relink or delete tasks whose item is gone
    uv run python scripts/tasks.py validate

    # Delete opted-in tasks whose item is completed
    uv run python scripts/tasks.py cleanup

    # Run one task right now
    uv run python scripts/tasks.py run <task-id>
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from media_scheduler.app import init_scheduler
from media_scheduler.config import settings
from media_scheduler.scheduler.engine import SchedulerEngine

STATUS_COLORS = {
    "success": "\033[32m",  # green
    "failure": "\033[31m",  # red
    "never": "\033[90m",  # gray
}
RESET = "\033[0m"


async def show_status(engine: SchedulerEngine, *, color: bool) -> int:
    tasks = await engine.list_tasks()
    if not tasks:
        print("No scheduled tasks.")
        return 0

    print(f"--- {len(tasks)} task(s) ---\n")
    for task in tasks:
        status = str(task.last_run_status)
        if color:
            status = f"{STATUS_COLORS.get(status, '')}{status:8s}{RESET}"
        else:
            status = f"{status:8s}"
        state = "on " if task.enabled else "off"
        print(
            f"{task.id}  [{state}] {status} next={task.next_run_at or '-'}"
            f"  {task.name} ({task.task_type}, item {task.item_id})"
        )
        if task.last_run_error:
            print(f"    last error: {task.last_run_error}")
    return 0


async def validate(engine: SchedulerEngine) -> int:
    report = await engine.validate_and_fix_all()
    if report.error:
        print(f"ERROR: {report.error}", file=sys.stderr)
        return 1
    print(
        f"Checked {report.total_tasks} task(s): {report.invalid_tasks} invalid,"
        f" {report.fixed_tasks} fixed, {report.deleted_tasks} deleted"
    )
    for detail in report.details:
        print(f"  [{detail.action}] {detail.task_name} ({detail.task_id}): {detail.message}")
    return 0


async def cleanup(engine: SchedulerEngine) -> int:
    report = await engine.cleanup_completed_tasks()
    if report.error:
        print(f"ERROR: {report.error}", file=sys.stderr)
        return 1
    print(f"Checked {report.checked_tasks} task(s), deleted {report.deleted_tasks}")
    for task_id in report.deleted_task_ids:
        print(f"  deleted {task_id}")
    return 0


async def run_now(engine: SchedulerEngine, task_id: str) -> int:
    result = await engine.run_task_now(task_id)
    print(result.message)
    if result.error_type:
        print(f"Error type: {result.error_type}")
    if result.next_run_at:
        print(f"Next run at {result.next_run_at}")
    return 0 if result.success else 1


async def _main(args: argparse.Namespace) -> int:
    engine = init_scheduler()
    try:
        if args.command == "status":
            return await show_status(engine, color=not args.no_color)
        if args.command == "validate":
            return await validate(engine)
        if args.command == "cleanup":
            return await cleanup(engine)
        return await run_now(engine, args.task_id)
    finally:
        await engine.shutdown()


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect and maintain scheduled tasks")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show scheduler logs")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="List tasks with their run state")
    status.add_argument("--no-color", action="store_true", help="Disable color output")
    sub.add_parser("validate", help="Repair or delete tasks pointing at missing items")
    sub.add_parser("cleanup", help="Delete opted-in tasks whose item is completed")
    run = sub.add_parser("run", help="Run a task immediately")
    run.add_argument("task_id", help="ID of the task to run")
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level) if args.verbose else logging.WARNING,
    )
    sys.exit(asyncio.run(_main(args)))


if __name__ == "__main__":
    main()
