# src/daybook/reminders/coordinator.py

from __future__ import annotations

import logging
import zlib
from dataclasses import dataclass
from typing import Any

from ..core.clock import local_day_bounds
from ..core.events import Notify
from ..core.ports import RecordStore
from ..errors import StaleEntityFailure
from ..jobs.job_executor import ActionRegistry, JobContext
from ..jobs.job_models import JobDefinition, JobResult, JobState, SubmitResult, WorkPolicy
from ..jobs.job_scheduler import JobScheduler

logger = logging.getLogger(__name__)

REMINDER_PREFIX = "reminder:"
OVERDUE_CHECK_KEY = "overdue-check"
DAILY_SUMMARY_KEY = "daily-summary"

OVERDUE_CHECK_INTERVAL = 6 * 60 * 60
DAILY_SUMMARY_INTERVAL = 24 * 60 * 60

TASKS_TAP_ACTION = "tasks"


def reminder_key(task_id: str) -> str:
    return f"{REMINDER_PREFIX}{task_id}"


def notification_id(tag: str) -> int:
    """Stable positive 31-bit notification id for a string tag."""
    return zlib.crc32(tag.encode("utf-8")) & 0x7FFFFFFF


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n != 1 else ''}"


@dataclass(slots=True, frozen=True)
class ReminderLink:
    task_id: str
    reminder_job_key: str
    due_at: float


class ReminderCoordinator:
    """
    Keeps one-shot reminder jobs in line with task edits.

    - reminder set, task open, reminder in the future -> "reminder:<id>" (REPLACE)
    - reminder cleared / task completed / task deleted  -> job cancelled
    - reminder already in the past                      -> dropped, no catch-up
    At fire time the task is read again; a vanished or completed task is a no-op.
    """

    def __init__(self, scheduler: JobScheduler, records: RecordStore) -> None:
        self._scheduler = scheduler
        self._records = records

    def register(self, actions: ActionRegistry) -> None:
        actions.register_prefix(REMINDER_PREFIX, self._fire_reminder)
        actions.register(OVERDUE_CHECK_KEY, self._check_overdue)
        actions.register(DAILY_SUMMARY_KEY, self._daily_summary)

    def register_periodic(self) -> None:
        """Startup registration; KEEP_EXISTING so restarts never reset the cadence."""
        self._scheduler.submit(
            JobDefinition.periodic(OVERDUE_CHECK_KEY, interval=OVERDUE_CHECK_INTERVAL, policy=WorkPolicy.KEEP_EXISTING)
        )
        self._scheduler.submit(
            JobDefinition.periodic(DAILY_SUMMARY_KEY, interval=DAILY_SUMMARY_INTERVAL, policy=WorkPolicy.KEEP_EXISTING)
        )

    # ---- entity changes ----

    def on_task_upserted(self, task: Any) -> SubmitResult | None:
        task_id = str(task.id)
        key = reminder_key(task_id)
        reminder_at = getattr(task, "reminder_at", None)

        if reminder_at is None or getattr(task, "is_completed", False):
            if self._scheduler.cancel(key):
                logger.info("Reminder cancelled task_id=%s", task_id)
            return None

        delay = float(reminder_at) - self._scheduler.clock.now()
        if delay <= 0:
            # TODO: decide whether reminders missed while the app was not running should fire late.
            if self._scheduler.cancel(key):
                logger.info("Reminder for task_id=%s moved into the past; cancelled", task_id)
            logger.debug("Reminder for task_id=%s is in the past (%.0fs); not scheduled", task_id, -delay)
            return None

        definition = JobDefinition.one_shot(
            key,
            not_before=float(reminder_at),
            payload={"task_id": task_id, "title": str(getattr(task, "title", "") or "")},
            policy=WorkPolicy.REPLACE,
        )
        result = self._scheduler.submit(definition)
        logger.info("Reminder scheduled task_id=%s in %.0fs", task_id, delay)
        return result

    def on_task_deleted(self, task_id: str) -> None:
        if self._scheduler.cancel(reminder_key(str(task_id))):
            logger.info("Reminder cancelled for deleted task_id=%s", task_id)

    def complete_task(self, task_id: str) -> None:
        """Mark a task done (e.g. from a notification action) and drop its reminder."""
        self._records.update_task_completion(str(task_id), True)
        self.on_task_deleted(str(task_id))

    def links(self) -> list[ReminderLink]:
        out: list[ReminderLink] = []
        for rec in self._scheduler.live_records():
            if not rec.key.startswith(REMINDER_PREFIX):
                continue
            due_at = rec.definition.not_before if rec.definition.not_before is not None else rec.next_fire_at
            out.append(ReminderLink(task_id=rec.key[len(REMINDER_PREFIX):], reminder_job_key=rec.key, due_at=due_at))
        return out

    # ---- job actions ----

    def _fire_reminder(self, ctx: JobContext) -> JobResult:
        task_id = str(ctx.require("task_id"))
        task = self._records.get_task_by_id(task_id)
        if task is None:
            raise StaleEntityFailure(f"task {task_id} no longer exists")
        if getattr(task, "is_completed", False):
            raise StaleEntityFailure(f"task {task_id} is already completed")

        title = str(getattr(task, "title", "") or ctx.payload.get("title") or "Task Reminder")
        return JobResult.success(
            Notify(
                notification_id=notification_id(reminder_key(task_id)),
                title="Task Reminder",
                body=title,
                on_tap_action=f"edit_task/{task_id}",
            )
        )

    def _check_overdue(self, ctx: JobContext) -> JobResult:
        now = ctx.now()
        overdue = [t for t in self._records.list_tasks_due_between(0.0, now) if not t.is_completed]
        if not overdue:
            return JobResult.success(reason="no overdue tasks")
        count = len(overdue)
        return JobResult.success(
            Notify(
                notification_id=notification_id("overdue_tasks"),
                title="Overdue Tasks",
                body=f"You have {_plural(count, 'overdue task')}",
                on_tap_action=TASKS_TAP_ACTION,
            )
        )

    def _daily_summary(self, ctx: JobContext) -> JobResult:
        start, end = local_day_bounds(ctx.now())
        today = [t for t in self._records.list_tasks_due_between(start, end) if not t.is_completed]
        if not today:
            return JobResult.success(reason="nothing due today")
        count = len(today)
        return JobResult.success(
            Notify(
                notification_id=notification_id("daily_summary"),
                title="Today's Tasks",
                body=f"You have {_plural(count, 'task')} due today",
                on_tap_action=TASKS_TAP_ACTION,
            )
        )

    def pending_reminder_count(self) -> int:
        return sum(
            1
            for rec in self._scheduler.live_records()
            if rec.key.startswith(REMINDER_PREFIX) and rec.state == JobState.PENDING
        )
