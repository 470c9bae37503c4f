# tests/fakes.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any

from daybook.errors import TransientFailure
from daybook.records.record_models import Habit, Quote, Task

START_TS = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = START_TS) -> None:
        self.t = float(start)

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> float:
        self.t += float(seconds)
        return self.t

    def set(self, ts: float) -> None:
        self.t = float(ts)


class InMemoryRecordStore:
    """
    RecordStore port backed by dicts.

    Offers the same add_* helpers as the SQLite store so console commands
    work against it.
    """

    def __init__(self, clock: FakeClock | None = None) -> None:
        self._clock = clock
        self.tasks: dict[str, Task] = {}
        self.quotes: dict[int, Quote] = {}
        self.habits: dict[int, Habit] = {}
        self._next_quote_id = 1
        self._next_habit_id = 1

    def _now(self) -> float:
        return self._clock.now() if self._clock is not None else START_TS

    # ---- tasks ----

    def add_task(
        self,
        *,
        title: str,
        description: str = "",
        due_at: float | None = None,
        reminder_at: float | None = None,
        task_id: str | None = None,
    ) -> Task:
        now = self._now()
        task = Task(
            id=task_id or uuid.uuid4().hex,
            title=title,
            description=description,
            due_at=due_at,
            reminder_at=reminder_at,
            is_completed=False,
            created_at=now,
            updated_at=now,
        )
        self.tasks[task.id] = task
        return task

    def put_task(self, task: Task) -> None:
        self.tasks[task.id] = task

    def delete_task(self, task_id: str) -> None:
        self.tasks.pop(task_id, None)

    def get_task_by_id(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def list_tasks_due_between(self, start_ts: float, end_ts: float) -> list[Task]:
        found = [t for t in self.tasks.values() if t.due_at is not None and start_ts <= t.due_at < end_ts]
        found.sort(key=lambda t: (t.due_at, t.created_at))
        return found

    def update_task_completion(self, task_id: str, completed: bool) -> None:
        task = self.tasks.get(task_id)
        if task is not None:
            self.tasks[task_id] = replace(task, is_completed=completed, updated_at=self._now())

    # ---- quotes / habits ----

    def add_quote(self, text: str, author: str | None = None, *, is_active: bool = True) -> Quote:
        quote = Quote(id=self._next_quote_id, text=text, author=author, is_active=is_active)
        self._next_quote_id += 1
        self.quotes[quote.id] = quote
        return quote

    def set_quote_active(self, quote_id: int, active: bool) -> None:
        self.quotes[quote_id] = replace(self.quotes[quote_id], is_active=active)

    def list_quote_candidates(self, active_only: bool = True) -> list[Quote]:
        return [q for q in self.quotes.values() if q.is_active or not active_only]

    def add_habit(self, name: str, *, is_active: bool = True) -> Habit:
        habit = Habit(id=self._next_habit_id, name=name, is_active=is_active)
        self._next_habit_id += 1
        self.habits[habit.id] = habit
        return habit

    def list_active_habits(self) -> list[Habit]:
        return [h for h in self.habits.values() if h.is_active]


@dataclass(slots=True, frozen=True)
class SentNotification:
    notification_id: int
    title: str
    body: str
    on_tap_action: str | None


@dataclass(slots=True)
class RecordingNotifier:
    sent: list[SentNotification] = field(default_factory=list)

    def notify(self, notification_id: int, title: str, body: str, on_tap_action: str | None) -> None:
        self.sent.append(SentNotification(notification_id, title, body, on_tap_action))


@dataclass(slots=True)
class RecordingRenderTarget:
    """
    Captures widget pushes.

    `fail_times` makes the next N pushes raise TransientFailure.
    """

    pushes: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    fail_times: int = 0

    def push_widget_content(self, widget_id: str, content: dict[str, Any]) -> None:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise TransientFailure("widget host unavailable")
        self.pushes.append((widget_id, dict(content)))

    def for_widget(self, widget_id: str) -> list[dict[str, Any]]:
        return [c for w, c in self.pushes if w == widget_id]
