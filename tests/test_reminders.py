# tests/test_reminders.py

from __future__ import annotations

import pytest

from daybook.core.clock import local_day_bounds
from daybook.core.state import AppState
from daybook.jobs.job_models import JobDefinition, JobState
from daybook.reminders.coordinator import (
    DAILY_SUMMARY_KEY,
    OVERDUE_CHECK_KEY,
    notification_id,
    reminder_key,
)

from .fakes import START_TS, FakeClock, InMemoryRecordStore, RecordingNotifier


def _run(state: AppState):
    return state.scheduler.run_due(state.executor)


def test_reminder_fires_at_reminder_time(
    state: AppState, clock: FakeClock, records: InMemoryRecordStore, notifier: RecordingNotifier
) -> None:
    task = records.add_task(title="Call the dentist", reminder_at=START_TS + 10, task_id="t1")
    state.reminders.on_task_upserted(task)

    clock.advance(9)
    _run(state)
    assert notifier.sent == []

    clock.advance(1)
    _run(state)

    assert len(notifier.sent) == 1
    sent = notifier.sent[0]
    assert sent.title == "Task Reminder"
    assert sent.body == "Call the dentist"
    assert sent.on_tap_action == "edit_task/t1"
    assert sent.notification_id == notification_id(reminder_key("t1"))
    assert state.scheduler.get(reminder_key("t1")).state == JobState.SUCCEEDED  # type: ignore[union-attr]


def test_past_reminder_is_never_submitted(
    state: AppState, records: InMemoryRecordStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    submits: list[JobDefinition] = []
    original = state.scheduler.submit

    def spy(definition, policy=None):
        submits.append(definition)
        return original(definition, policy)

    monkeypatch.setattr(state.scheduler, "submit", spy)

    task = records.add_task(title="Too late", reminder_at=START_TS - 5, task_id="t1")
    assert state.reminders.on_task_upserted(task) is None
    assert submits == []
    assert state.scheduler.get(reminder_key("t1")) is None


def test_moving_reminder_into_the_past_cancels_it(
    state: AppState, records: InMemoryRecordStore
) -> None:
    task = records.add_task(title="Plan", reminder_at=START_TS + 60, task_id="t1")
    state.reminders.on_task_upserted(task)

    task.reminder_at = START_TS - 60
    state.reminders.on_task_upserted(task)

    assert state.scheduler.get(reminder_key("t1")).state == JobState.CANCELLED  # type: ignore[union-attr]
    assert state.reminders.pending_reminder_count() == 0


def test_editing_reminder_reschedules_single_job(
    state: AppState, records: InMemoryRecordStore
) -> None:
    task = records.add_task(title="Plan", reminder_at=START_TS + 60, task_id="t1")
    state.reminders.on_task_upserted(task)
    task.reminder_at = START_TS + 120
    state.reminders.on_task_upserted(task)

    links = state.reminders.links()
    assert len(links) == 1
    assert links[0].task_id == "t1"
    assert links[0].due_at == START_TS + 120


def test_clearing_reminder_or_completing_task_cancels(
    state: AppState, records: InMemoryRecordStore
) -> None:
    a = records.add_task(title="A", reminder_at=START_TS + 60, task_id="a")
    b = records.add_task(title="B", reminder_at=START_TS + 60, task_id="b")
    state.reminders.on_task_upserted(a)
    state.reminders.on_task_upserted(b)
    assert state.reminders.pending_reminder_count() == 2

    a.reminder_at = None
    state.reminders.on_task_upserted(a)
    state.reminders.complete_task("b")

    assert state.reminders.pending_reminder_count() == 0
    assert records.get_task_by_id("b").is_completed is True  # type: ignore[union-attr]


def test_reminder_for_vanished_or_completed_task_is_silent(
    state: AppState, clock: FakeClock, records: InMemoryRecordStore, notifier: RecordingNotifier
) -> None:
    gone = records.add_task(title="Gone", reminder_at=START_TS + 10, task_id="gone")
    done = records.add_task(title="Done", reminder_at=START_TS + 10, task_id="done")
    state.reminders.on_task_upserted(gone)
    state.reminders.on_task_upserted(done)

    # Store edits that never reached the coordinator.
    records.delete_task("gone")
    records.update_task_completion("done", True)

    clock.advance(10)
    outcomes = _run(state)

    assert notifier.sent == []
    assert {o.state for o in outcomes} == {JobState.SUCCEEDED}


def test_overdue_check_counts_open_overdue_tasks(
    state: AppState, records: InMemoryRecordStore, notifier: RecordingNotifier
) -> None:
    records.add_task(title="late 1", due_at=START_TS - 100)
    records.add_task(title="late 2", due_at=START_TS - 50)
    records.add_task(title="future", due_at=START_TS + 50)
    finished = records.add_task(title="finished", due_at=START_TS - 10)
    records.update_task_completion(finished.id, True)

    state.scheduler.submit(JobDefinition.periodic(OVERDUE_CHECK_KEY, interval=6 * 3600, fire_immediately=True))
    _run(state)

    assert len(notifier.sent) == 1
    assert notifier.sent[0].title == "Overdue Tasks"
    assert notifier.sent[0].body == "You have 2 overdue tasks"
    assert notifier.sent[0].on_tap_action == "tasks"


def test_daily_summary_counts_tasks_due_today(
    state: AppState, records: InMemoryRecordStore, notifier: RecordingNotifier
) -> None:
    start, end = local_day_bounds(START_TS)
    records.add_task(title="today", due_at=start + 1)
    records.add_task(title="tomorrow", due_at=end + 1)

    state.scheduler.submit(JobDefinition.periodic(DAILY_SUMMARY_KEY, interval=24 * 3600, fire_immediately=True))
    _run(state)

    assert [(n.title, n.body) for n in notifier.sent] == [("Today's Tasks", "You have 1 task due today")]


def test_periodic_checks_stay_quiet_when_nothing_matches(
    state: AppState, notifier: RecordingNotifier
) -> None:
    state.scheduler.submit(JobDefinition.periodic(OVERDUE_CHECK_KEY, interval=6 * 3600, fire_immediately=True))
    state.scheduler.submit(JobDefinition.periodic(DAILY_SUMMARY_KEY, interval=24 * 3600, fire_immediately=True))
    _run(state)
    assert notifier.sent == []


def test_register_periodic_is_idempotent(state: AppState) -> None:
    state.reminders.register_periodic()
    first = {r.key: r.next_fire_at for r in state.scheduler.live_records()}
    state.reminders.register_periodic()
    assert {r.key: r.next_fire_at for r in state.scheduler.live_records()} == first
    assert set(first) == {OVERDUE_CHECK_KEY, DAILY_SUMMARY_KEY}
