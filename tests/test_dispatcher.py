# tests/test_dispatcher.py

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable

import pytest

from daybook.core.dispatch import Dispatcher, handle_event
from daybook.core.events import EntityChanged, ExternalEvent, ManualTrigger, TimerFired
from daybook.core.state import AppState
from daybook.jobs.job_models import JobDefinition, JobResult, JobState
from daybook.reminders.coordinator import reminder_key
from daybook.widgets.refresh import WIDGET_REFRESH_NOW_KEY
from daybook.widgets.widget_settings import WidgetRefreshMode

from .fakes import START_TS, FakeClock, InMemoryRecordStore, RecordingNotifier, RecordingRenderTarget


async def _wait_until(pred: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not pred():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def _stop(task: asyncio.Task[None]) -> None:
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


# ---- handle_event (synchronous) ----


def test_task_change_event_schedules_and_delete_cancels(state: AppState, records: InMemoryRecordStore) -> None:
    records.add_task(title="t", reminder_at=START_TS + 60, task_id="t1")

    handle_event(state, EntityChanged(entity_type="task", entity_id="t1"))
    assert state.scheduler.get(reminder_key("t1")).state == JobState.PENDING  # type: ignore[union-attr]

    handle_event(state, EntityChanged(entity_type="task", entity_id="t1", deleted=True))
    assert state.scheduler.get(reminder_key("t1")).state == JobState.CANCELLED  # type: ignore[union-attr]


def test_task_event_for_missing_task_cancels_reminder(state: AppState, records: InMemoryRecordStore) -> None:
    task = records.add_task(title="t", reminder_at=START_TS + 60, task_id="t1")
    state.reminders.on_task_upserted(task)
    records.delete_task("t1")

    handle_event(state, EntityChanged(entity_type="task", entity_id="t1"))

    assert state.reminders.pending_reminder_count() == 0


def test_task_change_queues_a_widget_refresh(state: AppState, records: InMemoryRecordStore) -> None:
    records.add_task(title="t", due_at=START_TS + 60, task_id="t1")

    handle_event(state, EntityChanged(entity_type="task", entity_id="t1"))
    rec = state.scheduler.get(WIDGET_REFRESH_NOW_KEY)
    assert rec is not None and rec.state == JobState.PENDING

    handle_event(state, EntityChanged(entity_type="task", entity_id="t1", deleted=True))
    assert len([r for r in state.scheduler.live_records() if r.key == WIDGET_REFRESH_NOW_KEY]) == 1


def test_quote_and_habit_changes_queue_a_refresh(state: AppState) -> None:
    handle_event(state, EntityChanged(entity_type="quote", entity_id="1"))
    rec = state.scheduler.get(WIDGET_REFRESH_NOW_KEY)
    assert rec is not None and rec.state == JobState.PENDING

    handle_event(state, EntityChanged(entity_type="habit", entity_id="1"))
    assert len([r for r in state.scheduler.live_records() if r.key == WIDGET_REFRESH_NOW_KEY]) == 1


def test_manual_backup_trigger_queues_backup(state: AppState) -> None:
    handle_event(state, ManualTrigger(target="backup"))
    assert "backup-now" in state.scheduler.keys((JobState.PENDING,))


def test_external_event_respects_mode(state: AppState) -> None:
    handle_event(state, ExternalEvent())
    assert state.scheduler.get(WIDGET_REFRESH_NOW_KEY) is None

    state.widgets.set_mode(WidgetRefreshMode.ON_EXTERNAL_EVENT)
    handle_event(state, ExternalEvent(name="unlock"))
    assert state.scheduler.get(WIDGET_REFRESH_NOW_KEY) is not None


# ---- Dispatcher (asyncio) ----


@pytest.mark.asyncio
async def test_dispatcher_fires_reminder_when_clock_reaches_it(
    state: AppState, clock: FakeClock, records: InMemoryRecordStore, notifier: RecordingNotifier
) -> None:
    dispatcher = Dispatcher(state, poll_interval_seconds=0.02)
    runner = asyncio.create_task(dispatcher.run())
    try:
        records.add_task(title="Stretch", reminder_at=START_TS + 10, task_id="t1")
        dispatcher.post(EntityChanged(entity_type="task", entity_id="t1"))
        await _wait_until(lambda: state.scheduler.get(reminder_key("t1")) is not None)

        await asyncio.sleep(0.1)
        assert notifier.sent == []

        clock.advance(10)
        dispatcher.post(TimerFired())
        await _wait_until(lambda: len(notifier.sent) == 1)

        assert notifier.sent[0].body == "Stretch"
        await _wait_until(lambda: len(dispatcher.outcomes) == 1)
        assert dispatcher.outcomes[0].state == JobState.SUCCEEDED
    finally:
        await _stop(runner)


@pytest.mark.asyncio
async def test_dispatcher_manual_refresh_from_another_thread(
    state: AppState, records: InMemoryRecordStore, render_target: RecordingRenderTarget
) -> None:
    records.add_quote("hello")
    dispatcher = Dispatcher(state, poll_interval_seconds=0.02)
    runner = asyncio.create_task(dispatcher.run())
    try:
        await asyncio.sleep(0.05)
        await asyncio.to_thread(dispatcher.post_threadsafe, ManualTrigger(target="widget"))
        await _wait_until(lambda: len(render_target.for_widget("quotes")) == 1)
    finally:
        await _stop(runner)


@pytest.mark.asyncio
async def test_dispatcher_bounds_concurrent_runs(state: AppState) -> None:
    lock = threading.Lock()
    running = {"now": 0, "peak": 0, "done": 0}

    def slow(ctx):
        with lock:
            running["now"] += 1
            running["peak"] = max(running["peak"], running["now"])
        time.sleep(0.05)
        with lock:
            running["now"] -= 1
            running["done"] += 1
        return JobResult.success()

    for i in range(4):
        key = f"slow-{i}"
        state.actions.register(key, slow)
        state.scheduler.submit(JobDefinition.one_shot(key))

    dispatcher = Dispatcher(state, poll_interval_seconds=0.02, max_workers=2)
    runner = asyncio.create_task(dispatcher.run())
    try:
        await _wait_until(lambda: running["done"] == 4)
    finally:
        await _stop(runner)

    assert running["peak"] <= 2
    assert {r.state for r in state.scheduler.store.list_records()} == {JobState.SUCCEEDED}


@pytest.mark.asyncio
async def test_dispatcher_idles_while_all_workers_are_busy(state: AppState) -> None:
    release = threading.Event()
    started: list[str] = []

    def blocking(ctx):
        started.append(ctx.key)
        release.wait(5.0)
        return JobResult.success()

    for key in ("block-a", "block-b"):
        state.actions.register(key, blocking)
        state.scheduler.submit(JobDefinition.one_shot(key))

    dispatcher = Dispatcher(state, poll_interval_seconds=1.0, max_workers=1)
    passes = {"n": 0}
    dispatch_due = dispatcher._dispatch_due

    def counting() -> None:
        passes["n"] += 1
        dispatch_due()

    dispatcher._dispatch_due = counting  # type: ignore[method-assign]
    runner = asyncio.create_task(dispatcher.run())
    try:
        await _wait_until(lambda: len(started) == 1)
        before = passes["n"]
        await asyncio.sleep(0.5)
        assert passes["n"] - before <= 3

        release.set()
        await _wait_until(lambda: len(started) == 2)
        await _wait_until(lambda: len(dispatcher.outcomes) == 2)
    finally:
        release.set()
        await _stop(runner)

    assert started == ["block-a", "block-b"]


@pytest.mark.asyncio
async def test_dispatcher_recovers_jobs_left_running(state: AppState, clock: FakeClock) -> None:
    calls: list[str] = []
    state.actions.register("job", lambda ctx: calls.append(ctx.key))
    state.scheduler.submit(JobDefinition.one_shot("job"))
    (rec,) = state.scheduler.claim_due()
    # Crash: the claim is never run or released.
    state.scheduler.release(rec.key)
    assert state.scheduler.get("job").state == JobState.RUNNING  # type: ignore[union-attr]

    dispatcher = Dispatcher(state, poll_interval_seconds=0.02)
    runner = asyncio.create_task(dispatcher.run())
    try:
        await _wait_until(lambda: calls == ["job"])
        await _wait_until(lambda: state.scheduler.get("job").state == JobState.SUCCEEDED)  # type: ignore[union-attr]
    finally:
        await _stop(runner)

    assert state.scheduler.get("job").attempt == 2  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_dispatcher_survives_a_failing_event_handler(
    state: AppState, monkeypatch: pytest.MonkeyPatch, records: InMemoryRecordStore
) -> None:
    def broken(task_id):
        raise RuntimeError("store offline")

    monkeypatch.setattr(records, "get_task_by_id", broken)
    dispatcher = Dispatcher(state, poll_interval_seconds=0.02)
    runner = asyncio.create_task(dispatcher.run())
    try:
        dispatcher.post(EntityChanged(entity_type="task", entity_id="t1"))
        await asyncio.sleep(0.1)
        assert not runner.done()
    finally:
        await _stop(runner)
