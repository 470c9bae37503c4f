# tests/test_console_and_bootstrap.py

from __future__ import annotations

import json
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from daybook.cli.bootstrap import create_initial_state, register_background_jobs
from daybook.cli.main import DispatcherThread
from daybook.connectors.console_connector import ConsoleNotifier, FileRenderTarget, run_console_loop
from daybook.core.events import ManualTrigger
from daybook.core.state import AppState
from daybook.errors import TransientFailure
from daybook.records.record_store import RecordStore

from .fakes import InMemoryRecordStore, RecordingRenderTarget


def test_file_render_target_writes_one_json_per_widget(tmp_path: Path) -> None:
    target = FileRenderTarget(tmp_path / "widgets")
    target.push_widget_content("quotes", {"state": "quote", "text": "héllo"})
    target.push_widget_content("quotes", {"state": "empty"})

    assert json.loads((tmp_path / "widgets" / "quotes.json").read_text("utf-8")) == {"state": "empty"}
    assert target.read("quotes") == {"state": "empty"}
    assert target.read("habits") is None


def test_file_render_target_io_error_is_transient(tmp_path: Path) -> None:
    target = FileRenderTarget(tmp_path / "widgets")
    (tmp_path / "widgets" / "quotes.json").mkdir()

    with pytest.raises(TransientFailure):
        target.push_widget_content("quotes", {"state": "empty"})


def test_console_notifier_prints(capsys: pytest.CaptureFixture[str]) -> None:
    ConsoleNotifier().notify(1, "Task Reminder", "Stretch", "edit_task/t1")
    out = capsys.readouterr().out
    assert "[NOTIFY] Task Reminder: Stretch (tap: edit_task/t1)" in out


def test_console_loop_runs_commands_until_exit(
    state: AppState, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    lines = iter(["/status", "", "hello", "/exit", "/never-reached"])
    monkeypatch.setattr("builtins.input", lambda _prompt="": next(lines))
    posted: list[object] = []

    run_console_loop(state, post=posted.append)

    out = capsys.readouterr().out
    assert "Widget refresh mode" in out
    assert "Not a command" in out
    assert next(lines) == "/never-reached"


def test_console_loop_stops_on_eof(state: AppState, monkeypatch: pytest.MonkeyPatch) -> None:
    def eof(_prompt=""):
        raise EOFError

    monkeypatch.setattr("builtins.input", eof)
    run_console_loop(state)


def test_dispatcher_thread_accepts_events_once_started(
    state: AppState, records: InMemoryRecordStore, render_target: RecordingRenderTarget
) -> None:
    records.add_quote("hello")
    runner = DispatcherThread(state, poll_interval_seconds=0.02, max_workers=2)
    runner.start()
    try:
        assert runner.wait_started() is True
        # No window between "started" and a usable loop.
        runner.post(ManualTrigger(target="widget"))

        deadline = time.monotonic() + 5.0
        while not render_target.for_widget("quotes"):
            assert time.monotonic() < deadline, "widget was never refreshed"
            time.sleep(0.01)
    finally:
        runner.stop()
        runner.join(timeout=5.0)

    assert not runner.is_alive()
    assert runner.dispatcher.is_running is False


def test_bootstrap_defaults_and_background_jobs(settings: SimpleNamespace) -> None:
    state = create_initial_state(settings=settings)

    assert isinstance(state.records, RecordStore)
    assert isinstance(state.render_target, FileRenderTarget)
    assert settings.backup_dir.is_dir()

    register_background_jobs(state)
    first = {r.key: (r.next_fire_at, r.generation) for r in state.scheduler.live_records()}
    assert set(first) == {"widget-refresh", "overdue-check", "daily-summary", "backup"}

    # Second process start keeps every schedule untouched.
    restarted = create_initial_state(settings=settings)
    register_background_jobs(restarted)
    again = {r.key: (r.next_fire_at, r.generation) for r in restarted.scheduler.live_records()}
    assert again == first
