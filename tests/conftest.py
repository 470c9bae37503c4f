# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from daybook.cli.bootstrap import create_initial_state
from daybook.core.state import AppState
from daybook.jobs.job_scheduler import JobScheduler
from daybook.jobs.job_store import JobStore

from .fakes import FakeClock, InMemoryRecordStore, RecordingNotifier, RecordingRenderTarget


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap and the coordinators.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the environment and any local .env.
    """
    return SimpleNamespace(
        app_name="daybook-test",
        log_level="DEBUG",
        console_enabled=False,
        # Paths (tmp per test run)
        data_dir=tmp_path,
        jobs_db_path=tmp_path / "jobs.sqlite3",
        records_db_path=tmp_path / "daybook.sqlite3",
        widget_state_path=tmp_path / "widget_settings.json",
        render_dir=tmp_path / "widgets",
        backup_dir=tmp_path / "backups",
        # Backups
        backup_retention=2,
        backup_interval_hours=24.0,
        # Widgets
        widget_refresh_mode="every_hour",
        widget_ids=["quotes"],
        habit_widget_id="habits",
        task_widget_id="tasks",
        # Job runtime
        max_workers=4,
        poll_interval_seconds=0.05,
        job_max_attempts=3,
        job_backoff_base_seconds=30.0,
        job_backoff_cap_seconds=3600.0,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def records(clock: FakeClock) -> InMemoryRecordStore:
    return InMemoryRecordStore(clock)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def render_target() -> RecordingRenderTarget:
    return RecordingRenderTarget()


@pytest.fixture()
def scheduler(tmp_path: Path, clock: FakeClock) -> JobScheduler:
    """Bare scheduler on a real SQLite job store."""
    return JobScheduler(JobStore(tmp_path / "jobs-bare.sqlite3"), clock)


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    clock: FakeClock,
    records: InMemoryRecordStore,
    notifier: RecordingNotifier,
    render_target: RecordingRenderTarget,
) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: the job store stays real SQLite because its persistence and
    ordering are part of what we want to test.
    """
    return create_initial_state(
        settings=settings,
        clock=clock,
        records=records,
        notifier=notifier,
        render_target=render_target,
    )
