# src/daybook/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (job store, scheduler,
  executor, coordinators, record store, notification and widget surfaces),
- registers the background jobs every process start must have.
"""

from __future__ import annotations

import logging

from ..backup.retention import BackupRetentionManager
from ..config import get_settings
from ..connectors.console_connector import ConsoleNotifier, FileRenderTarget
from ..core.clock import SystemClock
from ..core.ports import Clock, Notifier, RecordStore, RenderTarget
from ..core.state import AppState
from ..jobs.job_executor import ActionRegistry, EffectApplier, JobExecutor
from ..jobs.job_scheduler import JobScheduler
from ..jobs.job_store import JobStore
from ..records.record_store import RecordStore as SqliteRecordStore
from ..reminders.coordinator import ReminderCoordinator
from ..widgets.quote_selector import QuoteRotationSelector
from ..widgets.refresh import WidgetRefreshCoordinator
from ..widgets.widget_settings import WidgetRefreshMode, WidgetSettingsStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.jobs_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.records_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.widget_state_path.parent.mkdir(parents=True, exist_ok=True)
    settings.render_dir.mkdir(parents=True, exist_ok=True)
    settings.backup_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(
    *,
    settings=None,
    clock: Clock | None = None,
    records: RecordStore | None = None,
    notifier: Notifier | None = None,
    render_target: RenderTarget | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings(). Any collaborator left as None gets
    its local default (system clock, SQLite record store, console notifier, JSON widget files).
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    clock = clock or SystemClock()
    records = records or SqliteRecordStore(settings.records_db_path)
    notifier = notifier or ConsoleNotifier()
    render_target = render_target or FileRenderTarget(settings.render_dir)

    scheduler = JobScheduler(JobStore(settings.jobs_db_path), clock)
    actions = ActionRegistry()
    effects = EffectApplier(notifier=notifier, render_target=render_target, scheduler=scheduler)
    executor = JobExecutor(
        scheduler,
        actions,
        effects=effects,
        max_attempts=settings.job_max_attempts,
        backoff_base=settings.job_backoff_base_seconds,
        backoff_cap=settings.job_backoff_cap_seconds,
    )

    settings_store = WidgetSettingsStore(
        settings.widget_state_path,
        default_mode=WidgetRefreshMode.parse(settings.widget_refresh_mode),
    )
    widgets = WidgetRefreshCoordinator(
        scheduler,
        records,
        QuoteRotationSelector(settings_store),
        settings_store,
        effects=effects,
        widget_ids=settings.widget_ids,
        habit_widget_id=settings.habit_widget_id,
        task_widget_id=settings.task_widget_id,
    )
    reminders = ReminderCoordinator(scheduler, records)
    backups = BackupRetentionManager(
        settings.records_db_path,
        settings.backup_dir,
        clock,
        retention=settings.backup_retention,
    )

    widgets.register(actions)
    reminders.register(actions)
    backups.register(actions)

    return AppState(
        settings=settings,
        clock=clock,
        records=records,
        notifier=notifier,
        render_target=render_target,
        scheduler=scheduler,
        actions=actions,
        executor=executor,
        widgets=widgets,
        reminders=reminders,
        backups=backups,
    )


def register_background_jobs(state: AppState) -> None:
    """
    Idempotent startup registration.

    Existing live jobs are kept (KeepExisting), so restarting the process
    never resets a schedule that is already running.
    """
    state.widgets.ensure_scheduled()
    state.reminders.register_periodic()
    state.backups.schedule(
        state.scheduler,
        interval=float(state.settings.backup_interval_hours) * 60 * 60,
    )
    logger.info("Background jobs registered: %s", ", ".join(r.key for r in state.scheduler.live_records()))
