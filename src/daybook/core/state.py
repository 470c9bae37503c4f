# src/daybook/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..backup.retention import BackupRetentionManager
from ..jobs.job_executor import ActionRegistry, JobExecutor
from ..jobs.job_scheduler import JobScheduler
from ..reminders.coordinator import ReminderCoordinator
from ..widgets.refresh import WidgetRefreshCoordinator
from .ports import Clock, Notifier, RecordStore, RenderTarget


@dataclass
class AppState:
    """
    Everything the background subsystem needs, wired once in cli.bootstrap.

    There are no module-level singletons: the scheduler owns its JobStore and
    Clock, and every coordinator gets the scheduler handed in.
    """

    settings: Any
    clock: Clock
    records: RecordStore
    notifier: Notifier
    render_target: RenderTarget

    scheduler: JobScheduler
    actions: ActionRegistry
    executor: JobExecutor

    widgets: WidgetRefreshCoordinator
    reminders: ReminderCoordinator
    backups: BackupRetentionManager
