# src/daybook/widgets/refresh.py

from __future__ import annotations

"""
Home-screen widget refresh.

Every refresh, whatever triggered it:
  read active quotes -> pick next (no immediate repeat, state persisted) ->
  push quote (or the empty state) to each quote widget -> push active habits
  to the habit widget when one is configured -> push the next open tasks to
  the task widget when one is configured.

Scheduling follows the configured mode:
- every_day / every_hour: one periodic job under WIDGET_REFRESH_KEY
- on_external_event: no periodic job; unlock events enqueue an immediate
  refresh, gated on the mode still being on_external_event when it runs
Manual refreshes run immediately and never touch the periodic job.
"""

import logging
import threading
from collections.abc import Sequence
from enum import StrEnum
from typing import Any

from ..core.events import RenderWidget
from ..core.ports import RecordStore
from ..jobs.job_executor import ActionRegistry, EffectApplier, JobContext
from ..jobs.job_models import JobDefinition, JobResult, SubmitResult, WorkPolicy
from ..jobs.job_scheduler import JobScheduler
from .quote_selector import QuoteRotationSelector
from .widget_settings import WidgetRefreshMode, WidgetSettingsStore

logger = logging.getLogger(__name__)

WIDGET_REFRESH_KEY = "widget-refresh"
WIDGET_REFRESH_NOW_KEY = "widget-refresh-now"

HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * HOUR_SECONDS

MODE_INTERVALS: dict[WidgetRefreshMode, float] = {
    WidgetRefreshMode.EVERY_DAY: DAY_SECONDS,
    WidgetRefreshMode.EVERY_HOUR: HOUR_SECONDS,
}

QUOTES_TAP_ACTION = "quotes"
HABITS_TAP_ACTION = "habits"
TASKS_TAP_ACTION = "tasks"

UPCOMING_TASK_LIMIT = 7
UPCOMING_TASK_HORIZON = 365 * DAY_SECONDS


class RefreshTrigger(StrEnum):
    TIMER = "timer"
    EXTERNAL_EVENT = "external_event"
    MANUAL = "manual"


class WidgetRefreshCoordinator:
    def __init__(
        self,
        scheduler: JobScheduler,
        records: RecordStore,
        selector: QuoteRotationSelector,
        settings_store: WidgetSettingsStore,
        *,
        effects: EffectApplier | None = None,
        widget_ids: Sequence[str] = ("quotes",),
        habit_widget_id: str | None = None,
        task_widget_id: str | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._records = records
        self._selector = selector
        self._settings = settings_store
        self._effects = effects
        self._widget_ids = tuple(widget_ids)
        self._habit_widget_id = habit_widget_id or None
        self._task_widget_id = task_widget_id or None
        self._mode_lock = threading.Lock()

    def register(self, actions: ActionRegistry) -> None:
        actions.register(WIDGET_REFRESH_KEY, self._run_periodic)
        actions.register(WIDGET_REFRESH_NOW_KEY, self._run_requested)

    # ---- scheduling ----

    @property
    def shows_tasks(self) -> bool:
        return self._task_widget_id is not None

    @property
    def mode(self) -> WidgetRefreshMode:
        return self._settings.get_refresh_mode()

    def ensure_scheduled(self) -> SubmitResult | None:
        """
        Startup registration for the configured mode.

        An existing periodic job keeps its cadence; only a changed interval is
        pushed into it (UPDATE_SCHEDULE).
        """
        with self._mode_lock:
            mode = self.mode
            interval = MODE_INTERVALS.get(mode)
            if interval is None:
                self._scheduler.cancel(WIDGET_REFRESH_KEY)
                return None

            policy = WorkPolicy.KEEP_EXISTING
            existing = self._scheduler.get(WIDGET_REFRESH_KEY)
            if existing is not None and existing.state.is_live and existing.definition.interval != interval:
                policy = WorkPolicy.UPDATE_SCHEDULE
            return self._scheduler.submit(self._periodic_definition(interval), policy)

    def set_mode(self, mode: WidgetRefreshMode) -> None:
        """Persist a new mode, cancelling the previous mode's job before installing the new one."""
        with self._mode_lock:
            self._settings.set_refresh_mode(mode)
            self._scheduler.cancel(WIDGET_REFRESH_KEY)
            interval = MODE_INTERVALS.get(mode)
            if interval is not None:
                self._scheduler.submit(self._periodic_definition(interval), WorkPolicy.REPLACE)
            logger.info("Widget refresh mode set to %s", mode.value)

    @staticmethod
    def _periodic_definition(interval: float) -> JobDefinition:
        return JobDefinition.periodic(
            WIDGET_REFRESH_KEY,
            interval=interval,
            payload={"trigger": RefreshTrigger.TIMER.value},
        )

    def request_refresh(self, trigger: RefreshTrigger) -> SubmitResult:
        """Queue an immediate refresh. Requests arriving while one is queued coalesce."""
        definition = JobDefinition.one_shot(
            WIDGET_REFRESH_NOW_KEY,
            payload={"trigger": trigger.value},
            policy=WorkPolicy.KEEP_EXISTING,
        )
        return self._scheduler.submit(definition)

    def on_external_event(self) -> bool:
        """External edge signal (e.g. unlock). Returns True when a refresh was queued."""
        if self.mode != WidgetRefreshMode.ON_EXTERNAL_EVENT:
            logger.debug("External event ignored; widget refresh mode is %s", self.mode.value)
            return False
        return self.request_refresh(RefreshTrigger.EXTERNAL_EVENT) == SubmitResult.ACCEPTED

    # ---- refresh ----

    def refresh(self, trigger: RefreshTrigger = RefreshTrigger.MANUAL) -> JobResult:
        """Refresh right now and push the result to the widget surface."""
        result = self.plan_refresh(trigger)
        if self._effects is not None:
            self._effects.apply(result.effects)
        return result

    def plan_refresh(self, trigger: RefreshTrigger) -> JobResult:
        """Pick the next quote and build the widget updates (quote selection is persisted here)."""
        if trigger == RefreshTrigger.EXTERNAL_EVENT and self.mode != WidgetRefreshMode.ON_EXTERNAL_EVENT:
            logger.info("Skipping event-triggered widget refresh; mode is now %s", self.mode.value)
            return JobResult.success(reason="mode changed")

        quotes = {q.id: q for q in self._records.list_quote_candidates(active_only=True)}
        chosen = self._selector.select(quotes.keys())
        content = self._quote_content(quotes.get(chosen) if chosen is not None else None)

        effects: list[RenderWidget] = [RenderWidget(widget_id=w, content=content) for w in self._widget_ids]
        if self._habit_widget_id:
            effects.append(RenderWidget(widget_id=self._habit_widget_id, content=self._habit_content()))
        if self._task_widget_id:
            upcoming = self._task_content(self._scheduler.clock.now())
            effects.append(RenderWidget(widget_id=self._task_widget_id, content=upcoming))

        logger.info(
            "Widget refresh trigger=%s quote=%s candidates=%d",
            trigger.value,
            chosen,
            len(quotes),
        )
        return JobResult.success(*effects)

    @staticmethod
    def _quote_content(quote: Any | None) -> dict[str, Any]:
        if quote is None:
            return {"state": "empty", "tap_action": QUOTES_TAP_ACTION}
        return {
            "state": "quote",
            "quote_id": quote.id,
            "text": quote.text,
            "author": getattr(quote, "author", None),
            "tap_action": QUOTES_TAP_ACTION,
        }

    def _habit_content(self) -> dict[str, Any]:
        habits = self._records.list_active_habits()
        if not habits:
            return {"state": "empty", "tap_action": HABITS_TAP_ACTION}
        return {
            "state": "habits",
            "habits": [{"id": h.id, "name": h.name} for h in habits],
            "tap_action": HABITS_TAP_ACTION,
        }

    def _task_content(self, now: float) -> dict[str, Any]:
        """The next UPCOMING_TASK_LIMIT open tasks due from now on, earliest first."""
        due = self._records.list_tasks_due_between(now, now + UPCOMING_TASK_HORIZON)
        upcoming = [t for t in due if not t.is_completed][:UPCOMING_TASK_LIMIT]
        if not upcoming:
            return {"state": "empty", "tap_action": TASKS_TAP_ACTION}
        return {
            "state": "tasks",
            "tasks": [{"id": t.id, "title": t.title, "due_at": t.due_at} for t in upcoming],
            "tap_action": TASKS_TAP_ACTION,
        }

    # ---- job actions ----

    def _run_periodic(self, ctx: JobContext) -> JobResult:
        return self.plan_refresh(RefreshTrigger.TIMER)

    def _run_requested(self, ctx: JobContext) -> JobResult:
        raw = ctx.payload.get("trigger", RefreshTrigger.MANUAL.value)
        try:
            trigger = RefreshTrigger(raw)
        except ValueError:
            return JobResult.fatal(f"unknown refresh trigger {raw!r}")
        return self.plan_refresh(trigger)
