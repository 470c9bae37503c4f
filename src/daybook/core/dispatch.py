# src/daybook/core/dispatch.py

"""
Dispatch loop.

Timer wakeups and external events go through one asyncio loop:
- events are turned into scheduler submissions/cancellations (handle_event),
- due jobs are claimed from the scheduler and run on worker threads, at most
  `max_workers` at a time and never two of the same key.

To stop the dispatcher, cancel the coroutine/task; runs already on a worker
thread are awaited so their outcome is recorded.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable

from ..jobs.job_models import JobRecord, TerminalOutcome
from ..widgets.refresh import RefreshTrigger
from .events import EntityChanged, Event, ExternalEvent, ManualTrigger, TimerFired
from .state import AppState

logger = logging.getLogger(__name__)


def handle_event(state: AppState, event: Event) -> None:
    """Translate one inbound event into scheduler calls."""
    if isinstance(event, TimerFired):
        # Due jobs are claimed right after every event; nothing else to do.
        logger.debug("Timer fired key=%s", event.key)
        return

    if isinstance(event, ExternalEvent):
        queued = state.widgets.on_external_event()
        logger.debug("External event %s (refresh queued=%s)", event.name, queued)
        return

    if isinstance(event, ManualTrigger):
        if event.target == "backup":
            state.backups.request_backup(state.scheduler)
        else:
            state.widgets.request_refresh(RefreshTrigger.MANUAL)
        return

    if isinstance(event, EntityChanged):
        if event.entity_type == "task":
            task = None if event.deleted else state.records.get_task_by_id(event.entity_id)
            if task is None:
                state.reminders.on_task_deleted(event.entity_id)
            else:
                state.reminders.on_task_upserted(task)
            if state.widgets.shows_tasks:
                state.widgets.request_refresh(RefreshTrigger.MANUAL)
        else:
            # Quote or habit edits change what the widgets show.
            state.widgets.request_refresh(RefreshTrigger.MANUAL)
        return

    logger.warning("Unknown event type %s ignored", type(event).__name__)


class Dispatcher:
    def __init__(
        self,
        state: AppState,
        *,
        poll_interval_seconds: float = 1.0,
        max_workers: int = 4,
        history: int = 50,
        on_started: Callable[[], None] | None = None,
    ) -> None:
        self._state = state
        self._poll = max(0.01, float(poll_interval_seconds))
        self._max_workers = max(1, int(max_workers))
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._running: set[asyncio.Task[TerminalOutcome | None]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self.outcomes: deque[TerminalOutcome] = deque(maxlen=history)
        self._on_started = on_started

    def post(self, event: Event) -> None:
        """Queue an event from the loop's own thread."""
        self._queue.put_nowait(event)

    def post_threadsafe(self, event: Event) -> None:
        """Queue an event from another thread (e.g. the console)."""
        if self._loop is None:
            raise RuntimeError("dispatcher is not running")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    @property
    def is_running(self) -> bool:
        return self._loop is not None

    @property
    def busy_workers(self) -> int:
        return len(self._running)

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            recovered = self._state.scheduler.recover()
            if recovered:
                logger.info("Recovered %d interrupted job(s)", recovered)
            logger.info("Dispatcher started (workers=%d poll=%.2fs)", self._max_workers, self._poll)
            # post_threadsafe() works from here on.
            if self._on_started is not None:
                self._on_started()

            while True:
                await self._wait_for_work()
                self._dispatch_due()
        finally:
            if self._running:
                await asyncio.gather(*self._running, return_exceptions=True)
            self._loop = None
            logger.info("Dispatcher stopped")

    async def _wait_for_work(self) -> None:
        """
        Sleep until an event arrives, a worker frees up, or the next job is due.

        With every slot taken, due jobs cannot be claimed anyway, so only
        events and finishing workers end the wait.
        """
        timeout = self._poll
        if len(self._running) < self._max_workers:
            nxt = self._state.scheduler.seconds_until_next_fire()
            if nxt is not None:
                timeout = min(timeout, nxt)

        getter = asyncio.ensure_future(self._queue.get())
        try:
            await asyncio.wait({getter, *self._running}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not getter.done():
                getter.cancel()

        if getter.done() and not getter.cancelled():
            self._handle(getter.result())
        while not self._queue.empty():
            self._handle(self._queue.get_nowait())

    def _handle(self, event: Event) -> None:
        try:
            handle_event(self._state, event)
        except Exception:
            logger.exception("Event handler crashed for %s", event)

    def _dispatch_due(self) -> None:
        free = self._max_workers - len(self._running)
        if free <= 0:
            return
        try:
            claimed = self._state.scheduler.claim_due(limit=free)
        except Exception:
            logger.exception("claim_due failed")
            return
        for rec in claimed:
            task = asyncio.create_task(self._run_job(rec), name=f"job:{rec.key}")
            self._running.add(task)
            task.add_done_callback(self._running.discard)

    async def _run_job(self, rec: JobRecord) -> TerminalOutcome | None:
        try:
            outcome = await asyncio.to_thread(self._state.executor.run, rec)
        except Exception:
            # executor.run does not raise; this guards the thread hand-off itself.
            logger.exception("Worker for job %s crashed", rec.key)
            self._state.scheduler.release(rec.key)
            return None
        self.outcomes.append(outcome)
        return outcome
