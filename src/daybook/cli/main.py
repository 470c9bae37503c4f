# src/daybook/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, registers background jobs, then starts:
- the dispatcher (asyncio loop) in a background thread,
- the console REPL in the main thread (optional).
"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
from collections.abc import Callable

from ..cli.bootstrap import create_initial_state, register_background_jobs
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.dispatch import Dispatcher
from ..core.events import Event
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


class DispatcherThread(threading.Thread):
    """
    Runs a Dispatcher on a private event loop.

    wait_started() returns once the dispatcher accepts posted events, or
    False when it died before getting there.
    """

    def __init__(self, state: AppState, *, poll_interval_seconds: float = 1.0, max_workers: int = 4) -> None:
        super().__init__(name="daybook-dispatcher", daemon=True)
        self._started = threading.Event()
        self.dispatcher = Dispatcher(
            state,
            poll_interval_seconds=poll_interval_seconds,
            max_workers=max_workers,
            on_started=self._started.set,
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None

    def run(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        try:
            self._task = loop.create_task(self.dispatcher.run())
            loop.run_until_complete(self._task)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Dispatcher thread crashed.")
        finally:
            self._started.set()
            loop.close()

    def wait_started(self, timeout: float = 5.0) -> bool:
        return self._started.wait(timeout) and self.dispatcher.is_running

    def post(self, event: Event) -> None:
        self.dispatcher.post_threadsafe(event)

    def stop(self) -> None:
        loop, task = self._loop, self._task
        if loop is None or task is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(task.cancel)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_file = setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s (full log: %s)...", settings.app_name, log_file)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)
    register_background_jobs(state)

    runner = DispatcherThread(
        state,
        poll_interval_seconds=settings.poll_interval_seconds,
        max_workers=settings.max_workers,
    )
    runner.start()
    post: Callable[[Event], None] | None = runner.post
    if not runner.wait_started():
        logger.error("Dispatcher did not start; console commands will run inline.")
        post = None

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError):
        # Some platforms may not support SIGTERM, etc.
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state, post=post)
            stop_main.set()
        else:
            logger.info("Console disabled. Running background jobs only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        runner.stop()
        runner.join(timeout=30.0)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
