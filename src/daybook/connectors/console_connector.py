# src/daybook/connectors/console_connector.py

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from ..cli.commands import registry as command_registry
from ..core.events import Event
from ..core.state import AppState
from ..errors import TransientFailure

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleNotifier:
    """Notifier that prints notifications to the terminal."""

    def notify(self, notification_id: int, title: str, body: str, on_tap_action: str | None) -> None:
        tap = f" (tap: {on_tap_action})" if on_tap_action else ""
        logger.info("Notification %d: %s", notification_id, title)
        _print_ts(f"[NOTIFY] {title}: {body}{tap}")


class FileRenderTarget:
    """
    Widget surface backed by JSON files: one <widget_id>.json per widget.

    Files are replaced atomically so a reader never sees half-written content.
    """

    def __init__(self, render_dir: str | Path) -> None:
        self.render_dir = Path(render_dir)
        self.render_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, widget_id: str) -> Path:
        return self.render_dir / f"{widget_id}.json"

    def push_widget_content(self, widget_id: str, content: dict[str, Any]) -> None:
        path = self.path_for(widget_id)
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(content, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise TransientFailure(f"widget {widget_id} render failed: {e}") from e
        logger.debug("Rendered widget %s -> %s", widget_id, path)

    def read(self, widget_id: str) -> dict[str, Any] | None:
        path = self.path_for(widget_id)
        if not path.exists():
            return None
        data = json.loads(path.read_text("utf-8"))
        return data if isinstance(data, dict) else None


def run_console_loop(state: AppState, post: Callable[[Event], None] | None = None) -> None:
    """
    Interactive console: slash commands only.

    `post` hands events to the running dispatcher; without it, commands
    act on the state inline.
    """
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    while True:
        try:
            user_input = input(">>> ").strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            reply = command_registry.handle(state, user_input, post=post)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is None:
            reply = "Not a command. Use /help to list available commands."

        print(f"[{_ts_local()}] {reply}", file=sys.stdout, flush=True)

    logger.info("Console connector finished.")
