# src/daybook/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from typing import cast

from ..core.dispatch import handle_event
from ..core.events import EntityChanged, Event, ExternalEvent, ManualTrigger
from ..core.state import AppState
from ..widgets.widget_settings import WidgetRefreshMode

EventPoster = Callable[[Event], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], EventPoster | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /jobs, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str, post: EventPoster | None = None) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, post)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _emit_event(state: AppState, post: EventPoster | None, event: Event) -> None:
    """Send to the running dispatcher when there is one; otherwise handle inline."""
    if post is not None:
        post(event)
    else:
        handle_event(state, event)


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    live = state.scheduler.live_records()
    return (
        "Status:\n"
        f"  Widget refresh mode: {state.widgets.mode.value}\n"
        f"  Live jobs: {len(live)}\n"
        f"  Pending reminders: {state.reminders.pending_reminder_count()}\n"
        f"  Late periodic fires: {state.scheduler.late_fires}\n"
        f"  Backups kept: {len(state.backups.list_backups())}/{state.backups.retention}"
    )


def cmd_jobs(state: AppState, args: list[str]) -> str:
    """
    /jobs      -> live jobs
    /jobs all  -> every job record, including finished ones
    """
    show_all = bool(args) and args[0].lower() == "all"
    records = state.scheduler.store.list_records() if show_all else state.scheduler.live_records()
    if not records:
        return "No jobs."
    lines = ["Jobs:"]
    for rec in records:
        err = f" error={rec.last_error}" if rec.last_error else ""
        lines.append(
            f"  {rec.key} [{rec.state.value}] next={_fmt_ts(rec.next_fire_at)} attempt={rec.attempt}{err}"
        )
    return "\n".join(lines)


def cmd_refresh(state: AppState, args: list[str], post: EventPoster | None = None) -> str:
    _emit_event(state, post, ManualTrigger(target="widget"))
    return "Widget refresh requested."


def cmd_unlock(state: AppState, args: list[str], post: EventPoster | None = None) -> str:
    _emit_event(state, post, ExternalEvent(name="unlock"))
    if state.widgets.mode != WidgetRefreshMode.ON_EXTERNAL_EVENT:
        return f"Unlock signalled (ignored: mode is {state.widgets.mode.value})."
    return "Unlock signalled."


def cmd_mode(state: AppState, args: list[str]) -> str:
    """
    /mode                      -> show current mode
    /mode every_day|every_hour|on_external_event
    """
    if not args:
        return f"Widget refresh mode: {state.widgets.mode.value}"
    mode = WidgetRefreshMode.parse(args[0], default=state.widgets.mode)
    state.widgets.set_mode(mode)
    return f"Widget refresh mode set to {mode.value}."


def cmd_backup(state: AppState, args: list[str], post: EventPoster | None = None) -> str:
    _emit_event(state, post, ManualTrigger(target="backup"))
    return "Backup requested."


def cmd_backups(state: AppState, args: list[str]) -> str:
    backups = state.backups.list_backups()
    if not backups:
        return "No backups yet."
    lines = ["Backups (oldest first):"]
    for b in backups:
        lines.append(f"  {b.path.name}  {_fmt_ts(b.created_at)}")
    return "\n".join(lines)


def cmd_task(state: AppState, args: list[str], post: EventPoster | None = None) -> str:
    """
    /task <minutes> <title...>  -> add a task due (and reminding) in N minutes
    """
    if len(args) < 2:
        return "Usage: /task <minutes> <title>"
    try:
        minutes = float(args[0])
    except ValueError:
        return "Usage: /task <minutes> <title>"

    add_task = getattr(state.records, "add_task", None)
    if add_task is None:
        return "This record store does not support adding tasks."

    at = state.clock.now() + minutes * 60
    task = add_task(title=" ".join(args[1:]), due_at=at, reminder_at=at)
    _emit_event(state, post, EntityChanged(entity_type="task", entity_id=task.id))
    return f"Task {task.id} added; reminder at {_fmt_ts(at)}."


def cmd_done(state: AppState, args: list[str], post: EventPoster | None = None) -> str:
    if not args:
        return "Usage: /done <task_id>"
    state.reminders.complete_task(args[0])
    _emit_event(state, post, EntityChanged(entity_type="task", entity_id=args[0]))
    return f"Task {args[0]} marked done."


def cmd_quote(state: AppState, args: list[str], post: EventPoster | None = None) -> str:
    """
    /quote <text> [-- author]
    """
    if not args:
        return "Usage: /quote <text> [-- author]"
    add_quote = getattr(state.records, "add_quote", None)
    if add_quote is None:
        return "This record store does not support adding quotes."

    raw = " ".join(args)
    text, _, author = raw.partition(" -- ")
    quote = add_quote(text.strip(), author.strip() or None)
    _emit_event(state, post, EntityChanged(entity_type="quote", entity_id=str(quote.id)))
    return f"Quote {quote.id} added."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show scheduler status.")
registry.register("jobs", cmd_jobs, help_text="List jobs: /jobs | /jobs all.")
registry.register("refresh", cmd_refresh, help_text="Refresh widgets now.")
registry.register("unlock", cmd_unlock, help_text="Simulate a device unlock event.")
registry.register(
    "mode", cmd_mode, help_text="Widget refresh mode: /mode every_day | every_hour | on_external_event."
)
registry.register("backup", cmd_backup, help_text="Run a backup now.")
registry.register("backups", cmd_backups, help_text="List kept backups.")
registry.register("task", cmd_task, help_text="Add a task with a reminder: /task <minutes> <title>.")
registry.register("done", cmd_done, help_text="Complete a task: /done <task_id>.")
registry.register("quote", cmd_quote, help_text="Add a quote: /quote <text> [-- author].")
