# src/daybook/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the background subsystem.

The scheduler and coordinators depend on Protocols instead of concrete
implementations. The record store, the notification surface and the widget
surface belong to the host application; tests swap them for fakes.
"""

from typing import Any, Protocol


class Clock(Protocol):
    """Current time as a UNIX timestamp (seconds, float)."""

    def now(self) -> float: ...


class RecordStore(Protocol):
    """Narrow read/write contract to the personal record store. Synchronous, worker-thread safe."""

    def list_active_habits(self) -> list[Any]: ...
    def list_quote_candidates(self, active_only: bool = True) -> list[Any]: ...
    def get_task_by_id(self, task_id: str) -> Any | None: ...
    def list_tasks_due_between(self, start_ts: float, end_ts: float) -> list[Any]: ...
    def update_task_completion(self, task_id: str, completed: bool) -> None: ...


class Notifier(Protocol):
    """
    Notification sink.

    on_tap_action is an opaque navigation token for the host UI
    (e.g. "edit_task/<id>" or "tasks").
    """

    def notify(self, notification_id: int, title: str, body: str, on_tap_action: str | None) -> None: ...


class RenderTarget(Protocol):
    """Widget surface: receives the full content for one widget instance."""

    def push_widget_content(self, widget_id: str, content: dict[str, Any]) -> None: ...
