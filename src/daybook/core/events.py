# src/daybook/core/events.py

from __future__ import annotations

"""
Messages flowing through the background subsystem.

Inbound events (what happened):
- TimerFired:    a scheduled fire time was reached (key=None means "whatever is due")
- ExternalEvent: an outside edge signal, e.g. device unlock
- ManualTrigger: the user asked for something now (widget refresh, backup)
- EntityChanged: a record in the store was created/updated/deleted

Follow-up effects (what a job action wants done at the boundary):
- Notify, RenderWidget, ScheduleJob, CancelJob
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from ..jobs.job_models import JobDefinition

EntityType = Literal["task", "quote", "habit"]


@dataclass(slots=True, frozen=True)
class TimerFired:
    key: str | None = None


@dataclass(slots=True, frozen=True)
class ExternalEvent:
    name: str = "unlock"


@dataclass(slots=True, frozen=True)
class ManualTrigger:
    target: Literal["widget", "backup"] = "widget"


@dataclass(slots=True, frozen=True)
class EntityChanged:
    entity_type: EntityType
    entity_id: str
    deleted: bool = False


Event = TimerFired | ExternalEvent | ManualTrigger | EntityChanged


@dataclass(slots=True, frozen=True)
class Notify:
    notification_id: int
    title: str
    body: str
    on_tap_action: str | None = None


@dataclass(slots=True, frozen=True)
class RenderWidget:
    widget_id: str
    content: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ScheduleJob:
    definition: JobDefinition


@dataclass(slots=True, frozen=True)
class CancelJob:
    key: str


Effect = Notify | RenderWidget | ScheduleJob | CancelJob
