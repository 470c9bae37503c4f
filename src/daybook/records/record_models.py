# src/daybook/records/record_models.py

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class Task:
    id: str
    title: str
    description: str
    due_at: float | None
    reminder_at: float | None
    is_completed: bool
    created_at: float
    updated_at: float


@dataclass(slots=True, frozen=True)
class Quote:
    id: int
    text: str
    author: str | None = None
    is_active: bool = True


@dataclass(slots=True, frozen=True)
class Habit:
    id: int
    name: str
    is_active: bool = True
