# src/daybook/widgets/widget_settings.py

from __future__ import annotations

import contextlib
import json
import logging
import os
import threading
from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path

from ..errors import TransientFailure
from .quote_selector import QuoteSelectionState

logger = logging.getLogger(__name__)


class WidgetRefreshMode(StrEnum):
    EVERY_DAY = "every_day"
    EVERY_HOUR = "every_hour"
    ON_EXTERNAL_EVENT = "on_external_event"

    @classmethod
    def parse(cls, raw: str | None, default: WidgetRefreshMode | None = None) -> WidgetRefreshMode:
        fallback = default or cls.EVERY_DAY
        if not raw:
            return fallback
        name = raw.strip().lower().replace("-", "_")
        # Older settings files stored the unlock mode under these names.
        if name in ("on_unlock", "on_screen_unlock", "unlock"):
            return cls.ON_EXTERNAL_EVENT
        if name in ("daily", "day"):
            return cls.EVERY_DAY
        if name in ("hourly", "hour"):
            return cls.EVERY_HOUR
        try:
            return cls(name)
        except ValueError:
            logger.warning("Unknown widget refresh mode %r; using %s", raw, fallback.value)
            return fallback


@dataclass(slots=True, frozen=True)
class WidgetSettings:
    refresh_mode: WidgetRefreshMode = WidgetRefreshMode.EVERY_DAY
    last_shown_quote_id: int | str | None = None


class WidgetSettingsStore:
    """
    Widget preferences persisted as a small JSON file.

    Reads are best-effort (a missing or broken file yields defaults); writes
    are atomic (tmp file + os.replace) and raise TransientFailure on I/O errors.
    """

    def __init__(self, path: str | Path, *, default_mode: WidgetRefreshMode = WidgetRefreshMode.EVERY_DAY) -> None:
        self._path = Path(path)
        self._default_mode = default_mode
        self._lock = threading.RLock()

    def load(self) -> WidgetSettings:
        with self._lock:
            if not self._path.exists():
                return WidgetSettings(refresh_mode=self._default_mode)
            try:
                data = json.loads(self._path.read_text("utf-8"))
            except (OSError, ValueError):
                logger.exception("Failed to read widget settings from %s; using defaults", self._path)
                return WidgetSettings(refresh_mode=self._default_mode)
            if not isinstance(data, dict):
                return WidgetSettings(refresh_mode=self._default_mode)

            last_id = data.get("last_shown_quote_id")
            if not isinstance(last_id, (int, str)) or last_id == -1:
                last_id = None
            return WidgetSettings(
                refresh_mode=WidgetRefreshMode.parse(data.get("refresh_mode"), self._default_mode),
                last_shown_quote_id=last_id,
            )

    def save(self, settings: WidgetSettings) -> None:
        payload = {
            "refresh_mode": settings.refresh_mode.value,
            "last_shown_quote_id": settings.last_shown_quote_id,
        }
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                tmp = self._path.with_suffix(".tmp")
                tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
                os.replace(tmp, self._path)
            except OSError as e:
                with contextlib.suppress(OSError):
                    self._path.with_suffix(".tmp").unlink()
                raise TransientFailure(f"cannot write widget settings {self._path}: {e}") from e

    # ---- focused accessors ----

    def get_refresh_mode(self) -> WidgetRefreshMode:
        return self.load().refresh_mode

    def set_refresh_mode(self, mode: WidgetRefreshMode) -> None:
        with self._lock:
            self.save(replace(self.load(), refresh_mode=mode))

    def load_selection_state(self) -> QuoteSelectionState:
        return QuoteSelectionState(last_shown_id=self.load().last_shown_quote_id)

    def save_selection_state(self, state: QuoteSelectionState) -> None:
        last_id = state.last_shown_id
        if last_id is not None and not isinstance(last_id, (int, str)):
            last_id = str(last_id)
        with self._lock:
            self.save(replace(self.load(), last_shown_quote_id=last_id))
