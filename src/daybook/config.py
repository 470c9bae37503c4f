# src/daybook/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing is read at import time besides the environment; no secrets required.
- Collaborators receive settings explicitly (tests pass a SimpleNamespace).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

ENV_PREFIX = "DAYBOOK"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv() -> None:
    """Load a .env from the working directory (if present) without overriding the real environment."""
    load_dotenv(find_dotenv(usecwd=True), override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Local data paths ----
    data_dir: Path
    jobs_db_path: Path
    records_db_path: Path
    widget_state_path: Path
    render_dir: Path
    backup_dir: Path

    # ---- Backups ----
    backup_retention: int
    backup_interval_hours: float

    # ---- Widgets ----
    widget_refresh_mode: str
    widget_ids: list[str]
    habit_widget_id: str | None
    task_widget_id: str | None

    # ---- Job runtime ----
    max_workers: int
    poll_interval_seconds: float
    job_max_attempts: int
    job_backoff_base_seconds: float
    job_backoff_cap_seconds: float

    @staticmethod
    def from_env() -> Settings:
        _load_dotenv()

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/daybook"))
        habit_widget_id = _env(_k("HABIT_WIDGET_ID"), "habits").strip() or None
        task_widget_id = _env(_k("TASK_WIDGET_ID"), "tasks").strip() or None

        return Settings(
            app_name=_env(_k("APP_NAME"), "daybook"),
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            data_dir=data_dir,
            jobs_db_path=_env_path(_k("JOBS_DB_PATH"), data_dir / "jobs.sqlite3"),
            records_db_path=_env_path(_k("RECORDS_DB_PATH"), data_dir / "daybook.sqlite3"),
            widget_state_path=_env_path(_k("WIDGET_STATE_PATH"), data_dir / "widget_settings.json"),
            render_dir=_env_path(_k("RENDER_DIR"), data_dir / "widgets"),
            backup_dir=_env_path(_k("BACKUP_DIR"), data_dir / "backups"),
            backup_retention=max(1, _env_int(_k("BACKUP_RETENTION"), 2)),
            backup_interval_hours=max(0.1, _env_float(_k("BACKUP_INTERVAL_HOURS"), 24.0)),
            widget_refresh_mode=_env(_k("WIDGET_REFRESH_MODE"), "every_day"),
            widget_ids=_env_list(_k("WIDGET_IDS"), ["quotes"]),
            habit_widget_id=habit_widget_id,
            task_widget_id=task_widget_id,
            max_workers=max(1, _env_int(_k("MAX_WORKERS"), 4)),
            poll_interval_seconds=max(0.05, _env_float(_k("POLL_INTERVAL_SECONDS"), 1.0)),
            job_max_attempts=max(1, _env_int(_k("JOB_MAX_ATTEMPTS"), 3)),
            job_backoff_base_seconds=max(0.0, _env_float(_k("JOB_BACKOFF_BASE_SECONDS"), 30.0)),
            job_backoff_cap_seconds=max(0.0, _env_float(_k("JOB_BACKOFF_CAP_SECONDS"), 3600.0)),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
