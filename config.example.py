# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file,
which is gitignored). Nothing here is imported by the application.

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "DAYBOOK_APP_NAME": "App display name (default: daybook).",
    "DAYBOOK_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    "DAYBOOK_CONSOLE_ENABLED": "Run the interactive console (true/false, default: true).",
    # Paths (gitignored)
    "DAYBOOK_DATA_DIR": "Local data directory (default: .local/daybook).",
    "DAYBOOK_JOBS_DB_PATH": "Job store SQLite path (default: <data_dir>/jobs.sqlite3).",
    "DAYBOOK_RECORDS_DB_PATH": "Record store SQLite path, also the backup source (default: <data_dir>/daybook.sqlite3).",
    "DAYBOOK_WIDGET_STATE_PATH": "Widget settings JSON (default: <data_dir>/widget_settings.json).",
    "DAYBOOK_RENDER_DIR": "Directory receiving one <widget_id>.json per widget (default: <data_dir>/widgets).",
    "DAYBOOK_BACKUP_DIR": "Directory holding backup_* sessions (default: <data_dir>/backups).",
    # Backups
    "DAYBOOK_BACKUP_RETENTION": "Number of newest backups kept (default: 2, minimum 1).",
    "DAYBOOK_BACKUP_INTERVAL_HOURS": "Hours between scheduled backups (default: 24).",
    # Widgets
    "DAYBOOK_WIDGET_REFRESH_MODE": "every_day | every_hour | on_external_event (default: every_day).",
    "DAYBOOK_WIDGET_IDS": "Comma/space separated quote widget ids (default: quotes).",
    "DAYBOOK_HABIT_WIDGET_ID": "Habit widget id; empty disables it (default: habits).",
    "DAYBOOK_TASK_WIDGET_ID": "Upcoming-tasks widget id; empty disables it (default: tasks).",
    # Job runtime
    "DAYBOOK_MAX_WORKERS": "Concurrent job runs (default: 4).",
    "DAYBOOK_POLL_INTERVAL_SECONDS": "Upper bound on dispatcher sleep (default: 1.0).",
    "DAYBOOK_JOB_MAX_ATTEMPTS": "Attempts before a failing job is marked failed (default: 3).",
    "DAYBOOK_JOB_BACKOFF_BASE_SECONDS": "Retry backoff base, doubled per attempt (default: 30).",
    "DAYBOOK_JOB_BACKOFF_CAP_SECONDS": "Retry backoff ceiling (default: 3600).",
}
