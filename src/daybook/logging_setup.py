# src/daybook/logging_setup.py

"""
Process-wide logging: a quiet stderr console plus a full log file.

The console carries daybook's own records, except loggers listed in
CONSOLE_FLOORS, which only pass at their floor level or above. Anything
from outside the package (libraries, captured `warnings`) reaches the
console at ERROR only. The file under the data directory keeps everything
down to `file_level`, which is where failed job runs are diagnosed.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "daybook.log"

APP_LOGGER_PREFIX = "daybook."

# Per-row persistence traces would drown the REPL.
CONSOLE_FLOORS: dict[str, int] = {
    "daybook.jobs.job_store": logging.WARNING,
}
FOREIGN_CONSOLE_FLOOR = logging.ERROR


class _ConsoleNoiseFilter(logging.Filter):
    def __init__(self, floors: dict[str, int] | None = None) -> None:
        super().__init__()
        self._floors = dict(CONSOLE_FLOORS if floors is None else floors)

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if not name.startswith(APP_LOGGER_PREFIX):
            # Includes "py.warnings" from captureWarnings().
            return record.levelno >= FOREIGN_CONSOLE_FLOOR
        return record.levelno >= self._floors.get(name, logging.NOTSET)


def setup_logging(
    *,
    log_dir: str | Path = ".local/daybook",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Install the console and file handlers on the root logger and return the log file path.

    Handlers already on the root logger are dropped, so calling this again
    (tests, a second main()) does not double every line.
    """
    log_file = Path(log_dir) / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.addFilter(_ConsoleNoiseFilter())

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_level)

    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
    root.setLevel(min(console_level, file_level))
    for handler in (console, file_handler):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    logging.captureWarnings(True)
    return log_file
