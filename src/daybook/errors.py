# src/daybook/errors.py

"""
Failure taxonomy for background jobs.

Domain actions raise these (or return a typed JobResult). The executor is the
only place that turns them into retry / terminal decisions.
"""

from __future__ import annotations


class DaybookError(Exception):
    """Base class for daybook errors."""


class TransientFailure(DaybookError):
    """I/O hiccup or lock contention. Retried with backoff."""


class StaleEntityFailure(DaybookError):
    """The entity behind a scheduled job changed or vanished. Treated as a no-op success."""


class ResourceMissingFailure(DaybookError):
    """A required resource (e.g. backup source file) is absent. Fatal, not retried."""


class PruneFailure(DaybookError):
    """Best-effort deletion of an old artifact failed. Logged only."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"failed to prune {path}: {reason}")


class MalformedPayloadError(DaybookError):
    """Job payload is missing fields or has the wrong shape. Fatal."""


class UnknownActionError(DaybookError):
    """No action is registered for a job key."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"no action registered for job key: {key}")
