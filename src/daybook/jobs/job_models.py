# src/daybook/jobs/job_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class JobKind(StrEnum):
    ONE_SHOT = "one_shot"
    PERIODIC = "periodic"


class WorkPolicy(StrEnum):
    """How a new submission treats a live job already registered under the same key."""

    REPLACE = "replace"
    KEEP_EXISTING = "keep_existing"
    UPDATE_SCHEDULE = "update_schedule"


class JobState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_db(cls, raw: str | None) -> JobState:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.FAILED

    @property
    def is_live(self) -> bool:
        return self in (JobState.PENDING, JobState.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return not self.is_live


class SubmitResult(StrEnum):
    ACCEPTED = "accepted"
    IGNORED = "ignored"


class OutcomeKind(StrEnum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class JobDefinition:
    """
    What to run under a job key and when.

    - ONE_SHOT: fires at not_before (or immediately when it is None / elapsed).
    - PERIODIC: fires every `interval` seconds; the first fire is now + interval,
      or now when fire_immediately is set.
    """

    key: str
    kind: JobKind
    payload: dict[str, Any] = field(default_factory=dict)
    policy: WorkPolicy = WorkPolicy.REPLACE
    not_before: float | None = None
    interval: float | None = None
    fire_immediately: bool = False

    def __post_init__(self) -> None:
        if not self.key or not self.key.strip():
            raise ValueError("job key is required")
        if self.kind == JobKind.PERIODIC:
            if self.interval is None or self.interval <= 0:
                raise ValueError(f"periodic job {self.key!r} needs interval > 0")
        elif self.interval is not None:
            raise ValueError(f"one-shot job {self.key!r} must not set interval")

    @classmethod
    def one_shot(
        cls,
        key: str,
        *,
        not_before: float | None = None,
        payload: dict[str, Any] | None = None,
        policy: WorkPolicy = WorkPolicy.REPLACE,
    ) -> JobDefinition:
        return cls(
            key=key,
            kind=JobKind.ONE_SHOT,
            payload=dict(payload or {}),
            policy=policy,
            not_before=not_before,
        )

    @classmethod
    def periodic(
        cls,
        key: str,
        *,
        interval: float,
        payload: dict[str, Any] | None = None,
        policy: WorkPolicy = WorkPolicy.KEEP_EXISTING,
        fire_immediately: bool = False,
    ) -> JobDefinition:
        return cls(
            key=key,
            kind=JobKind.PERIODIC,
            payload=dict(payload or {}),
            policy=policy,
            interval=float(interval),
            fire_immediately=fire_immediately,
        )

    def first_fire_at(self, now: float) -> float:
        if self.kind == JobKind.PERIODIC:
            assert self.interval is not None
            return now if self.fire_immediately else now + self.interval
        if self.not_before is None or self.not_before <= now:
            return now
        return float(self.not_before)


@dataclass(slots=True)
class JobRecord:
    """
    Stored state of the job lineage under one key.

    `cycle_at` is the regular (drift-free) time of a periodic job's next cycle,
    computed when a cycle is dispatched. Retries fire at `next_fire_at` without
    moving it. On a running one-shot it holds the time set by UPDATE_SCHEDULE;
    the record goes back to PENDING at that time when the run ends.
    `generation` grows on every REPLACE so a run started for an older
    definition cannot overwrite the newer record.
    """

    key: str
    definition: JobDefinition
    state: JobState
    next_fire_at: float
    attempt: int = 0
    last_error: str | None = None
    cycle_at: float | None = None
    generation: int = 1
    cancel_requested: bool = False
    created_at: float = 0.0
    updated_at: float = 0.0
    last_run_at: float | None = None

    @property
    def is_periodic(self) -> bool:
        return self.definition.kind == JobKind.PERIODIC


@dataclass(slots=True, frozen=True)
class JobResult:
    """Typed outcome of one domain action run, plus follow-up effects to apply."""

    kind: OutcomeKind
    reason: str | None = None
    effects: tuple[Any, ...] = ()

    @classmethod
    def success(cls, *effects: Any, reason: str | None = None) -> JobResult:
        return cls(kind=OutcomeKind.SUCCESS, reason=reason, effects=tuple(effects))

    @classmethod
    def retry(cls, reason: str) -> JobResult:
        return cls(kind=OutcomeKind.RETRYABLE_FAILURE, reason=reason)

    @classmethod
    def fatal(cls, reason: str) -> JobResult:
        return cls(kind=OutcomeKind.FATAL_FAILURE, reason=reason)


@dataclass(slots=True, frozen=True)
class TerminalOutcome:
    """What JobExecutor.run reports: the outcome of the attempt and the resulting record state."""

    key: str
    outcome: OutcomeKind
    state: JobState
    attempt: int
    next_fire_at: float | None = None
    reason: str | None = None
