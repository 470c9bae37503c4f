# src/daybook/jobs/job_executor.py

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from ..core.events import CancelJob, Notify, RenderWidget, ScheduleJob
from ..core.ports import Notifier, RenderTarget
from ..errors import (
    MalformedPayloadError,
    ResourceMissingFailure,
    StaleEntityFailure,
    TransientFailure,
    UnknownActionError,
)
from .job_models import JobKind, JobRecord, JobResult, JobState, OutcomeKind, TerminalOutcome
from .job_scheduler import JobScheduler

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 30.0
DEFAULT_BACKOFF_CAP_SECONDS = 3600.0


def backoff_delay(
    attempt: int,
    *,
    base: float = DEFAULT_BACKOFF_BASE_SECONDS,
    cap: float = DEFAULT_BACKOFF_CAP_SECONDS,
) -> float:
    """Delay before retrying after failed attempt number `attempt` (1-based): base * 2^(attempt-1), capped."""
    if attempt < 1:
        return 0.0
    # Past ~40 doublings the cap always wins; avoid huge ints.
    if attempt > 40:
        return float(cap)
    return float(min(base * (2 ** (attempt - 1)), cap))


class JobContext:
    """What a job action sees: its key, a read-only payload, and a cooperative cancel check."""

    def __init__(self, record: JobRecord, scheduler: JobScheduler) -> None:
        self.key = record.key
        self.attempt = record.attempt
        self.payload: Mapping[str, Any] = MappingProxyType(copy.deepcopy(record.definition.payload))
        self._generation = record.generation
        self._scheduler = scheduler

    def now(self) -> float:
        return self._scheduler.clock.now()

    def is_cancelled(self) -> bool:
        """True when the job was cancelled or superseded by a REPLACE since it started."""
        rec = self._scheduler.get(self.key)
        return rec is None or rec.generation != self._generation or rec.cancel_requested

    def require(self, name: str) -> Any:
        try:
            return self.payload[name]
        except KeyError:
            raise MalformedPayloadError(f"job {self.key!r} payload is missing {name!r}") from None


JobAction = Callable[[JobContext], JobResult | None]


class ActionRegistry:
    """
    Maps job keys to actions.

    Resolution order: explicit payload["action"], exact key, then the
    longest registered prefix (e.g. "reminder:" for "reminder:<task id>").
    """

    def __init__(self) -> None:
        self._exact: dict[str, JobAction] = {}
        self._prefixes: dict[str, JobAction] = {}

    def register(self, key: str, action: JobAction) -> None:
        self._exact[key] = action

    def register_prefix(self, prefix: str, action: JobAction) -> None:
        self._prefixes[prefix] = action

    def resolve(self, key: str, payload: Mapping[str, Any]) -> JobAction:
        explicit = payload.get("action")
        if isinstance(explicit, str) and explicit in self._exact:
            return self._exact[explicit]
        if key in self._exact:
            return self._exact[key]
        for prefix in sorted(self._prefixes, key=len, reverse=True):
            if key.startswith(prefix):
                return self._prefixes[prefix]
        raise UnknownActionError(key)


@dataclass(slots=True)
class EffectApplier:
    """Applies follow-up effects at the boundary (notification sink, widget surface, scheduler)."""

    notifier: Notifier | None = None
    render_target: RenderTarget | None = None
    scheduler: JobScheduler | None = None

    def apply(self, effects: tuple[Any, ...]) -> None:
        for eff in effects:
            if isinstance(eff, Notify):
                if self.notifier is None:
                    logger.warning("No notifier configured; dropping notification %s", eff.notification_id)
                    continue
                self.notifier.notify(eff.notification_id, eff.title, eff.body, eff.on_tap_action)
            elif isinstance(eff, RenderWidget):
                if self.render_target is None:
                    logger.warning("No render target configured; dropping widget update %s", eff.widget_id)
                    continue
                self.render_target.push_widget_content(eff.widget_id, dict(eff.content))
            elif isinstance(eff, ScheduleJob):
                if self.scheduler is not None:
                    self.scheduler.submit(eff.definition)
            elif isinstance(eff, CancelJob):
                if self.scheduler is not None:
                    self.scheduler.cancel(eff.key)
            else:
                raise MalformedPayloadError(f"unknown effect type: {type(eff).__name__}")


class JobExecutor:
    """
    Runs one claimed job attempt and records the result.

    Outcomes:
    - success            -> one-shot: succeeded; periodic: re-armed for its next cycle
    - retryable failure  -> pending at now + backoff(attempt) while attempt < max_attempts, else failed
    - fatal failure      -> failed, no retry
    Cancellation is checked before the action starts and again when it finishes.
    Nothing raised by an action escapes run().
    """

    def __init__(
        self,
        scheduler: JobScheduler,
        actions: ActionRegistry,
        *,
        effects: EffectApplier | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE_SECONDS,
        backoff_cap: float = DEFAULT_BACKOFF_CAP_SECONDS,
    ) -> None:
        self._scheduler = scheduler
        self._store = scheduler.store
        self._clock = scheduler.clock
        self.actions = actions
        self.effects = effects or EffectApplier(scheduler=scheduler)
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_base = float(backoff_base)
        self.backoff_cap = float(backoff_cap)

    def run(self, record: JobRecord) -> TerminalOutcome:
        try:
            return self._run(record)
        finally:
            self._scheduler.release(record.key)

    def _run(self, record: JobRecord) -> TerminalOutcome:
        key = record.key

        with self._store.locked():
            current = self._store.get(key)
            if current is None or current.generation != record.generation:
                logger.info("Job %s superseded before start; skipping", key)
                return self._superseded(record)
            if current.cancel_requested:
                return self._finish_cancelled(current, before_start=True)

        ctx = JobContext(record, self._scheduler)
        result = self._invoke(ctx, record)

        if result.kind == OutcomeKind.SUCCESS and result.effects and not ctx.is_cancelled():
            try:
                self.effects.apply(result.effects)
            except TransientFailure as e:
                result = JobResult.retry(str(e) or "effect delivery failed")
            except MalformedPayloadError as e:
                result = JobResult.fatal(str(e))
            except Exception as e:
                logger.exception("Applying effects failed for job %s", key)
                result = JobResult.retry(f"{type(e).__name__}: {e}")

        with self._store.locked():
            current = self._store.get(key)
            if current is None or current.generation != record.generation:
                logger.info("Job %s was replaced while running; dropping its outcome (%s)", key, result.kind.value)
                return self._superseded(record, outcome=result.kind)
            if current.cancel_requested or result.kind == OutcomeKind.CANCELLED:
                return self._finish_cancelled(current, before_start=False)
            return self._apply(current, result)

    def _invoke(self, ctx: JobContext, record: JobRecord) -> JobResult:
        key = record.key
        try:
            action = self.actions.resolve(key, ctx.payload)
            result = action(ctx)
        except TransientFailure as e:
            return JobResult.retry(str(e) or type(e).__name__)
        except StaleEntityFailure as e:
            logger.info("Job %s: entity changed since scheduling (%s); nothing to do", key, e)
            return JobResult.success(reason=str(e))
        except (ResourceMissingFailure, MalformedPayloadError, UnknownActionError) as e:
            return JobResult.fatal(str(e))
        except Exception as e:
            logger.exception("Job %s action crashed (attempt=%s)", key, record.attempt)
            return JobResult.retry(f"{type(e).__name__}: {e}")

        if result is None:
            return JobResult.success()
        if not isinstance(result, JobResult):
            return JobResult.fatal(f"action returned {type(result).__name__}, expected JobResult")
        return result

    def _apply(self, rec: JobRecord, result: JobResult) -> TerminalOutcome:
        now = self._clock.now()
        rec.updated_at = now
        if not rec.is_periodic and rec.cycle_at is not None:
            return self._rearm(rec, result)

        if result.kind == OutcomeKind.SUCCESS:
            rec.last_error = None
            if rec.definition.kind == JobKind.PERIODIC:
                interval = rec.definition.interval or 0.0
                rec.state = JobState.PENDING
                rec.next_fire_at = rec.cycle_at if rec.cycle_at is not None else now + interval
                if rec.next_fire_at <= now:
                    # The run itself outlasted its interval: fire again right away.
                    self._scheduler.signal_late(rec.key, scheduled=rec.next_fire_at, interval=interval)
                    rec.next_fire_at = now
                rec.attempt = 0
                logger.info("Job %s done; next cycle at %.3f", rec.key, rec.next_fire_at)
            else:
                rec.state = JobState.SUCCEEDED
                logger.info("Job %s succeeded (attempt=%s)", rec.key, rec.attempt)

        elif result.kind == OutcomeKind.RETRYABLE_FAILURE and rec.attempt < self.max_attempts:
            delay = backoff_delay(rec.attempt, base=self.backoff_base, cap=self.backoff_cap)
            rec.state = JobState.PENDING
            rec.last_error = result.reason
            rec.next_fire_at = now + delay
            logger.warning(
                "Job %s failed (attempt=%s/%s): %s; retry in %.0fs",
                rec.key,
                rec.attempt,
                self.max_attempts,
                result.reason,
                delay,
            )

        else:
            rec.state = JobState.FAILED
            rec.last_error = result.reason
            logger.error(
                "Job %s failed permanently (attempt=%s, %s): %s",
                rec.key,
                rec.attempt,
                result.kind.value,
                result.reason,
            )

        self._store.put(rec)
        return TerminalOutcome(
            key=rec.key,
            outcome=result.kind,
            state=rec.state,
            attempt=rec.attempt,
            next_fire_at=rec.next_fire_at if rec.state == JobState.PENDING else None,
            reason=result.reason,
        )

    def _rearm(self, rec: JobRecord, result: JobResult) -> TerminalOutcome:
        """A one-shot rescheduled while it ran waits for its new time, whatever this run returned."""
        fire_at = rec.cycle_at if rec.cycle_at is not None else rec.next_fire_at
        rec.state = JobState.PENDING
        rec.next_fire_at = fire_at
        rec.cycle_at = None
        rec.attempt = 0
        rec.last_error = None if result.kind == OutcomeKind.SUCCESS else result.reason
        self._store.put(rec)
        logger.info("Job %s was rescheduled while running (%s); next run at %.3f", rec.key, result.kind.value, fire_at)
        return TerminalOutcome(
            key=rec.key,
            outcome=result.kind,
            state=JobState.PENDING,
            attempt=0,
            next_fire_at=fire_at,
            reason=result.reason,
        )

    def _finish_cancelled(self, rec: JobRecord, *, before_start: bool) -> TerminalOutcome:
        rec.state = JobState.CANCELLED
        rec.cancel_requested = False
        rec.updated_at = self._clock.now()
        self._store.put(rec)
        logger.info("Job %s cancelled (%s)", rec.key, "before start" if before_start else "after run")
        return TerminalOutcome(
            key=rec.key,
            outcome=OutcomeKind.CANCELLED,
            state=JobState.CANCELLED,
            attempt=rec.attempt,
        )

    @staticmethod
    def _superseded(record: JobRecord, outcome: OutcomeKind = OutcomeKind.CANCELLED) -> TerminalOutcome:
        return TerminalOutcome(
            key=record.key,
            outcome=outcome,
            state=JobState.CANCELLED,
            attempt=record.attempt,
            reason="superseded",
        )
