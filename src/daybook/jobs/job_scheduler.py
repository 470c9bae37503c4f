# src/daybook/jobs/job_scheduler.py

from __future__ import annotations

"""
Job scheduler.

Owns the job table and the fire queue:
- submit() applies the unique-work policy for a key,
- cancel() stops a pending job or flags a running one,
- claim_due() moves due records to RUNNING and hands them out, at most one
  in flight per key,
- run_due() is the synchronous dispatch path (tests / one-off runs); the
  asyncio Dispatcher uses claim_due() + worker threads.

State transitions after a run are applied by JobExecutor.
"""

import logging
import threading
from collections.abc import Iterable
from typing import TYPE_CHECKING

from ..core.ports import Clock
from .job_models import JobDefinition, JobRecord, JobState, SubmitResult, TerminalOutcome, WorkPolicy
from .job_store import JobStore

if TYPE_CHECKING:
    from .job_executor import JobExecutor

logger = logging.getLogger(__name__)


class JobScheduler:
    def __init__(self, store: JobStore, clock: Clock, *, batch_limit: int = 32) -> None:
        self.store = store
        self.clock = clock
        self._batch_limit = max(1, int(batch_limit))
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()
        self.late_fires = 0

    # ---- submission ----

    def submit(self, definition: JobDefinition, policy: WorkPolicy | None = None) -> SubmitResult:
        """
        Register `definition` under its key.

        policy defaults to definition.policy. Terminal records (succeeded,
        failed, cancelled) count as absent.
        """
        policy = policy or definition.policy
        key = definition.key

        with self.store.locked():
            now = self.clock.now()
            existing = self.store.get(key)

            if existing is None or existing.state.is_terminal:
                generation = existing.generation + 1 if existing is not None else 1
                self.store.put(self._new_record(definition, now, generation=generation))
                logger.info(
                    "Job submitted key=%s kind=%s policy=%s",
                    key,
                    definition.kind.value,
                    policy.value,
                )
                return SubmitResult.ACCEPTED

            if policy == WorkPolicy.KEEP_EXISTING:
                logger.debug("Job kept key=%s state=%s", key, existing.state.value)
                return SubmitResult.IGNORED

            if policy == WorkPolicy.REPLACE:
                if existing.state == JobState.RUNNING:
                    logger.info("Job replaced while running key=%s (old run superseded)", key)
                self.store.put(self._new_record(definition, now, generation=existing.generation + 1))
                logger.info("Job replaced key=%s", key)
                return SubmitResult.ACCEPTED

            # UPDATE_SCHEDULE: keep the instance (and its attempt count), change the next cycle.
            # A running record picks the new time up once its current run finishes,
            # one-shots included: they are re-armed instead of completing.
            existing.definition = definition
            fire_at = definition.first_fire_at(now)
            if existing.state == JobState.PENDING:
                existing.next_fire_at = fire_at
                existing.cycle_at = None
            else:
                existing.cycle_at = fire_at
            existing.updated_at = now
            self.store.put(existing)
            logger.info("Job schedule updated key=%s state=%s", key, existing.state.value)
            return SubmitResult.ACCEPTED

    @staticmethod
    def _new_record(definition: JobDefinition, now: float, *, generation: int) -> JobRecord:
        return JobRecord(
            key=definition.key,
            definition=definition,
            state=JobState.PENDING,
            next_fire_at=definition.first_fire_at(now),
            attempt=0,
            generation=generation,
            created_at=now,
            updated_at=now,
        )

    def cancel(self, key: str) -> bool:
        """
        Cancel the live job under key.

        Pending -> cancelled. Running -> cancel_requested; the executor
        finishes it as cancelled and does not fire it again.
        Returns False when there is nothing live to cancel.
        """
        with self.store.locked():
            rec = self.store.get(key)
            if rec is None or rec.state.is_terminal:
                return False

            rec.updated_at = self.clock.now()
            if rec.state == JobState.PENDING:
                rec.state = JobState.CANCELLED
                logger.info("Job cancelled key=%s", key)
            else:
                rec.cancel_requested = True
                logger.info("Job cancel requested while running key=%s", key)
            self.store.put(rec)
            return True

    # ---- inspection ----

    def get(self, key: str) -> JobRecord | None:
        return self.store.get(key)

    def live_records(self) -> list[JobRecord]:
        return self.store.list_records(states=(JobState.PENDING, JobState.RUNNING))

    def in_flight(self) -> frozenset[str]:
        with self._in_flight_lock:
            return frozenset(self._in_flight)

    def seconds_until_next_fire(self) -> float | None:
        nxt = self.store.next_fire_at(exclude_keys=self.in_flight())
        if nxt is None:
            return None
        return max(0.0, nxt - self.clock.now())

    # ---- dispatch ----

    def recover(self) -> int:
        """
        Re-arm records a previous process left RUNNING.

        Call once at startup, before dispatching. Returns the number of records touched.
        """
        touched = 0
        with self.store.locked():
            now = self.clock.now()
            for rec in self.store.list_records(states=(JobState.RUNNING,)):
                if rec.key in self.in_flight():
                    continue
                if rec.cancel_requested:
                    rec.state = JobState.CANCELLED
                elif not rec.is_periodic and rec.cycle_at is not None:
                    # Rescheduled while it was running.
                    rec.state = JobState.PENDING
                    rec.next_fire_at = rec.cycle_at
                    rec.cycle_at = None
                    rec.attempt = 0
                else:
                    rec.state = JobState.PENDING
                    rec.next_fire_at = now
                rec.updated_at = now
                self.store.put(rec)
                touched += 1
                logger.warning("Recovered interrupted job key=%s -> %s", rec.key, rec.state.value)
        return touched

    def claim_due(self, *, limit: int | None = None) -> list[JobRecord]:
        """
        Move due pending records to RUNNING and return them.

        A key that is still in flight is skipped, so runs of the same key never
        overlap. Periodic jobs get their next regular cycle computed from the
        scheduled time (not the completion time). When whole intervals were
        missed, this fire stands in for all of them and the late cycle is logged.
        """
        claimed: list[JobRecord] = []
        limit = self._batch_limit if limit is None else max(1, int(limit))

        with self.store.locked():
            now = self.clock.now()
            for rec in self.store.list_due(now_ts=now, exclude_keys=self.in_flight(), limit=limit):
                regular_cycle = rec.attempt == 0
                rec.attempt += 1
                rec.state = JobState.RUNNING
                rec.last_run_at = now
                rec.updated_at = now

                if rec.is_periodic and regular_cycle:
                    rec.cycle_at = self._next_cycle(rec, now)

                self.store.put(rec)
                with self._in_flight_lock:
                    self._in_flight.add(rec.key)
                claimed.append(rec)
                logger.debug("Job claimed key=%s attempt=%s", rec.key, rec.attempt)

        return claimed

    def _next_cycle(self, rec: JobRecord, now: float) -> float:
        interval = rec.definition.interval
        assert interval is not None
        nxt = rec.next_fire_at + interval
        if nxt > now:
            return nxt
        # Whole cycles were missed (process asleep or stopped): this fire is the
        # catch-up, the missed ones are skipped and the original phase is kept.
        missed = int((now - rec.next_fire_at) // interval)
        self.signal_late(rec.key, scheduled=rec.next_fire_at, interval=interval)
        return rec.next_fire_at + (missed + 1) * interval

    def signal_late(self, key: str, *, scheduled: float, interval: float) -> None:
        """Record a periodic cycle that ran more than one interval behind its schedule."""
        self.late_fires += 1
        logger.warning(
            "Periodic job %s is more than one interval late (scheduled=%.3f interval=%.0fs)",
            key,
            scheduled,
            interval,
        )

    def release(self, key: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(key)

    def run_due(self, executor: JobExecutor) -> list[TerminalOutcome]:
        """Claim everything due now and run it inline, earliest first."""
        outcomes: list[TerminalOutcome] = []
        for rec in self.claim_due():
            outcomes.append(executor.run(rec))
        return outcomes

    def keys(self, states: Iterable[JobState] | None = None) -> list[str]:
        return [r.key for r in self.store.list_records(states=states)]
