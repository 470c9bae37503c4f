# src/daybook/backup/retention.py

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ..core.ports import Clock
from ..errors import PruneFailure, ResourceMissingFailure, TransientFailure
from ..jobs.job_executor import ActionRegistry, JobContext
from ..jobs.job_models import JobDefinition, JobResult, SubmitResult, WorkPolicy
from ..jobs.job_scheduler import JobScheduler

logger = logging.getLogger(__name__)

BACKUP_JOB_KEY = "backup"
BACKUP_NOW_KEY = "backup-now"
BACKUP_PREFIX = "backup_"
DEFAULT_RETENTION = 2

# backup_YYYYMMDD_HHMMSS_ffffff (UTC): fixed width, so name order == time order.
_NAME_FORMAT = "%Y%m%d_%H%M%S_%f"
_NAME_RE = re.compile(r"^backup_(\d{8}_\d{6}_\d{6})$")

# SQLite WAL-mode sidecars copied alongside the database when present.
_SIDECAR_SUFFIXES = ("-wal", "-shm")


@dataclass(slots=True, frozen=True)
class BackupArtifact:
    path: Path
    created_at: float


@dataclass(slots=True, frozen=True)
class BackupResult:
    ok: bool
    artifact: BackupArtifact | None = None
    reason: str | None = None
    pruned: tuple[Path, ...] = ()
    prune_failures: tuple[PruneFailure, ...] = ()


def artifact_name(ts: float) -> str:
    return BACKUP_PREFIX + datetime.fromtimestamp(ts, tz=timezone.utc).strftime(_NAME_FORMAT)


def parse_artifact(path: Path) -> BackupArtifact | None:
    m = _NAME_RE.match(path.name)
    if not m or not path.is_dir():
        return None
    created = datetime.strptime(m.group(1), _NAME_FORMAT).replace(tzinfo=timezone.utc)
    return BackupArtifact(path=path, created_at=created.timestamp())


class BackupRetentionManager:
    """
    Copies the record database into a dated backup directory and keeps only
    the newest `retention` backups.

    A missing source is fatal. Pruning is best-effort: a backup that cannot be
    deleted is logged and reported, the run still succeeds.
    """

    def __init__(
        self,
        source: str | Path,
        backup_dir: str | Path,
        clock: Clock,
        *,
        retention: int = DEFAULT_RETENTION,
    ) -> None:
        if retention < 1:
            raise ValueError("retention must be >= 1")
        self.source = Path(source)
        self.backup_dir = Path(backup_dir)
        self.retention = int(retention)
        self._clock = clock

    def register(self, actions: ActionRegistry) -> None:
        actions.register(BACKUP_JOB_KEY, self._run_job)
        actions.register(BACKUP_NOW_KEY, self._run_job)

    def schedule(self, scheduler: JobScheduler, *, interval: float) -> SubmitResult:
        return scheduler.submit(
            JobDefinition.periodic(BACKUP_JOB_KEY, interval=interval, policy=WorkPolicy.KEEP_EXISTING)
        )

    def request_backup(self, scheduler: JobScheduler) -> SubmitResult:
        return scheduler.submit(JobDefinition.one_shot(BACKUP_NOW_KEY, policy=WorkPolicy.KEEP_EXISTING))

    # ---- backup ----

    def run_backup(self) -> BackupResult:
        if not self.source.exists():
            logger.error("Backup source not found: %s", self.source)
            return BackupResult(ok=False, reason=f"source not found: {self.source}")

        target = self._new_target()
        # Copied under a name list_backups() ignores, renamed once complete.
        staging = target.with_name(f".{target.name}.tmp")
        try:
            staging.mkdir(parents=True)
            shutil.copy2(self.source, staging / self.source.name)
            for suffix in _SIDECAR_SUFFIXES:
                sidecar = self.source.with_name(self.source.name + suffix)
                if sidecar.exists():
                    shutil.copy2(sidecar, staging / sidecar.name)
            staging.rename(target)
        except FileNotFoundError as e:
            shutil.rmtree(staging, ignore_errors=True)
            # Source vanished between the check and the copy.
            return BackupResult(ok=False, reason=f"source disappeared during copy: {e}")
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise TransientFailure(f"backup copy to {target} failed: {e}") from e

        artifact = parse_artifact(target)
        assert artifact is not None
        logger.info("Backup created at %s", target)

        pruned, failures = self.prune()
        return BackupResult(ok=True, artifact=artifact, pruned=tuple(pruned), prune_failures=tuple(failures))

    def _new_target(self) -> Path:
        ts = self._clock.now()
        target = self.backup_dir / artifact_name(ts)
        # Two runs in the same microsecond: nudge forward so names stay unique and ordered.
        while target.exists():
            ts += 1e-6
            target = self.backup_dir / artifact_name(ts)
        return target

    def list_backups(self) -> list[BackupArtifact]:
        """Backups oldest first."""
        if not self.backup_dir.is_dir():
            return []
        found = [a for a in (parse_artifact(p) for p in self.backup_dir.iterdir()) if a is not None]
        found.sort(key=lambda a: (a.created_at, a.path.name))
        return found

    def prune(self) -> tuple[list[Path], list[PruneFailure]]:
        backups = self.list_backups()
        excess = backups[: max(0, len(backups) - self.retention)]
        deleted: list[Path] = []
        failures: list[PruneFailure] = []
        for artifact in excess:
            try:
                shutil.rmtree(artifact.path)
            except OSError as e:
                failure = PruneFailure(str(artifact.path), str(e))
                failures.append(failure)
                logger.warning("%s", failure)
                continue
            deleted.append(artifact.path)
            logger.info("Deleted old backup %s", artifact.path.name)
        return deleted, failures

    def restore_backup(self, artifact: BackupArtifact) -> None:
        """Copy a backup over the live database (sidecars from the backup replace or remove the live ones)."""
        db_copy = artifact.path / self.source.name
        if not db_copy.exists():
            raise ResourceMissingFailure(f"backup {artifact.path} has no {self.source.name}")

        self.source.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(db_copy, self.source)
        for suffix in _SIDECAR_SUFFIXES:
            live = self.source.with_name(self.source.name + suffix)
            saved = artifact.path / live.name
            if saved.exists():
                shutil.copy2(saved, live)
            elif live.exists():
                live.unlink()
        logger.info("Restored database from %s", artifact.path.name)

    # ---- job action ----

    def _run_job(self, ctx: JobContext) -> JobResult:
        result = self.run_backup()
        if not result.ok:
            raise ResourceMissingFailure(result.reason or "backup source missing")
        return JobResult.success(reason=str(result.artifact.path) if result.artifact else None)
