"""Storage for jobs and import runs.

Two stores, each one JSON file in the data directory:

1. **Jobs** (`data/jobs.json`)
   - Canonical job records, unique on both `external_id` and `url`
   - Written on every insert/update

2. **Import runs** (`data/import_runs.json`)
   - One record per ingestion sweep, listed newest first

All writes use the atomic write pattern:
  1. Write to .tmp file
  2. fsync
  3. Rename to target (atomic on POSIX)

Before each write, a .bak backup is created. If the primary file is
corrupted, it's restored from .bak automatically.

Passing ``data_dir=None`` keeps a store purely in memory.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from jobimport.errors import DuplicateKeyError, RunNotFoundError
from jobimport.models import MUTABLE_FIELDS, ImportRun, Job, RunStatus, utcnow

logger = logging.getLogger(__name__)

JOBS_FILE = "jobs.json"
RUNS_FILE = "import_runs.json"


# ── Jobs ───────────────────────────────────────────────────────────────────


class JobStore:
    """Job records with unique indexes on ``external_id`` and ``url``.

    Thread-safe. Records handed out are copies; mutate through ``update``.
    """

    def __init__(self, data_dir: str | Path | None = None):
        self._lock = threading.RLock()
        self._jobs: dict[str, Job] = {}
        self._by_external_id: dict[str, str] = {}
        self._by_url: dict[str, str] = {}
        self._path = Path(data_dir) / JOBS_FILE if data_dir else None

        if self._path:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            for record in _safe_read_json(self._path, default=[]):
                job = Job.from_dict(record)
                self._index(job)
            logger.info("Loaded %d jobs from %s", len(self._jobs), self._path)

    def find_by_identity(self, external_id: str, url: str) -> Optional[Job]:
        """Return the record matching ``external_id`` OR ``url``, if any."""
        with self._lock:
            job_id = self._by_external_id.get(external_id) or self._by_url.get(url)
            return replace(self._jobs[job_id]) if job_id else None

    def owners(self, external_id: str, url: str) -> tuple[Optional[str], Optional[str]]:
        """Ids of the records holding ``external_id`` and ``url``, if any."""
        with self._lock:
            return self._by_external_id.get(external_id), self._by_url.get(url)

    def insert(self, job: Job) -> Job:
        """Insert a new record. Raises DuplicateKeyError on either unique key."""
        with self._lock:
            self._check_unique(job)
            now = utcnow()
            record = replace(job, id=str(uuid.uuid4()), created_at=now, updated_at=now)
            self._index(record)
            self._flush()
            return replace(record)

    def update(self, job_id: str, job: Job) -> Job:
        """Overwrite the mutable fields of ``job_id`` with ``job``'s values."""
        with self._lock:
            if job_id not in self._jobs:
                raise KeyError(job_id)
            self._check_unique(job, exclude_id=job_id)

            current = self._jobs[job_id]
            values = {name: getattr(job, name) for name in MUTABLE_FIELDS}
            record = replace(current, **values, updated_at=utcnow())
            self._unindex(current)
            self._index(record)
            self._flush()
            return replace(record)

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def all(self) -> list[Job]:
        with self._lock:
            return [replace(job) for job in self._jobs.values()]

    def count(self) -> int:
        with self._lock:
            return len(self._jobs)

    def stats(self) -> dict[str, int]:
        """Totals for reporting: jobs, jobs created in the last 24h, companies, categories."""
        cutoff = utcnow() - timedelta(hours=24)
        with self._lock:
            jobs = list(self._jobs.values())
        return {
            "total_jobs": len(jobs),
            "recent_jobs": sum(1 for j in jobs if j.created_at and j.created_at >= cutoff),
            "companies_count": len({j.company for j in jobs}),
            "categories_count": len({j.category for j in jobs}),
        }

    def cleanup_older_than(self, days: int = 90) -> int:
        """Delete jobs not updated within ``days``. A maintenance task, not ingestion."""
        cutoff = utcnow() - timedelta(days=days)
        with self._lock:
            stale = [j for j in self._jobs.values() if j.updated_at < cutoff]
            for job in stale:
                self._unindex(job)
            if stale:
                self._flush()
        logger.info("Cleaned up %d jobs older than %d days", len(stale), days)
        return len(stale)

    # -- internals --------------------------------------------------------

    def _check_unique(self, job: Job, exclude_id: str | None = None) -> None:
        owner = self._by_external_id.get(job.external_id)
        if owner and owner != exclude_id:
            raise DuplicateKeyError("external_id", job.external_id)
        owner = self._by_url.get(job.url)
        if owner and owner != exclude_id:
            raise DuplicateKeyError("url", job.url)

    def _index(self, job: Job) -> None:
        self._jobs[job.id] = job
        self._by_external_id[job.external_id] = job.id
        self._by_url[job.url] = job.id

    def _unindex(self, job: Job) -> None:
        self._jobs.pop(job.id, None)
        self._by_external_id.pop(job.external_id, None)
        self._by_url.pop(job.url, None)

    def _flush(self) -> None:
        if self._path:
            _backup_and_write(self._path, [job.to_dict() for job in self._jobs.values()])


# ── Import runs ────────────────────────────────────────────────────────────


class RunStore:
    """Import run records, listed newest first by ``started_at``."""

    def __init__(self, data_dir: str | Path | None = None):
        self._lock = threading.RLock()
        self._runs: dict[str, ImportRun] = {}
        self._path = Path(data_dir) / RUNS_FILE if data_dir else None

        if self._path:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            for record in _safe_read_json(self._path, default=[]):
                run = ImportRun.from_dict(record)
                self._runs[run.id] = run

    def create(self, source_label: str) -> ImportRun:
        with self._lock:
            run = ImportRun(id=str(uuid.uuid4()), source_label=source_label)
            self._runs[run.id] = run
            self._flush()
            return _copy_run(run)

    def update(self, run_id: str, **changes: Any) -> ImportRun:
        with self._lock:
            if run_id not in self._runs:
                raise RunNotFoundError(run_id)
            run = replace(self._runs[run_id], **changes)
            self._runs[run_id] = run
            self._flush()
            return _copy_run(run)

    def get(self, run_id: str) -> Optional[ImportRun]:
        with self._lock:
            run = self._runs.get(run_id)
            return _copy_run(run) if run else None

    def list(self, skip: int = 0, limit: int = 20) -> list[ImportRun]:
        with self._lock:
            runs = sorted(self._runs.values(), key=lambda r: r.started_at, reverse=True)
            return [_copy_run(r) for r in runs[skip : skip + limit]]

    def count(self, status: RunStatus | None = None, since: datetime | None = None) -> int:
        with self._lock:
            return sum(
                1
                for r in self._runs.values()
                if (status is None or r.status is status)
                and (since is None or r.started_at >= since)
            )

    def latest(self) -> Optional[ImportRun]:
        runs = self.list(limit=1)
        return runs[0] if runs else None

    def delete_older_than(self, days: int = 30) -> int:
        cutoff = utcnow() - timedelta(days=days)
        with self._lock:
            stale = [run_id for run_id, r in self._runs.items() if r.started_at < cutoff]
            for run_id in stale:
                del self._runs[run_id]
            if stale:
                self._flush()
        return len(stale)

    def _flush(self) -> None:
        if self._path:
            _backup_and_write(self._path, [run.to_dict() for run in self._runs.values()])


def _copy_run(run: ImportRun) -> ImportRun:
    return replace(run, failed_reasons=list(run.failed_reasons))


# ── JSON files ─────────────────────────────────────────────────────────────


def load_json(path: Path, default: Any = None) -> Any:
    """Read a JSON file written by ``save_json``, falling back to its backup."""
    return _safe_read_json(path, default=default)


def save_json(path: Path, data: Any) -> None:
    """Atomically write ``data`` to ``path``, keeping a .bak of the old file."""
    _backup_and_write(path, data)


# ── Internal Helpers ───────────────────────────────────────────────────────


def _safe_read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON file, restoring from .bak if corrupted.

    If the primary file can't be parsed, tries .bak. If both fail,
    returns the default value and logs an error.
    """
    if not path.exists():
        return default

    try:
        with open(path, "r") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s: %s, trying backup", path, exc)

    bak_path = path.with_suffix(path.suffix + ".bak")
    if bak_path.exists():
        try:
            with open(bak_path, "r") as f:
                data = json.load(f)
            logger.info("Restored %s from backup", path)
            _atomic_write_json(path, data)
            return data
        except (json.JSONDecodeError, OSError) as exc:
            logger.error("Backup %s also corrupted: %s", bak_path, exc)

    logger.error("Could not read %s or its backup, using default", path)
    return default


def _backup_and_write(path: Path, data: Any) -> None:
    """Create a .bak backup of the current file, then atomically write new data."""
    if path.exists():
        bak_path = path.with_suffix(path.suffix + ".bak")
        try:
            shutil.copy2(path, bak_path)
        except OSError as exc:
            logger.warning("Failed to create backup of %s: %s", path, exc)

    _atomic_write_json(path, data)


def _atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON data atomically using temp file + rename."""
    tmp_path = path.with_suffix(path.suffix + ".tmp")

    try:
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())

        tmp_path.replace(path)
    except OSError as exc:
        logger.error("Failed to write %s: %s", path, exc)
        if tmp_path.exists():
            tmp_path.unlink()
        raise
