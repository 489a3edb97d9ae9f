"""Import run accounting.

A run moves in-progress → completed/failed. The fetch phase is recorded
before anything is queued, so a crash between fetching and queueing leaves
a run showing ``total_fetched`` with no queued progress. After that, the
queue reports each item's final outcome through ``record_outcome`` and the
run completes once every queued item has settled.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import timedelta
from typing import Any

from jobimport.errors import RunNotFoundError
from jobimport.models import Action, ImportRun, Outcome, RunStatus, utcnow
from jobimport.storage import RunStore

logger = logging.getLogger(__name__)


def fetch_phase_status(total_fetched: int, fetch_errors: int) -> RunStatus:
    """Status for a sweep that found nothing to queue.

    Zero jobs with no fetch errors is a successful, empty sweep; zero jobs
    because feeds failed is a failed one. Anything queued stays in progress.
    """
    if total_fetched > 0:
        return RunStatus.IN_PROGRESS
    return RunStatus.FAILED if fetch_errors else RunStatus.COMPLETED


def success_rate(completed: int, total: int) -> str:
    """Completed runs as a percentage of all runs, with two decimals."""
    if total == 0:
        return "0.00"
    return f"{completed / total * 100:.2f}"


class ImportRunTracker:
    """Records the lifecycle and counts of every import run."""

    def __init__(self, store: RunStore):
        self.store = store
        self._lock = threading.Lock()

    def start(self, source_label: str) -> ImportRun:
        run = self.store.create(source_label)
        logger.info("Created import run %s for %s", run.id, source_label)
        return run

    def record_fetch_phase(
        self,
        run_id: str,
        total_fetched: int,
        duration_ms: int,
        status: RunStatus,
        failed_reasons: list[str] | None = None,
    ) -> ImportRun:
        changes: dict[str, Any] = {
            "total_fetched": total_fetched,
            "duration_ms": duration_ms,
            "status": status,
            "failed_reasons": list(failed_reasons or []),
        }
        if status is not RunStatus.IN_PROGRESS:
            changes["finished_at"] = utcnow()

        with self._lock:
            run = self.store.update(run_id, **changes)
        logger.info(
            "Import run %s fetch phase: %d jobs fetched, status %s",
            run_id,
            total_fetched,
            run.status.value,
        )
        return run

    def record_enqueued(self, run_id: str, queued: int, duration_ms: int) -> ImportRun:
        """Record how many items were accepted by the queue for this run."""
        with self._lock:
            run = self.store.update(run_id, queued_jobs=queued, duration_ms=duration_ms)
            # Nothing accepted means nothing will ever settle.
            run = self._complete(run) if queued == 0 else self._complete_if_settled(run)
        logger.info("Import run %s: %d jobs queued for processing", run_id, queued)
        return run

    def record_outcome(self, run_id: str, outcome: Outcome) -> ImportRun:
        """Fold one item's final outcome into the run's counts."""
        with self._lock:
            run = self.get_by_id(run_id)
            changes: dict[str, Any] = {}
            if outcome.action is Action.CREATED:
                changes["new_jobs"] = run.new_jobs + 1
            elif outcome.action is Action.UPDATED:
                changes["updated_jobs"] = run.updated_jobs + 1
            else:
                changes["failed_jobs"] = run.failed_jobs + 1
                changes["failed_reasons"] = run.failed_reasons + [
                    f"{outcome.external_id}: {outcome.reason}"
                ]
            run = self.store.update(run_id, **changes)
            return self._complete_if_settled(run)

    def mark_failed(self, run_id: str, reason: str, duration_ms: int = 0) -> ImportRun:
        with self._lock:
            run = self.store.update(
                run_id,
                status=RunStatus.FAILED,
                failed_reasons=[reason],
                duration_ms=duration_ms,
                finished_at=utcnow(),
            )
        logger.error("Import run %s marked as failed: %s", run_id, reason)
        return run

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, run_id: str) -> ImportRun:
        run = self.store.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def list(self, page: int = 1, page_size: int = 20) -> dict[str, Any]:
        """Newest-first page of runs plus pagination info."""
        page = max(page, 1)
        runs = self.store.list(skip=(page - 1) * page_size, limit=page_size)
        total = self.store.count()
        return {
            "runs": runs,
            "pagination": {
                "page": page,
                "limit": page_size,
                "total": total,
                "total_pages": math.ceil(total / page_size) if page_size else 0,
            },
        }

    def get_aggregate_stats(self) -> dict[str, Any]:
        total = self.store.count()
        completed = self.store.count(status=RunStatus.COMPLETED)
        recent = self.store.count(since=utcnow() - timedelta(hours=24))
        return {
            "total_runs": total,
            "recent_runs": recent,
            "success_rate": success_rate(completed, total),
            "last_run": self.store.latest(),
        }

    def cleanup_old_runs(self, days: int = 30) -> int:
        deleted = self.store.delete_older_than(days)
        logger.info("Cleaned up %d import runs older than %d days", deleted, days)
        return deleted

    # ------------------------------------------------------------------

    def _complete_if_settled(self, run: ImportRun) -> ImportRun:
        if run.status is not RunStatus.IN_PROGRESS or run.queued_jobs == 0:
            return run
        if run.settled_jobs < run.queued_jobs:
            return run
        return self._complete(run)

    def _complete(self, run: ImportRun) -> ImportRun:
        elapsed = utcnow() - run.started_at
        run = self.store.update(
            run.id,
            status=RunStatus.COMPLETED,
            finished_at=utcnow(),
            duration_ms=int(elapsed.total_seconds() * 1000),
        )
        logger.info(
            "Import run %s completed: %d new, %d updated, %d failed",
            run.id,
            run.new_jobs,
            run.updated_jobs,
            run.failed_jobs,
        )
        return run
