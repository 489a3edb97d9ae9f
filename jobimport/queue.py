"""In-process job queue that sits between fetching and persistence.

Producers hand candidates to ``enqueue_bulk`` and get an accepted count back
straight away; a pool of worker threads drains the queue in the background.

  - Idempotency: every entry has a key (``<importRunId>-<externalId>`` for
    bulk submissions). A key already held by the queue is not added again.
  - Retries: a failed, retryable outcome is re-attempted with exponential
    backoff until the attempt limit, then the entry is terminally failed.
  - Rate limit: one limiter shared by all workers caps total throughput.
  - Retention: completed entries are kept for a while (by age and count),
    failed entries longer (by age), then discarded.
  - Shutdown: ``close`` lets in-flight entries finish, then writes anything
    not yet settled to the state file. A queue opened on the same state file
    picks those entries up again.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from jobimport.config import QueueConfig
from jobimport.errors import QueueError
from jobimport.models import Job, Outcome, QueueItem
from jobimport.storage import load_json, save_json

logger = logging.getLogger(__name__)

QUEUE_NAME = "job-processing"
PROCESS_JOB = "process-job"

Handler = Callable[[QueueItem], Outcome]
SettledCallback = Callable[[QueueItem, Outcome], None]


class EntryState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RetryPolicy:
    """Exponential backoff: backoff, 2x backoff, 4x backoff, ..."""

    attempts: int = 3
    backoff_seconds: float = 2.0

    def delay_for(self, attempts_made: int) -> float:
        return self.backoff_seconds * (2 ** (attempts_made - 1))


@dataclass
class RetentionPolicy:
    completed_age_seconds: float = 3600
    completed_count: int = 1000
    failed_age_seconds: float = 86400


class RateLimiter:
    """Sliding-window limiter: at most ``max_calls`` per ``period`` across all threads."""

    def __init__(self, max_calls: int = 100, period: float = 1.0):
        self.max_calls = max_calls
        self.period = period
        self._calls: deque[float] = deque()
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Block until a call slot is free, then take it."""
        while True:
            with self._lock:
                now = time.monotonic()
                while self._calls and now - self._calls[0] >= self.period:
                    self._calls.popleft()
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                wait = self.period - (now - self._calls[0])
            time.sleep(wait)


@dataclass
class QueueEntry:
    key: str
    item: QueueItem
    name: str = PROCESS_JOB
    state: EntryState = EntryState.WAITING
    attempts_made: int = 0
    available_at: float = 0.0
    finished_at: Optional[float] = None
    last_error: Optional[str] = None


class JobQueue:
    """Ordered work queue with keyed deduplication and a bounded worker pool."""

    def __init__(
        self,
        name: str = QUEUE_NAME,
        retry: RetryPolicy | None = None,
        retention: RetentionPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        concurrency: int = 5,
        state_path: str | Path | None = None,
    ):
        self.name = name
        self.retry = retry or RetryPolicy()
        self.retention = retention or RetentionPolicy()
        self.rate_limiter = rate_limiter
        self.concurrency = concurrency
        self.state_path = Path(state_path) if state_path else None

        self._cond = threading.Condition()
        self._entries: dict[str, QueueEntry] = {}
        self._pending: deque[str] = deque()
        self._active = 0
        self._paused = False
        self._closed = False
        self._workers: list[threading.Thread] = []
        self._handler: Optional[Handler] = None
        self._on_settled: Optional[SettledCallback] = None

        if self.state_path:
            self._load_state()

    @classmethod
    def from_config(cls, config: QueueConfig, state_path: str | Path | None = None) -> "JobQueue":
        return cls(
            retry=RetryPolicy(config.attempts, config.backoff_seconds),
            retention=RetentionPolicy(
                config.keep_completed_seconds,
                config.keep_completed_count,
                config.keep_failed_seconds,
            ),
            rate_limiter=RateLimiter(config.rate_limit_max, config.rate_limit_period_seconds),
            concurrency=config.concurrency,
            state_path=state_path,
        )

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, candidate: Job, import_run_id: str) -> bool:
        """Add one candidate keyed by its external id. False if already queued."""
        with self._cond:
            self._ensure_open()
            added = self._add(candidate.external_id, QueueItem(candidate, import_run_id))
            self._cond.notify()
        if added:
            logger.debug("Added job to queue: %s", candidate.external_id)
        return added

    def enqueue_bulk(self, candidates: list[Job], import_run_id: str) -> int:
        """Add candidates for one import run; returns how many were accepted."""
        with self._cond:
            self._ensure_open()
            accepted = 0
            for candidate in candidates:
                key = f"{import_run_id}-{candidate.external_id}"
                if self._add(key, QueueItem(candidate, import_run_id)):
                    accepted += 1
            self._cond.notify_all()

        skipped = len(candidates) - accepted
        logger.info("Added %d jobs to queue for import %s", accepted, import_run_id)
        if skipped:
            logger.info("Skipped %d duplicate queue keys for import %s", skipped, import_run_id)
        return accepted

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def start(self, handler: Handler, on_settled: SettledCallback | None = None) -> None:
        """Start the worker pool.

        ``on_settled`` is called once per entry when it reaches a terminal
        state (completed, or failed after its last attempt).
        """
        if self._workers:
            raise RuntimeError(f"Queue {self.name} already started")
        self._ensure_open()

        self._handler = handler
        self._on_settled = on_settled
        for i in range(self.concurrency):
            worker = threading.Thread(
                target=self._work, name=f"{self.name}-worker-{i}", daemon=True
            )
            worker.start()
            self._workers.append(worker)
        logger.info("Worker started with concurrency: %d", self.concurrency)

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is waiting, delayed or active. False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._pending and self._active == 0, timeout)

    def pause(self) -> None:
        with self._cond:
            self._paused = True
        logger.info("Queue paused")

    def resume(self) -> None:
        with self._cond:
            self._paused = False
            self._cond.notify_all()
        logger.info("Queue resumed")

    def close(self, timeout: float = 10.0) -> bool:
        """Stop taking new entries and let in-flight ones finish.

        Returns False if workers were still busy when ``timeout`` ran out.
        Unsettled entries, including any still in flight, are written to the
        state file so a later queue can run them again. The file is written
        once before waiting on the workers, so a hard exit during the wait
        still leaves it on disk, and again afterwards with what is left.
        """
        with self._cond:
            if self._closed:
                return True
            self._closed = True
            self._cond.notify_all()
            pending = self._unsettled()
        if self._workers and self.state_path:
            self._save_state(pending)

        deadline = time.monotonic() + timeout
        for worker in self._workers:
            worker.join(max(0.0, deadline - time.monotonic()))
        clean = not any(w.is_alive() for w in self._workers)

        with self._cond:
            leftover = self._unsettled()
        if not clean:
            logger.warning("Queue %s closed with jobs still in flight", self.name)
        self._save_state(leftover)
        logger.info("Queue closed (%d unsettled jobs kept)", len(leftover))
        return clean

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Introspection and maintenance
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        with self._cond:
            counts = {state.value: 0 for state in EntryState}
            for entry in self._entries.values():
                counts[entry.state.value] += 1
        counts["total"] = sum(counts.values())
        return counts

    def get(self, key: str) -> Optional[QueueEntry]:
        with self._cond:
            return self._entries.get(key)

    def clean(self) -> int:
        """Drop finished entries past their retention window."""
        with self._cond:
            removed = self._prune()
        logger.info("Queue cleaned: %d entries removed", removed)
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise QueueError(f"Queue {self.name} is closed")

    def _unsettled(self) -> list[QueueEntry]:
        return [
            e
            for e in self._entries.values()
            if e.state in (EntryState.WAITING, EntryState.DELAYED, EntryState.ACTIVE)
        ]

    def _add(self, key: str, item: QueueItem) -> bool:
        if key in self._entries:
            return False
        self._entries[key] = QueueEntry(key=key, item=item)
        self._pending.append(key)
        return True

    def _next_entry(self) -> Optional[QueueEntry]:
        with self._cond:
            while True:
                if self._closed:
                    return None
                wait = None
                if not self._paused:
                    entry, wait = self._take_ready()
                    if entry:
                        entry.state = EntryState.ACTIVE
                        self._active += 1
                        return entry
                self._cond.wait(timeout=wait)

    def _take_ready(self) -> tuple[Optional[QueueEntry], Optional[float]]:
        """Pop the oldest entry that is due; otherwise report how long to wait."""
        now = time.monotonic()
        soonest: Optional[float] = None
        for key in self._pending:
            entry = self._entries[key]
            if entry.available_at <= now:
                self._pending.remove(key)
                return entry, None
            remaining = entry.available_at - now
            soonest = remaining if soonest is None else min(soonest, remaining)
        return None, soonest

    def _work(self) -> None:
        while True:
            entry = self._next_entry()
            if entry is None:
                return
            if self.rate_limiter:
                self.rate_limiter.acquire()
            outcome = self._run_handler(entry)
            self._settle(entry, outcome)

    def _run_handler(self, entry: QueueEntry) -> Outcome:
        external_id = entry.item.job_candidate.external_id
        logger.debug("Processing job: %s for import %s", external_id, entry.item.import_run_id)
        try:
            return self._handler(entry.item)
        except Exception as exc:
            logger.exception("Error processing job %s", external_id)
            return Outcome.failed(external_id, str(exc), retryable=True)

    def _settle(self, entry: QueueEntry, outcome: Outcome) -> None:
        with self._cond:
            self._active -= 1
            entry.attempts_made += 1
            now = time.monotonic()
            delay = 0.0

            if outcome.ok:
                entry.state = EntryState.COMPLETED
                entry.finished_at = now
                terminal = True
            elif outcome.retryable and entry.attempts_made < self.retry.attempts:
                delay = self.retry.delay_for(entry.attempts_made)
                entry.state = EntryState.DELAYED
                entry.available_at = now + delay
                entry.last_error = outcome.reason
                self._pending.append(entry.key)
                terminal = False
            else:
                entry.state = EntryState.FAILED
                entry.finished_at = now
                entry.last_error = outcome.reason
                terminal = True

            self._prune()
            self._cond.notify_all()

        if outcome.ok:
            logger.info("Job %s completed - Action: %s", entry.key, outcome.action.value)
        elif terminal:
            logger.error(
                "Job %s failed after %d attempt(s): %s", entry.key, entry.attempts_made, outcome.reason
            )
        else:
            logger.warning(
                "Job %s attempt %d failed, retrying in %.1fs: %s",
                entry.key,
                entry.attempts_made,
                delay,
                outcome.reason,
            )

        if terminal and self._on_settled:
            try:
                self._on_settled(entry.item, outcome)
            except Exception:
                logger.exception("Settled callback failed for job %s", entry.key)

    def _prune(self) -> int:
        now = time.monotonic()
        completed = [e for e in self._entries.values() if e.state is EntryState.COMPLETED]
        failed = [e for e in self._entries.values() if e.state is EntryState.FAILED]

        max_age = self.retention.completed_age_seconds
        drop = [e for e in completed if now - e.finished_at > max_age]
        fresh = [e for e in completed if now - e.finished_at <= max_age]
        overflow = len(fresh) - self.retention.completed_count
        if overflow > 0:
            fresh.sort(key=lambda e: e.finished_at)
            drop.extend(fresh[:overflow])
        drop.extend(e for e in failed if now - e.finished_at > self.retention.failed_age_seconds)

        for entry in drop:
            del self._entries[entry.key]
        return len(drop)

    def _load_state(self) -> None:
        records = load_json(self.state_path, default=[])
        for record in records:
            entry = QueueEntry(
                key=record["key"],
                item=QueueItem.from_dict(record["data"]),
                name=record.get("name", PROCESS_JOB),
                attempts_made=record.get("attemptsMade", 0),
            )
            if entry.key not in self._entries:
                self._entries[entry.key] = entry
                self._pending.append(entry.key)
        if records:
            logger.info("Restored %d queued jobs from %s", len(self._pending), self.state_path)

    def _save_state(self, entries: list[QueueEntry]) -> None:
        if not self.state_path:
            if entries:
                logger.warning("No state file configured, dropping %d unsettled jobs", len(entries))
            return
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        save_json(
            self.state_path,
            [
                {
                    "key": e.key,
                    "name": e.name,
                    "attemptsMade": e.attempts_made,
                    "data": e.item.to_dict(),
                }
                for e in entries
            ],
        )
