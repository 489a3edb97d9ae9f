"""Create-or-update reconciliation of job candidates against the store.

A candidate matches a stored record when either its ``external_id`` or its
``url`` matches. The lookup and the write are not one transaction; the
store's unique indexes are the backstop. An insert that loses a race to a
concurrent writer comes back as a DuplicateKeyError, and is resolved by
looking the record up again and updating it.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from jobimport.errors import DuplicateKeyError, ValidationError
from jobimport.models import BatchResult, Job, Outcome
from jobimport.storage import JobStore

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("external_id", "title", "company", "url")

CONFLICT_PREFIX = "Persistence conflict"


def validate(candidate: Job) -> None:
    """Raise ValidationError if an identity-bearing field is empty."""
    missing = [name for name in REQUIRED_FIELDS if not getattr(candidate, name, None)]
    if missing:
        raise ValidationError(missing)


class JobProcessor:
    """Reconciles candidates into a JobStore and reports an Outcome per item."""

    def __init__(self, store: JobStore, max_workers: int = 5):
        self.store = store
        self.max_workers = max_workers

    def process(self, candidate: Job) -> Outcome:
        """Create or update one candidate. Never raises."""
        external_id = candidate.external_id

        try:
            validate(candidate)
        except ValidationError as exc:
            logger.warning("Rejected job %r: %s", external_id, exc)
            return Outcome.failed(external_id, str(exc))

        try:
            return self._reconcile(candidate)
        except DuplicateKeyError as exc:
            logger.error("Conflict processing job %s: %s", external_id, exc)
            # Two different records own the id and the url; retrying cannot help.
            split = self._identity_split(candidate)
            return Outcome.failed(external_id, f"{CONFLICT_PREFIX}: {exc}", retryable=not split)
        except Exception as exc:
            logger.error("Error processing job %s: %s", external_id, exc)
            return Outcome.failed(external_id, str(exc), retryable=True)

    def process_batch(self, candidates: list[Job]) -> BatchResult:
        """Process candidates concurrently; one failure never aborts the rest."""
        result = BatchResult(total=len(candidates))
        if not candidates:
            return result

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for outcome in pool.map(self.process, candidates):
                result.add(outcome)

        logger.info(
            "Batch processing complete: %d created, %d updated, %d failed",
            result.created,
            result.updated,
            result.failed,
        )
        return result

    # ------------------------------------------------------------------

    def _reconcile(self, candidate: Job) -> Outcome:
        existing = self.store.find_by_identity(candidate.external_id, candidate.url)
        if existing:
            return self._update(existing.id, candidate)

        try:
            self.store.insert(candidate)
        except DuplicateKeyError as exc:
            # Someone inserted the same job between our lookup and insert.
            logger.debug("Insert raced for %s (%s), retrying as update", candidate.external_id, exc)
            existing = self.store.find_by_identity(candidate.external_id, candidate.url)
            if not existing:
                raise
            return self._update(existing.id, candidate)

        logger.debug("Created new job: %s at %s", candidate.title, candidate.company)
        return Outcome.created(candidate.external_id)

    def _identity_split(self, candidate: Job) -> bool:
        by_id, by_url = self.store.owners(candidate.external_id, candidate.url)
        return bool(by_id and by_url and by_id != by_url)

    def _update(self, job_id: str, candidate: Job) -> Outcome:
        self.store.update(job_id, candidate)
        logger.debug("Updated job: %s at %s", candidate.title, candidate.company)
        return Outcome.updated(candidate.external_id)
