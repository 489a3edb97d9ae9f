"""Import orchestrator: one sweep across a set of feed URLs.

This is the core pipeline:
  1. Open an import run
  2. Fetch every feed in parallel (each URL fails on its own)
  3. Parse, extract and normalize items into Job candidates
  4. Record the fetch phase on the run
  5. Bulk-enqueue candidates for the workers to reconcile

Step 4 always happens before step 5. Processing happens asynchronously on
the queue; outcomes flow back to the run via ``ImportRunTracker.record_outcome``.
"""

from __future__ import annotations

import logging
import time
from typing import NamedTuple

from jobimport.config import PipelineConfig
from jobimport.errors import FeedParseError
from jobimport.feeds.client import FeedClient
from jobimport.feeds.extractor import extract
from jobimport.feeds.normalizer import normalize_all
from jobimport.feeds.xml import parse_feed
from jobimport.models import ImportRun, Job
from jobimport.queue import JobQueue
from jobimport.tracker import ImportRunTracker, fetch_phase_status

logger = logging.getLogger(__name__)


class FeedError(NamedTuple):
    url: str
    error: str


class FetchSummary(NamedTuple):
    candidates: list[Job]
    errors: list[FeedError]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ImportPipeline:
    """Runs import sweeps: fetch → normalize → account → enqueue."""

    def __init__(
        self,
        config: PipelineConfig,
        client: FeedClient,
        queue: JobQueue,
        tracker: ImportRunTracker,
    ):
        self.config = config
        self.client = client
        self.queue = queue
        self.tracker = tracker

    def fetch_jobs(self, urls: list[str]) -> FetchSummary:
        """Fetch all feeds and return candidates plus per-URL errors."""
        candidates: list[Job] = []
        errors: list[FeedError] = []

        for result in self.client.fetch_many(urls):
            if not result.success:
                errors.append(FeedError(result.url, result.error or "Unknown fetch error"))
                continue
            try:
                parsed = parse_feed(result.raw_body)
            except FeedParseError as exc:
                logger.error("Error parsing feed from %s: %s", result.url, exc)
                errors.append(FeedError(result.url, str(exc)))
                continue

            raw_items = extract(parsed, result.url)
            candidates.extend(normalize_all(raw_items, result.url))

        logger.info("Total jobs fetched from all sources: %d", len(candidates))
        if errors:
            logger.warning(
                "Failed to fetch from %d sources: %s",
                len(errors),
                ", ".join(e.url for e in errors),
            )
        return FetchSummary(candidates, errors)

    def run_import(self, urls: list[str], source_label: str | None = None) -> ImportRun:
        """Run one sweep and return the import run as recorded.

        Raises whatever stopped the sweep (e.g. QueueError) after marking the
        run failed with that error as its only reason.
        """
        started = time.monotonic()
        run = self.tracker.start(source_label or ", ".join(urls))
        logger.info("Starting import %s from %d sources", run.id, len(urls))

        try:
            candidates, errors = self.fetch_jobs(urls)
            reasons = [f"{e.url}: {e.error}" for e in errors]
            status = fetch_phase_status(len(candidates), len(errors))

            run = self.tracker.record_fetch_phase(
                run.id,
                total_fetched=len(candidates),
                duration_ms=_elapsed_ms(started),
                status=status,
                failed_reasons=reasons,
            )
            if not candidates:
                logger.info("Import %s finished: no jobs found", run.id)
                return run

            accepted = self.queue.enqueue_bulk(candidates, run.id)
            run = self.tracker.record_enqueued(run.id, accepted, _elapsed_ms(started))
        except Exception as exc:
            logger.error("Error in import %s: %s", run.id, exc)
            self.tracker.mark_failed(run.id, str(exc), _elapsed_ms(started))
            raise

        logger.info("Import %s started: %d jobs queued for processing", run.id, accepted)
        return run
