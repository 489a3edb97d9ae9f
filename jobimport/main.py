"""Entry point for the job import pipeline.

Usage:
    python -m jobimport.main import                     # import config.yaml feeds
    python -m jobimport.main import --url https://...   # import specific feeds
    python -m jobimport.main logs --page 2              # list import runs
    python -m jobimport.main log <run-id>               # show one import run
    python -m jobimport.main stats                      # import and job statistics
    python -m jobimport.main queue-stats                # jobs left in the queue
    python -m jobimport.main cleanup --jobs-days 90     # maintenance
    python -m jobimport.main --dry-run import           # validate config only
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from jobimport.config import PipelineConfig, load_config
from jobimport.errors import RunNotFoundError
from jobimport.feeds.client import FeedClient
from jobimport.models import ImportRun, Outcome, QueueItem
from jobimport.pipeline import ImportPipeline
from jobimport.processor import JobProcessor
from jobimport.queue import JobQueue
from jobimport.storage import JobStore, RunStore
from jobimport.tracker import ImportRunTracker

logger = logging.getLogger(__name__)

QUEUE_STATE_FILE = "queue_state.json"

# Share of the shutdown timeout the queue gets to drain before the hard exit
CLOSE_BUDGET = 0.8


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@dataclass
class Services:
    """Every component of the pipeline, wired to one data directory."""

    config: PipelineConfig
    job_store: JobStore
    tracker: ImportRunTracker
    processor: JobProcessor
    queue: JobQueue
    pipeline: ImportPipeline

    def start_workers(self) -> None:
        self.queue.start(self._handle, on_settled=self._settled)

    def _handle(self, item: QueueItem) -> Outcome:
        return self.processor.process(item.job_candidate)

    def _settled(self, item: QueueItem, outcome: Outcome) -> None:
        self.tracker.record_outcome(item.import_run_id, outcome)


def build_services(config: PipelineConfig, data_dir: str | Path | None = None) -> Services:
    data_path = Path(data_dir or config.data_dir)
    job_store = JobStore(data_path)
    tracker = ImportRunTracker(RunStore(data_path))
    processor = JobProcessor(job_store, max_workers=config.queue.concurrency)
    queue = JobQueue.from_config(config.queue, state_path=data_path / QUEUE_STATE_FILE)
    pipeline = ImportPipeline(config, FeedClient(config), queue, tracker)
    return Services(config, job_store, tracker, processor, queue, pipeline)


def shutdown_handler(queue: JobQueue, timeout: float) -> Callable[[int, Any], None]:
    """Build a signal handler that closes the queue, exiting hard after ``timeout``.

    The queue is given a shorter budget than the hard-exit timer so its
    state file is written before the process can be killed.
    """

    def force_exit() -> None:
        logger.error("Forced shutdown after %.1fs timeout", timeout)
        os._exit(1)

    def shutdown(signum: int, frame: Any) -> None:
        logger.info("%s received: shutting down gracefully...", signal.Signals(signum).name)
        timer = threading.Timer(timeout, force_exit)
        timer.daemon = True
        timer.start()
        try:
            clean = queue.close(timeout * CLOSE_BUDGET)
        finally:
            timer.cancel()
        sys.exit(0 if clean else 1)

    return shutdown


def install_signal_handlers(queue: JobQueue, timeout: float) -> None:
    """Close the queue gracefully on SIGINT/SIGTERM; exit hard after ``timeout``."""
    handler = shutdown_handler(queue, timeout)
    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _run_summary(run: ImportRun) -> dict:
    return {
        "importRunId": run.id,
        "totalJobs": run.total_fetched,
        **run.to_dict(),
    }


# ── Commands ───────────────────────────────────────────────────────────────


def cmd_import(args: argparse.Namespace, config: PipelineConfig) -> int:
    urls = args.url or config.feed_urls
    if not urls:
        logger.error("No feed URLs provided (use --url, config.yaml or JOB_FEED_URLS)")
        return 1

    if args.dry_run:
        logger.info("=== Dry Run ===")
        for url in urls:
            logger.info("  %s", url)
        logger.info("Dry run complete, nothing fetched.")
        return 0

    services = build_services(config, args.data_dir)
    install_signal_handlers(services.queue, config.shutdown_timeout_seconds)
    services.start_workers()

    try:
        run = services.pipeline.run_import(urls)
    except Exception as exc:
        logger.error("Failed to start import: %s", exc)
        services.queue.close(config.shutdown_timeout_seconds)
        return 1

    if not services.queue.wait_until_idle(args.wait):
        logger.warning("Queue still busy after %ss, remaining jobs are kept for the next run", args.wait)
    services.queue.close(config.shutdown_timeout_seconds)

    _print_json(_run_summary(services.tracker.get_by_id(run.id)))
    return 0


def cmd_logs(args: argparse.Namespace, config: PipelineConfig) -> int:
    services = build_services(config, args.data_dir)
    result = services.tracker.list(args.page, args.limit)
    _print_json(
        {
            "runs": [run.to_dict() for run in result["runs"]],
            "pagination": result["pagination"],
        }
    )
    return 0


def cmd_log(args: argparse.Namespace, config: PipelineConfig) -> int:
    services = build_services(config, args.data_dir)
    try:
        run = services.tracker.get_by_id(args.run_id)
    except RunNotFoundError as exc:
        logger.error("%s", exc)
        return 1
    _print_json(run.to_dict())
    return 0


def cmd_stats(args: argparse.Namespace, config: PipelineConfig) -> int:
    services = build_services(config, args.data_dir)
    stats = services.tracker.get_aggregate_stats()
    last_run = stats["last_run"]
    stats["last_run"] = last_run.to_dict() if last_run else None
    stats["jobs"] = services.job_store.stats()
    stats["queue"] = services.queue.stats()
    _print_json(stats)
    return 0


def cmd_queue_stats(args: argparse.Namespace, config: PipelineConfig) -> int:
    services = build_services(config, args.data_dir)
    _print_json({"queue": services.queue.name, **services.queue.stats()})
    return 0


def cmd_cleanup(args: argparse.Namespace, config: PipelineConfig) -> int:
    services = build_services(config, args.data_dir)
    if args.dry_run:
        logger.info("Dry run: would remove jobs older than %d days, runs older than %d days",
                    args.jobs_days, args.runs_days)
        return 0
    jobs = services.job_store.cleanup_older_than(args.jobs_days)
    runs = services.tracker.cleanup_old_runs(args.runs_days)
    _print_json({"deleted_jobs": jobs, "deleted_runs": runs})
    return 0


COMMANDS = {
    "import": cmd_import,
    "logs": cmd_logs,
    "log": cmd_log,
    "stats": cmd_stats,
    "queue-stats": cmd_queue_stats,
    "cleanup": cmd_cleanup,
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Job Feed Importer: fetch XML job feeds and reconcile "
        "them into the job store."
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Override data directory for jobs, import runs and queue state (default: from config)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Load config and show what would run without fetching or writing",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug-level logging",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Run one import sweep and process the queue")
    p_import.add_argument(
        "--url",
        action="append",
        default=None,
        help="Feed URL to import (repeatable; default: feed_urls from config)",
    )
    p_import.add_argument(
        "--wait",
        type=float,
        default=300.0,
        help="Seconds to wait for queued jobs to finish processing (default: 300)",
    )

    p_logs = sub.add_parser("logs", help="List import runs, newest first")
    p_logs.add_argument("--page", type=int, default=1)
    p_logs.add_argument("--limit", type=int, default=20)

    p_log = sub.add_parser("log", help="Show one import run")
    p_log.add_argument("run_id")

    sub.add_parser("stats", help="Show import, job and queue statistics")
    sub.add_parser("queue-stats", help="Show counts of jobs held in the queue state file")

    p_cleanup = sub.add_parser("cleanup", help="Delete old jobs and import runs")
    p_cleanup.add_argument("--jobs-days", type=int, default=90)
    p_cleanup.add_argument("--runs-days", type=int, default=30)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    config = load_config(args.config)
    log_level = "DEBUG" if args.verbose else config.log_level
    setup_logging(log_level)

    logger.info("Loaded config with %d feed URLs", len(config.feed_urls))
    sys.exit(COMMANDS[args.command](args, config))


if __name__ == "__main__":
    main()
