"""Tests for import run accounting."""

from datetime import timedelta

import pytest

from jobimport.errors import RunNotFoundError
from jobimport.models import Outcome, RunStatus, utcnow
from jobimport.storage import RunStore
from jobimport.tracker import ImportRunTracker, fetch_phase_status, success_rate


@pytest.fixture
def tracker():
    return ImportRunTracker(RunStore())


@pytest.mark.parametrize(
    "total, errors, expected",
    [
        (5, 0, RunStatus.IN_PROGRESS),
        (5, 2, RunStatus.IN_PROGRESS),
        (0, 1, RunStatus.FAILED),
        (0, 0, RunStatus.COMPLETED),
    ],
)
def test_fetch_phase_status(total, errors, expected):
    assert fetch_phase_status(total, errors) is expected


def test_success_rate():
    assert success_rate(3, 4) == "75.00"
    assert success_rate(1, 3) == "33.33"
    assert success_rate(0, 0) == "0.00"


def test_start_creates_in_progress_run(tracker):
    run = tracker.start("https://a.example/feed")
    assert run.status is RunStatus.IN_PROGRESS
    assert tracker.get_by_id(run.id).source_label == "https://a.example/feed"


def test_get_by_id_unknown(tracker):
    with pytest.raises(RunNotFoundError, match="Import run nope not found"):
        tracker.get_by_id("nope")


def test_failed_fetch_phase_is_terminal(tracker):
    run = tracker.start("label")
    run = tracker.record_fetch_phase(
        run.id, 0, 120, RunStatus.FAILED, ["https://a.example/feed: 404 Client Error"]
    )

    assert run.status is RunStatus.FAILED
    assert run.finished_at is not None
    assert run.failed_reasons == ["https://a.example/feed: 404 Client Error"]


def test_outcomes_complete_the_run(tracker):
    run = tracker.start("label")
    tracker.record_fetch_phase(run.id, 3, 50, RunStatus.IN_PROGRESS)
    tracker.record_enqueued(run.id, 3, 60)

    tracker.record_outcome(run.id, Outcome.created("a"))
    tracker.record_outcome(run.id, Outcome.updated("b"))
    assert tracker.get_by_id(run.id).status is RunStatus.IN_PROGRESS

    run = tracker.record_outcome(run.id, Outcome.failed("c", "Missing required fields: url"))

    assert run.status is RunStatus.COMPLETED
    assert (run.new_jobs, run.updated_jobs, run.failed_jobs) == (1, 1, 1)
    assert run.failed_reasons == ["c: Missing required fields: url"]
    assert run.finished_at is not None


def test_outcomes_before_enqueue_count_is_recorded(tracker):
    """Workers may settle items before the producer records the queued count."""
    run = tracker.start("label")
    tracker.record_fetch_phase(run.id, 2, 50, RunStatus.IN_PROGRESS)

    tracker.record_outcome(run.id, Outcome.created("a"))
    tracker.record_outcome(run.id, Outcome.created("b"))
    assert tracker.get_by_id(run.id).status is RunStatus.IN_PROGRESS

    run = tracker.record_enqueued(run.id, 2, 60)
    assert run.status is RunStatus.COMPLETED


def test_nothing_accepted_completes_immediately(tracker):
    run = tracker.start("label")
    tracker.record_fetch_phase(run.id, 2, 50, RunStatus.IN_PROGRESS)
    assert tracker.record_enqueued(run.id, 0, 60).status is RunStatus.COMPLETED


def test_fetch_errors_are_kept_alongside_item_failures(tracker):
    run = tracker.start("label")
    tracker.record_fetch_phase(
        run.id, 1, 50, RunStatus.IN_PROGRESS, ["https://b.example/feed: timed out"]
    )
    tracker.record_enqueued(run.id, 1, 60)
    run = tracker.record_outcome(run.id, Outcome.failed("x", "boom"))

    assert run.failed_reasons == ["https://b.example/feed: timed out", "x: boom"]


def test_mark_failed_replaces_reasons(tracker):
    run = tracker.start("label")
    tracker.record_fetch_phase(run.id, 4, 50, RunStatus.IN_PROGRESS, ["u: e"])

    run = tracker.mark_failed(run.id, "Queue job-processing is closed", 70)

    assert run.status is RunStatus.FAILED
    assert run.failed_reasons == ["Queue job-processing is closed"]
    assert run.total_fetched == 4
    assert run.duration_ms == 70


def test_list_pagination(tracker):
    base = utcnow()
    for i in range(5):
        run = tracker.start(f"run-{i}")
        tracker.store.update(run.id, started_at=base + timedelta(seconds=i))

    page = tracker.list(page=2, page_size=2)

    assert [r.source_label for r in page["runs"]] == ["run-2", "run-1"]
    assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "total_pages": 3}


def test_aggregate_stats(tracker):
    assert tracker.get_aggregate_stats() == {
        "total_runs": 0,
        "recent_runs": 0,
        "success_rate": "0.00",
        "last_run": None,
    }

    for i in range(4):
        run = tracker.start(f"run-{i}")
        status = RunStatus.FAILED if i == 0 else RunStatus.COMPLETED
        tracker.record_fetch_phase(run.id, 0, 10, status)

    stats = tracker.get_aggregate_stats()
    assert stats["total_runs"] == 4
    assert stats["recent_runs"] == 4
    assert stats["success_rate"] == "75.00"
    assert stats["last_run"] is not None


def test_cleanup_old_runs(tracker):
    old = tracker.start("old")
    tracker.store.update(old.id, started_at=utcnow() - timedelta(days=40))
    tracker.start("new")

    assert tracker.cleanup_old_runs(days=30) == 1
    assert tracker.list()["pagination"]["total"] == 1
