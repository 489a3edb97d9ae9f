"""Tests for create-or-update reconciliation."""

import pytest

from jobimport.errors import DuplicateKeyError, ValidationError
from jobimport.models import Action, Job
from jobimport.processor import CONFLICT_PREFIX, JobProcessor, validate
from jobimport.storage import JobStore


def _job(external_id="ext-1", url="https://jobs.example.com/1", title="Engineer", company="Acme"):
    return Job(external_id=external_id, url=url, title=title, company=company)


class RacingStore(JobStore):
    """Simulates another writer inserting the same job between lookup and insert."""

    def __init__(self):
        super().__init__()
        self.raced = False

    def find_by_identity(self, external_id, url):
        if not self.raced:
            return None
        return super().find_by_identity(external_id, url)

    def insert(self, job):
        if not self.raced:
            self.raced = True
            super().insert(job)
            raise DuplicateKeyError("external_id", job.external_id)
        return super().insert(job)


class ConflictStore(JobStore):
    """Every write collides and the colliding record is never visible."""

    def insert(self, job):
        raise DuplicateKeyError("url", job.url)


def test_validate_reports_missing_fields():
    with pytest.raises(ValidationError) as exc_info:
        validate(_job(company="", url=""))
    assert exc_info.value.missing == ["company", "url"]
    assert str(exc_info.value) == "Missing required fields: company, url"


def test_create_then_update_is_idempotent():
    store = JobStore()
    processor = JobProcessor(store)

    first = processor.process(_job())
    second = processor.process(_job(title="Senior Engineer"))

    assert first.action is Action.CREATED
    assert second.action is Action.UPDATED
    assert store.count() == 1
    assert store.all()[0].title == "Senior Engineer"


def test_match_on_url_alone():
    store = JobStore()
    processor = JobProcessor(store)
    processor.process(_job())

    outcome = processor.process(_job(external_id="ext-renamed"))

    assert outcome.action is Action.UPDATED
    assert store.count() == 1
    assert store.all()[0].external_id == "ext-renamed"


def test_match_on_external_id_alone():
    store = JobStore()
    processor = JobProcessor(store)
    processor.process(_job())

    outcome = processor.process(_job(url="https://jobs.example.com/moved"))

    assert outcome.action is Action.UPDATED
    assert store.all()[0].url == "https://jobs.example.com/moved"


def test_validation_failure_is_not_retryable():
    store = JobStore()
    outcome = JobProcessor(store).process(_job(external_id=""))

    assert outcome.action is Action.FAILED
    assert not outcome.retryable
    assert "external_id" in outcome.reason
    assert store.count() == 0


def test_batch_with_one_invalid_candidate():
    store = JobStore()
    candidates = [
        _job(external_id=f"ext-{i}", url=f"https://jobs.example.com/{i}") for i in range(10)
    ]
    candidates[4].company = ""

    result = JobProcessor(store).process_batch(candidates)

    assert result.total == 10
    assert result.created == 9
    assert result.failed == 1
    assert "company" in result.errors[0]
    assert store.count() == 9


def test_empty_batch():
    result = JobProcessor(JobStore()).process_batch([])
    assert result.total == 0
    assert result.errors == []


def test_insert_race_resolves_to_update():
    store = RacingStore()
    outcome = JobProcessor(store).process(_job())

    assert outcome.action is Action.UPDATED
    assert store.count() == 1


def test_unresolvable_conflict_is_retryable_failure():
    outcome = JobProcessor(ConflictStore()).process(_job())

    assert outcome.action is Action.FAILED
    assert outcome.retryable
    assert outcome.reason.startswith(CONFLICT_PREFIX)


def test_unexpected_error_becomes_retryable_failure():
    class BrokenStore(JobStore):
        def find_by_identity(self, external_id, url):
            raise OSError("disk full")

    outcome = JobProcessor(BrokenStore()).process(_job())

    assert outcome.action is Action.FAILED
    assert outcome.retryable
    assert outcome.reason == "disk full"


def test_id_and_url_owned_by_different_jobs_is_final():
    store = JobStore()
    store.insert(_job(external_id="ext-a", url="https://jobs.example.com/a"))
    store.insert(_job(external_id="ext-b", url="https://jobs.example.com/b"))

    outcome = JobProcessor(store).process(
        _job(external_id="ext-a", url="https://jobs.example.com/b", title="Changed")
    )

    assert outcome.action is Action.FAILED
    assert not outcome.retryable
    assert outcome.reason.startswith(CONFLICT_PREFIX)
    assert store.count() == 2
    assert {job.title for job in store.all()} == {"Engineer"}
