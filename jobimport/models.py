"""Data models for the job import pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class JobType(str, Enum):
    """Employment types a stored job may carry."""

    FULL_TIME = "Full-time"
    PART_TIME = "Part-time"
    CONTRACT = "Contract"
    FREELANCE = "Freelance"
    REMOTE = "Remote"
    OTHER = "Other"


class RunStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


class Action(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


# Length bounds enforced by the normalizer (truncate, never reject)
FIELD_LIMITS: dict[str, int] = {
    "external_id": 200,
    "title": 200,
    "company": 200,
    "category": 100,
    "location": 200,
    "description": 5000,
    "url": 500,
}

# Fields overwritten when a candidate reconciles against a stored record
MUTABLE_FIELDS = (
    "external_id",
    "url",
    "title",
    "company",
    "category",
    "type",
    "location",
    "description",
    "posted_at",
)


@dataclass
class Job:
    """A canonical job posting.

    Before persistence this is a *candidate*; the store fills in ``id`` and
    ``created_at`` on insert and refreshes ``updated_at`` on every write.
    Identity is ``external_id`` OR ``url``: either one matching an existing
    record means it is the same logical job.
    """

    external_id: str
    url: str
    title: str
    company: str
    category: str = "General"
    type: JobType = JobType.OTHER
    location: str = "Remote"
    description: str = ""
    posted_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Serialize to a JSON-safe dictionary."""
        d = asdict(self)
        d["type"] = self.type.value
        d["posted_at"] = _format_timestamp(self.posted_at)
        d["updated_at"] = _format_timestamp(self.updated_at)
        d["created_at"] = _format_timestamp(self.created_at)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["type"] = JobType(values.get("type", JobType.OTHER.value))
        for key in ("posted_at", "updated_at", "created_at"):
            if key in values:
                values[key] = _parse_timestamp(values[key])
        return cls(**values)

    def __repr__(self) -> str:
        return (
            f"Job(external_id={self.external_id!r}, title={self.title!r}, "
            f"company={self.company!r}, url={self.url!r})"
        )


@dataclass
class QueueItem:
    """Payload carried through the queue: one candidate plus its run."""

    job_candidate: Job
    import_run_id: str

    def to_dict(self) -> dict:
        return {
            "jobCandidate": self.job_candidate.to_dict(),
            "importRunId": self.import_run_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QueueItem":
        return cls(
            job_candidate=Job.from_dict(data["jobCandidate"]),
            import_run_id=data["importRunId"],
        )


@dataclass
class FetchResult:
    """Result of fetching one feed URL. Exactly one of raw_body/error is set."""

    url: str
    success: bool
    raw_body: Optional[bytes] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class Outcome:
    """Result of reconciling one candidate against the store.

    ``retryable`` tells the queue whether another attempt could succeed;
    validation failures never can.
    """

    action: Action
    external_id: str = ""
    reason: Optional[str] = None
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return self.action is not Action.FAILED

    @classmethod
    def created(cls, external_id: str) -> "Outcome":
        return cls(Action.CREATED, external_id)

    @classmethod
    def updated(cls, external_id: str) -> "Outcome":
        return cls(Action.UPDATED, external_id)

    @classmethod
    def failed(cls, external_id: str, reason: str, retryable: bool = False) -> "Outcome":
        return cls(Action.FAILED, external_id, reason, retryable)


@dataclass
class BatchResult:
    """Aggregate counts from processing a batch of candidates."""

    total: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def add(self, outcome: Outcome) -> None:
        if outcome.action is Action.CREATED:
            self.created += 1
        elif outcome.action is Action.UPDATED:
            self.updated += 1
        else:
            self.failed += 1
            self.errors.append(outcome.reason or "Unknown error")


@dataclass
class ImportRun:
    """One sweep across a set of feed URLs."""

    id: str
    source_label: str
    started_at: datetime = field(default_factory=utcnow)
    status: RunStatus = RunStatus.IN_PROGRESS
    total_fetched: int = 0
    queued_jobs: int = 0
    new_jobs: int = 0
    updated_jobs: int = 0
    failed_jobs: int = 0
    failed_reasons: list[str] = field(default_factory=list)
    duration_ms: int = 0
    finished_at: Optional[datetime] = None

    @property
    def settled_jobs(self) -> int:
        return self.new_jobs + self.updated_jobs + self.failed_jobs

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        d["started_at"] = _format_timestamp(self.started_at)
        d["finished_at"] = _format_timestamp(self.finished_at)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "ImportRun":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["status"] = RunStatus(values.get("status", RunStatus.IN_PROGRESS.value))
        for key in ("started_at", "finished_at"):
            if key in values:
                values[key] = _parse_timestamp(values[key])
        return cls(**values)
