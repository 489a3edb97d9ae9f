"""Exception types raised across the import pipeline."""

from __future__ import annotations


class JobImportError(Exception):
    """Base class for all pipeline errors."""


class FetchError(JobImportError):
    """A feed URL could not be fetched (network, timeout, non-2xx, empty body)."""


class FeedParseError(FetchError):
    """A feed body was fetched but is not well-formed XML."""


class ValidationError(JobImportError):
    """A candidate is missing one of its identity-bearing fields."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required fields: {', '.join(missing)}")


class DuplicateKeyError(JobImportError):
    """A write would violate the store's unique index on a field."""

    def __init__(self, field_name: str, value: str):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Duplicate key on {field_name}: {value!r}")


class QueueError(JobImportError):
    """The queue cannot accept work (closed or unavailable)."""


class RunNotFoundError(JobImportError):
    """No import run exists with the requested id."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Import run {run_id} not found")
