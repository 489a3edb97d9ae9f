"""Map raw feed items onto the canonical Job schema.

Each canonical field has an ordered list of source aliases. The first alias
present with a non-empty value wins; otherwise the field default applies.
Strings are truncated to their schema bound, never rejected, and a bad or
missing date falls back to the processing time.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, NamedTuple, Optional

from jobimport.models import FIELD_LIMITS, Job, JobType, utcnow

logger = logging.getLogger(__name__)


class FieldRule(NamedTuple):
    """Ordered source aliases for one canonical field."""

    field: str
    aliases: tuple[str, ...]
    default: Optional[str] = None


FIELD_RULES: dict[str, FieldRule] = {
    rule.field: rule
    for rule in (
        FieldRule("title", ("title", "jobTitle", "position", "#text"), "Untitled Position"),
        FieldRule("company", ("company", "companyName", "employer", "organization"), "Unknown Company"),
        FieldRule("description", ("description", "summary", "content", "content:encoded"), ""),
        FieldRule("url", ("link", "url", "applyUrl", "apply_url", "guid")),  # default: feed URL
        FieldRule("location", ("location", "jobLocation", "city", "country"), "Remote"),
        FieldRule("category", ("category", "jobCategory", "department", "sector"), "General"),
        FieldRule("type", ("type", "jobType", "employmentType"), JobType.OTHER.value),
        FieldRule("external_id", ("id", "guid", "@_id")),  # default: synthesized
        FieldRule("posted_at", ("pubDate", "published", "date", "postedDate")),
    )
}

JOB_TYPE_ALIASES: dict[str, JobType] = {
    "full-time": JobType.FULL_TIME,
    "fulltime": JobType.FULL_TIME,
    "full time": JobType.FULL_TIME,
    "full_time": JobType.FULL_TIME,
    "part-time": JobType.PART_TIME,
    "parttime": JobType.PART_TIME,
    "part time": JobType.PART_TIME,
    "part_time": JobType.PART_TIME,
    "contract": JobType.CONTRACT,
    "contractor": JobType.CONTRACT,
    "temporary": JobType.CONTRACT,
    "freelance": JobType.FREELANCE,
    "freelancer": JobType.FREELANCE,
    "remote": JobType.REMOTE,
}

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%m/%d/%Y",
)

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


# ── Field access ───────────────────────────────────────────────────────────


def _scalar(value: Any) -> Optional[str]:
    """Reduce a parsed XML value to a string.

    Lists resolve to their first element; elements with attributes resolve
    to their text, or to ``href`` for Atom-style ``<link href=.../>``.
    """
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("#text") or value.get("@_href")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def first_present(raw: dict, aliases: tuple[str, ...]) -> Optional[str]:
    """Return the value of the first alias with a non-empty value."""
    for alias in aliases:
        value = _scalar(raw.get(alias))
        if value:
            return value
    return None


def apply_rule(raw: dict, rule: FieldRule) -> Optional[str]:
    value = first_present(raw, rule.aliases)
    return value if value is not None else rule.default


def truncate(value: str, field_name: str) -> str:
    return value[: FIELD_LIMITS[field_name]]


# ── Value normalization ────────────────────────────────────────────────────


def normalize_job_type(value: Optional[str]) -> JobType:
    """Map a free-form employment type onto the JobType enum."""
    if not value:
        return JobType.OTHER
    key = " ".join(value.lower().split())
    return JOB_TYPE_ALIASES.get(key, JobType.OTHER)


def synthesize_external_id(source_url: str, title: str, company: str) -> str:
    """Build a deterministic identity for items that carry no id/guid."""
    return _NON_ALNUM.sub("-", f"{source_url}-{title}-{company}").lower()


def parse_posted_at(value: Optional[str], default: datetime) -> datetime:
    """Parse an RSS/Atom/common date string, or return ``default``."""
    if not value:
        return default

    parsed: Optional[datetime] = None
    try:
        parsed = parsedate_to_datetime(value)  # RFC 822, as used by RSS pubDate
    except (TypeError, ValueError, IndexError):
        pass

    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass

    if parsed is None:
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        logger.debug("Could not parse date: %r", value)
        return default

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Public API ─────────────────────────────────────────────────────────────


def normalize(raw: dict, source_url: str, now: datetime | None = None) -> Job:
    """Turn one raw feed item into a Job candidate."""
    now = now or utcnow()

    title = apply_rule(raw, FIELD_RULES["title"])
    company = apply_rule(raw, FIELD_RULES["company"])
    external_id = apply_rule(raw, FIELD_RULES["external_id"]) or synthesize_external_id(
        source_url, title, company
    )
    url = apply_rule(raw, FIELD_RULES["url"]) or source_url

    return Job(
        external_id=truncate(external_id, "external_id"),
        url=truncate(url, "url"),
        title=truncate(title, "title"),
        company=truncate(company, "company"),
        category=truncate(apply_rule(raw, FIELD_RULES["category"]), "category"),
        type=normalize_job_type(apply_rule(raw, FIELD_RULES["type"])),
        location=truncate(apply_rule(raw, FIELD_RULES["location"]), "location"),
        description=truncate(apply_rule(raw, FIELD_RULES["description"]), "description"),
        posted_at=parse_posted_at(apply_rule(raw, FIELD_RULES["posted_at"]), now),
        updated_at=now,
    )


def normalize_all(raw_items: list[dict], source_url: str) -> list[Job]:
    now = utcnow()
    return [normalize(raw, source_url, now) for raw in raw_items]
