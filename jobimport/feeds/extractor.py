"""Locate the repeating job items inside a parsed feed.

Feeds arrive in several shapes. Each shape is a path of keys from the
document root to the repeating element, tried in a fixed order; the first
one that resolves wins. Some feeds structurally satisfy more than one shape,
so the order matters and must not change:

  1. RSS          rss.channel.item
  2. Atom         feed.entry
  3. Job list     jobs.job
  4. Bare job     job
  5. A top-level list of items

A document matching none of them yields zero items, not an error.
"""

from __future__ import annotations

import logging
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)


class FeedShape(NamedTuple):
    name: str
    path: tuple[str, ...]


FEED_SHAPES: tuple[FeedShape, ...] = (
    FeedShape("rss", ("rss", "channel", "item")),
    FeedShape("atom", ("feed", "entry")),
    FeedShape("job-list", ("jobs", "job")),
    FeedShape("bare-job", ("job",)),
)


def _resolve(parsed: Any, path: tuple[str, ...]) -> Any:
    node = parsed
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
        if not node:
            return None
    return node


def _as_items(value: Any) -> list[dict]:
    items = value if isinstance(value, list) else [value]
    # A text-only <item> parses to a bare string; keep it as a record so the
    # normalizer can still fall back to its text.
    return [item if isinstance(item, dict) else {"#text": item} for item in items]


def detect_shape(parsed: Any) -> FeedShape | None:
    """Return the first shape the parsed document satisfies, if any."""
    for shape in FEED_SHAPES:
        if _resolve(parsed, shape.path) is not None:
            return shape
    if isinstance(parsed, list):
        return FeedShape("list", ())
    return None


def extract(parsed: Any, source_url: str) -> list[dict]:
    """Return the raw per-item records found in a parsed feed."""
    shape = detect_shape(parsed)
    if shape is None:
        logger.warning("No recognizable job items in feed from %s", source_url)
        return []

    found = parsed if not shape.path else _resolve(parsed, shape.path)
    items = _as_items(found)
    logger.info("Extracted %d jobs from %s (shape=%s)", len(items), source_url, shape.name)
    return items
