"""Convert an XML feed document into a generic nested dictionary.

The extractor and normalizer never look at XML directly; they work on the
plain key-value tree built here:

  - the root element becomes the single top-level key
  - repeated child elements collapse into a list
  - attributes become ``@_<name>`` keys
  - text next to child elements or attributes becomes ``#text``
  - a leaf element with no attributes becomes its stripped text
  - namespace prefixes stay in the key (``content:encoded``)
"""

from __future__ import annotations

import logging
from typing import Any

from bs4 import BeautifulSoup, CData, NavigableString, Tag
from bs4.builder import ParserRejectedMarkup

from jobimport.errors import FeedParseError

logger = logging.getLogger(__name__)

ATTRIBUTE_PREFIX = "@_"
TEXT_KEY = "#text"


def parse_feed(raw: bytes | str) -> dict[str, Any]:
    """Parse a raw feed body into a nested dictionary."""
    if not raw or not raw.strip():
        raise FeedParseError("Empty feed body")

    try:
        soup = BeautifulSoup(raw, "xml")
    except ParserRejectedMarkup as exc:
        raise FeedParseError(f"Feed is not valid XML: {exc}") from exc

    root = next((c for c in soup.children if isinstance(c, Tag)), None)
    if root is None:
        raise FeedParseError("No XML root element found")

    key = _tag_key(root)
    logger.debug("Parsed feed document with root <%s>", key)
    return {key: _convert(root)}


def _tag_key(tag: Tag) -> str:
    if tag.prefix and ":" not in tag.name:
        return f"{tag.prefix}:{tag.name}"
    return tag.name


def _own_text(tag: Tag) -> str:
    # Comments, declarations and processing instructions are NavigableString
    # subclasses too; only plain text and CDATA count.
    parts = [str(s) for s in tag.children if type(s) in (NavigableString, CData)]
    return "".join(parts).strip()


def _convert(tag: Tag) -> Any:
    attrs = {
        f"{ATTRIBUTE_PREFIX}{name}": value
        for name, value in tag.attrs.items()
        if not str(name).startswith("xmlns")
    }
    children = [c for c in tag.children if isinstance(c, Tag)]
    text = _own_text(tag)

    if not children and not attrs:
        return text

    node: dict[str, Any] = dict(attrs)
    for child in children:
        key = _tag_key(child)
        value = _convert(child)
        if key not in node:
            node[key] = value
        elif isinstance(node[key], list):
            node[key].append(value)
        else:
            node[key] = [node[key], value]

    if text:
        node[TEXT_KEY] = text
    return node
