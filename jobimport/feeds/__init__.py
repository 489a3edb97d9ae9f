from .client import FeedClient
from .extractor import extract
from .normalizer import normalize, normalize_all
from .xml import parse_feed

__all__ = [
    "FeedClient",
    "extract",
    "normalize",
    "normalize_all",
    "parse_feed",
]
