"""HTTP client for XML job feeds.

Every feed URL is fetched independently. Nothing raises out of ``fetch``:
network errors, timeouts, non-2xx responses and empty bodies all come back
as a ``FetchResult`` with ``success=False`` and a readable error string.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

import requests

from jobimport.config import PipelineConfig
from jobimport.errors import FetchError
from jobimport.models import FetchResult

logger = logging.getLogger(__name__)


class FeedClient:
    """Fetches raw feed bytes with a fixed timeout and user-agent.

    Each thread gets its own ``requests.Session``; sessions are not shared
    between the workers of ``fetch_many``.
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The calling thread's session, created on first use."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": self.config.user_agent})
            self._local.session = session
        return session

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def fetch(self, url: str) -> FetchResult:
        """Fetch one feed URL."""
        logger.info("Fetching jobs from: %s", url)
        try:
            body = self._get(url)
        except (requests.RequestException, FetchError) as exc:
            logger.error("Error fetching from %s: %s", url, exc)
            return FetchResult(url=url, success=False, error=str(exc))

        logger.debug("Fetched %d bytes from %s", len(body), url)
        return FetchResult(url=url, success=True, raw_body=body)

    def fetch_many(self, urls: list[str]) -> list[FetchResult]:
        """Fetch all URLs in parallel.

        Results come back in completion order, not submission order.
        """
        if not urls:
            return []

        results: list[FetchResult] = []
        workers = max(1, min(self.config.max_fetch_workers, len(urls)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.fetch, url) for url in urls]
            for future in as_completed(futures):
                results.append(future.result())

        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.warning("Failed to fetch %d of %d feeds", failed, len(results))
        return results

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _get(self, url: str) -> bytes:
        resp = self.session.get(url, timeout=self.config.request_timeout_seconds)
        resp.raise_for_status()
        if not resp.content or not resp.content.strip():
            raise FetchError("No data received from XML feed")
        return resp.content
