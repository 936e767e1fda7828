"""
Feed download with a hard timeout.
"""

import hashlib
import time
from dataclasses import dataclass
from pathlib import Path

import httpx

from feedgate.core.errors import FailureKind, FetchError
from feedgate.observability import metrics
from feedgate.observability.logger import get_logger

logger = get_logger(__name__)

USER_AGENT = "feedgate/0.1 (+feed ingestion)"


@dataclass
class FetchedFeed:
    url: str
    content: str
    status_code: int

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()

    @property
    def size_bytes(self) -> int:
        return len(self.content.encode("utf-8"))


class FeedFetcher:
    """
    Downloads feed content over HTTP(S), or reads file:// URLs.

    Every failure is raised as FetchError; the run never sees a partial body.
    """

    def __init__(self, timeout: float = 30.0, transport: httpx.BaseTransport | None = None):
        """
        Initialize the fetcher.

        Args:
            timeout: Seconds allowed for the whole download, body included
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.timeout = timeout
        self.transport = transport

    def fetch(self, url: str, feed_id: str = "unknown") -> FetchedFeed:
        """
        Fetch a feed.

        Args:
            url: http(s):// or file:// location
            feed_id: Used for metrics and log context

        Returns:
            FetchedFeed with the decoded body

        The body is streamed and checked against a deadline of timeout seconds
        from the start of the request, so a server trickling bytes cannot hold
        the run open. No partial body is ever returned.

        Raises:
            FetchError: On timeout, transport failure or non-2xx status
        """
        if url.startswith("file://"):
            return self._read_file(url, feed_id)

        deadline = time.monotonic() + self.timeout
        with metrics.track_duration(metrics.fetch_duration_seconds, feed_id=feed_id):
            try:
                with httpx.Client(
                    timeout=self.timeout,
                    follow_redirects=True,
                    transport=self.transport,
                    headers={"User-Agent": USER_AGENT},
                ) as client:
                    with client.stream("GET", url) as response:
                        if not response.is_success:
                            raise self._record(
                                FetchError(
                                    f"HTTP {response.status_code} fetching {url}",
                                    status_code=response.status_code,
                                ),
                                feed_id,
                            )
                        body = self._read_body(response, deadline)
            except httpx.TimeoutException as e:
                raise self._timed_out(url, feed_id) from e
            except httpx.HTTPError as e:
                raise self._record(FetchError(f"Failed to fetch {url}: {e}"), feed_id) from e

        if body is None:
            raise self._timed_out(url, feed_id)

        logger.info(
            f"Fetched feed {feed_id}",
            extra={"feed_id": feed_id, "status_code": response.status_code, "size_bytes": len(body)},
        )
        content = body.decode(response.charset_encoding or "utf-8", errors="replace")
        return FetchedFeed(url=url, content=content, status_code=response.status_code)

    @staticmethod
    def _read_body(response: httpx.Response, deadline: float) -> bytes | None:
        """Read the body in chunks; None once the deadline passes."""
        chunks = []
        for chunk in response.iter_bytes():
            if time.monotonic() > deadline:
                return None
            chunks.append(chunk)
        return b"".join(chunks)

    def _timed_out(self, url: str, feed_id: str) -> FetchError:
        return self._record(FetchError(f"Timed out after {self.timeout}s fetching {url}", timed_out=True), feed_id)

    def _read_file(self, url: str, feed_id: str) -> FetchedFeed:
        path = Path(url[len("file://"):])
        try:
            content = path.read_text(encoding="utf-8-sig")
        except OSError as e:
            raise self._record(
                FetchError(f"Cannot read {path}: {e}", kind=FailureKind.CONFIG), feed_id
            ) from e
        return FetchedFeed(url=url, content=content, status_code=200)

    @staticmethod
    def _record(error: FetchError, feed_id: str) -> FetchError:
        metrics.increment_counter(metrics.fetch_failures_total, feed_id=feed_id, code=error.code)
        logger.warning(
            error.message,
            extra={"feed_id": feed_id, "error_code": error.code, "status_code": error.status_code},
        )
        return error
