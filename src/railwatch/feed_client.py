"""HTTP fetching for upstream rail feeds."""

import logging
import time
from typing import Optional

import requests

from .config import HTTP_TIMEOUT, USER_AGENT
from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class FeedClient:
    """Fetches raw feed payloads over HTTP."""

    def __init__(
        self,
        agency: str,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT,
    ):
        """
        Initialize the client.

        Args:
            agency: Agency name, used in log lines and errors.
            session: Optional shared requests session.
            timeout: Per-request timeout in seconds.
        """
        self.agency = agency
        self.timeout = timeout
        self.session = session or requests.Session()
        # A fresh Session already carries the python-requests agent
        if self.session.headers.get("User-Agent") in (None, requests.utils.default_user_agent()):
            self.session.headers["User-Agent"] = USER_AGENT

    def fetch(self, url: str, cache_bust: bool = False) -> bytes:
        """
        Fetch a feed.

        Args:
            url: Feed URL.
            cache_bust: Append a "?<epoch ms>=true" query parameter.

        Returns:
            Raw response bytes.

        Raises:
            UpstreamUnavailable: On any network error or non-2xx status.
        """
        params = {str(int(time.time() * 1000)): "true"} if cache_bust else None
        logger.debug(f"[{self.agency}] Fetching {url}")
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"Failed to fetch {url}: {e}", agency=self.agency) from e
        return response.content

    def fetch_text(self, url: str, cache_bust: bool = False) -> str:
        """Fetch a feed and decode it as UTF-8 text."""
        return self.fetch(url, cache_bust=cache_bust).decode("utf-8", errors="replace")

    def close(self) -> None:
        self.session.close()
