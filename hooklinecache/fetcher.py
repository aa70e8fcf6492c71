"""Network access to the application origin."""

import json
import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urljoin

import requests

from .config import NetworkConfig
from .models import Request, Response

logger = logging.getLogger(__name__)

# Hop-by-hop headers never copied between the origin and stored responses.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "content-encoding",
        "content-length",
    }
)

# Headers that force an unconditional request past any HTTP cache.
RELOAD_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}

ResponseObserver = Callable[[str, int, float], None]


class NetworkError(Exception):
    """Raised when a request cannot be completed (DNS, connection, timeout)."""

    pass


class NetworkTimeout(NetworkError):
    """Raised when the network loses a race against a timeout."""

    pass


def _filter_headers(headers: Any) -> dict[str, str]:
    return {key: value for key, value in headers.items() if key.lower() not in HOP_BY_HOP_HEADERS}


class Fetcher:
    """Performs requests against the configured origin using requests.

    Origin-relative URLs ("/index.html") are resolved against the origin;
    absolute URLs are fetched as-is. Every completed response is reported to
    the optional observer as (url, size_bytes, duration_ms).
    """

    def __init__(
        self,
        config: NetworkConfig,
        on_response: ResponseObserver | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self._on_response = on_response
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = config.user_agent

    def resolve(self, url: str) -> str:
        """Return the absolute URL for an origin-relative or absolute URL."""
        return urljoin(self.config.origin + "/", url)

    def fetch(self, request: Request, bypass_cache: bool = False) -> Response:
        """Send a request and return the response, whatever its status.

        Args:
            request: The request to send.
            bypass_cache: Send an unconditional request past HTTP caches.

        Raises:
            NetworkError: If the request could not be completed.
        """
        headers = dict(request.headers)
        if bypass_cache:
            headers.update(RELOAD_HEADERS)

        target = self.resolve(request.url)
        start = time.monotonic()
        try:
            raw = self._session.request(
                request.method,
                target,
                headers=headers,
                data=request.body,
                timeout=self.config.request_timeout,
                allow_redirects=True,
            )
        except requests.Timeout as e:
            raise NetworkError(f"Request to {target} timed out: {e}")
        except requests.RequestException as e:
            raise NetworkError(f"Request to {target} failed: {e}")

        elapsed_ms = (time.monotonic() - start) * 1000
        response = Response(
            status=raw.status_code,
            body=raw.content,
            headers=_filter_headers(raw.headers),
            status_text=raw.reason or "",
            url=request.url,
        )
        logger.debug("%s %s -> %d (%.0fms)", request.method, request.url, response.status, elapsed_ms)

        if self._on_response is not None:
            try:
                self._on_response(request.url, response.size, elapsed_ms)
            except Exception as e:
                logger.error("Response observer failed: %s", e)

        return response

    def post_json(self, url: str, payload: Any) -> Response:
        """POST a JSON document to the origin."""
        body = json.dumps(payload).encode("utf-8")
        return self.fetch(
            Request(
                url=url,
                method="POST",
                headers={"Content-Type": "application/json"},
                body=body,
            )
        )

    def close(self) -> None:
        self._session.close()
