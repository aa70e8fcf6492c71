"""Caching strategies resolving a single request to a response.

- Cache-first: critical and image assets. Serve the cached copy and refresh
  it in the background; fetch on a miss.
- Network-first: API requests and unclassified URLs. Race the network
  against a timeout and fall back to the cache.
- Stale-while-revalidate: source assets. Serve the cached copy at once while
  a background fetch updates it.
"""

import logging

from .classifier import Classifier
from .fetcher import Fetcher, NetworkError, NetworkTimeout
from .models import (
    API,
    API_ROLE,
    CRITICAL,
    DEFAULT,
    DYNAMIC,
    DYNAMIC_ROLE,
    IMAGE,
    IMAGES_ROLE,
    STATIC_ROLE,
    Request,
    Response,
)
from .registry import CacheRegistry
from .storage import Cache, StorageError
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)

CACHE_FIRST = "cache-first"
NETWORK_FIRST = "network-first"
STALE_WHILE_REVALIDATE = "stale-while-revalidate"

# Asset class -> (strategy, cache role)
STRATEGY_TABLE = {
    CRITICAL: (CACHE_FIRST, STATIC_ROLE),
    IMAGE: (CACHE_FIRST, IMAGES_ROLE),
    API: (NETWORK_FIRST, API_ROLE),
    DYNAMIC: (STALE_WHILE_REVALIDATE, DYNAMIC_ROLE),
    DEFAULT: (NETWORK_FIRST, DYNAMIC_ROLE),
}


def offline_response() -> Response:
    return Response(
        status=503,
        body=b"Offline",
        headers={"Content-Type": "text/plain; charset=utf-8"},
        status_text="Service Unavailable",
    )


def not_found_response() -> Response:
    return Response(
        status=404,
        body=b"Not found",
        headers={"Content-Type": "text/plain; charset=utf-8"},
        status_text="Not Found",
    )


class StrategyExecutor:
    """Runs the caching strategies against one cache registry."""

    def __init__(
        self,
        registry: CacheRegistry,
        fetcher: Fetcher,
        classifier: Classifier,
        tasks: BackgroundTasks,
        offline_page: str = "/offline.html",
        timeout_ms: int = 3000,
    ) -> None:
        self.registry = registry
        self.fetcher = fetcher
        self.classifier = classifier
        self.tasks = tasks
        self.offline_page = offline_page
        self.timeout_ms = timeout_ms

    def run(self, strategy: str, request: Request, cache_name: str) -> Response:
        """Dispatch to a strategy by name."""
        if strategy == CACHE_FIRST:
            return self.cache_first(request, cache_name)
        if strategy == NETWORK_FIRST:
            return self.network_first(request, cache_name)
        if strategy == STALE_WHILE_REVALIDATE:
            return self.stale_while_revalidate(request, cache_name)
        raise ValueError(f"Unknown caching strategy: {strategy}")

    def cache_first(self, request: Request, cache_name: str) -> Response:
        """Serve from cache, refreshing in the background; fetch on a miss.

        On any failure, critical assets get the offline page (or a 503 stub);
        other assets re-raise.
        """
        try:
            cache = self.registry.open_name(cache_name)
            cached = cache.match(request)

            if cached is not None:
                self.tasks.spawn("revalidate", self._refresh, request, cache, url=request.url)
                return cached

            response = self.fetcher.fetch(request)
            if response.ok:
                cache.put(request, response)
            return response

        except (NetworkError, StorageError) as e:
            logger.error("Cache first error for %s: %s", request.url, e)
            if self.classifier.is_critical_asset(request.url):
                return self._offline_fallback()
            raise

    def network_first(self, request: Request, cache_name: str, timeout_ms: int | None = None) -> Response:
        """Race the network against a timeout, falling back to the cache.

        A fetch that loses the race keeps running but its result is ignored:
        it is neither returned nor written to the cache.

        Raises:
            NetworkTimeout: Timed out and nothing cached.
            NetworkError: Fetch failed and nothing cached.
        """
        if timeout_ms is None:
            timeout_ms = self.timeout_ms

        cache = self.registry.open_name(cache_name)
        future = self.tasks.run_now("network-race", self.fetcher.fetch, request)

        try:
            response = future.result(timeout=timeout_ms / 1000)
        except TimeoutError:
            error: NetworkError = NetworkTimeout(f"Network timeout after {timeout_ms}ms for {request.url}")
        except NetworkError as e:
            error = e
        else:
            if response.ok:
                cache.put(request, response)
            return response

        cached = cache.match(request)
        if cached is not None:
            logger.info("Serving %s from cache due to network error: %s", request.url, error)
            return cached

        logger.error("Network first error for %s: %s", request.url, error)
        raise error

    def stale_while_revalidate(self, request: Request, cache_name: str) -> Response:
        """Serve the cached copy immediately while a background fetch refreshes it.

        Without a cached copy, wait for the fetch; if it failed, return 404.
        """
        cache = self.registry.open_name(cache_name)
        cached = cache.match(request)

        future = self.tasks.spawn("revalidate", self._refresh, request, cache, url=request.url)

        if cached is not None:
            return cached

        response = future.result()
        if response is None:
            return not_found_response()
        return response

    def _refresh(self, request: Request, cache: Cache) -> Response:
        """Fetch a request and store the response if ok."""
        response = self.fetcher.fetch(request)
        if response.ok:
            cache.put(request, response)
        return response

    def _offline_fallback(self) -> Response:
        try:
            page = self.registry.match(self.offline_page)
        except StorageError as e:
            logger.error("Offline page lookup failed: %s", e)
            page = None
        return page if page is not None else offline_response()
