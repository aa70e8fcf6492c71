"""Shared fixtures: a scripted fetcher and a store in a temporary directory."""

import json
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from hooklinecache.classifier import Classifier
from hooklinecache.config import AssetsConfig, CacheConfig, Config, NetworkConfig, StorageConfig
from hooklinecache.fetcher import NetworkError
from hooklinecache.models import Request, Response
from hooklinecache.registry import CacheRegistry
from hooklinecache.storage import CacheStorage, init_db
from hooklinecache.tasks import BackgroundTasks

ORIGIN = "https://hookline.test"


def ok(body: bytes | str = b"ok", content_type: str = "text/plain") -> Response:
    """Build a 200 response."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return Response(status=200, body=body, headers={"Content-Type": content_type}, status_text="OK")


class FakeFetcher:
    """Fetcher double answering from a route table.

    A route maps a URL to a Response (returned) or an exception (raised).
    Unrouted URLs raise NetworkError. block(url) holds fetches of that URL
    until the returned event is set.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes: dict[str, Any] = dict(routes or {})
        self.calls: list[Request] = []
        self.bypassed: list[str] = []
        self.posted: list[tuple[str, Any]] = []
        self.closed = False
        self._gates: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def respond(self, url: str, result: Any) -> None:
        self.routes[url] = result

    def block(self, url: str) -> threading.Event:
        gate = threading.Event()
        self._gates[url] = gate
        return gate

    def release_all(self) -> None:
        for gate in self._gates.values():
            gate.set()

    def fetch(self, request: Request, bypass_cache: bool = False) -> Response:
        with self._lock:
            self.calls.append(request)
            if bypass_cache:
                self.bypassed.append(request.url)

        gate = self._gates.get(request.url)
        if gate is not None:
            gate.wait(timeout=5)

        result = self.routes.get(request.url)
        if result is None:
            raise NetworkError(f"No route for {request.url}")
        if isinstance(result, Exception):
            raise result
        return result

    def post_json(self, url: str, payload: Any) -> Response:
        with self._lock:
            self.posted.append((url, payload))
        body = json.dumps(payload).encode("utf-8")
        return self.fetch(Request(url=url, method="POST", headers={"Content-Type": "application/json"}, body=body))

    def call_count(self, url: str) -> int:
        with self._lock:
            return sum(1 for request in self.calls if request.url == url)

    def close(self) -> None:
        self.closed = True


def route_install_assets(fetcher: FakeFetcher, assets: AssetsConfig) -> None:
    """Give every pre-cached asset a 200 response."""
    for url in assets.critical + assets.precache:
        fetcher.respond(url, ok(f"content of {url}"))


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "caches.db")


@pytest.fixture
def config(db_path: str) -> Config:
    """Config pointing at a temporary store and a fake origin."""
    return Config(
        network=NetworkConfig(origin=ORIGIN, timeout_ms=200),
        storage=StorageConfig(path=db_path),
    )


@pytest.fixture
def storage(db_path: str) -> Iterator[CacheStorage]:
    store = CacheStorage(init_db(db_path))
    yield store
    store.close()


@pytest.fixture
def registry(storage: CacheStorage) -> CacheRegistry:
    return CacheRegistry(storage, CacheConfig())


@pytest.fixture
def fetcher() -> Iterator[FakeFetcher]:
    fake = FakeFetcher()
    yield fake
    fake.release_all()


@pytest.fixture
def tasks(fetcher: FakeFetcher) -> Iterator[BackgroundTasks]:
    pool = BackgroundTasks(max_workers=4, error_log_size=10)
    yield pool
    fetcher.release_all()
    pool.shutdown()


@pytest.fixture
def classifier() -> Classifier:
    return Classifier(AssetsConfig())
