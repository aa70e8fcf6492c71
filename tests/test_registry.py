"""Tests for the cache registry."""

import logging

import pytest

from hooklinecache.config import CacheConfig
from hooklinecache.registry import CacheRegistry
from hooklinecache.storage import CacheStorage

from .conftest import ok


class TestCacheRegistry:
    """Tests for role-to-name binding and stale cache purging."""

    def test_open_uses_versioned_name(self, registry: CacheRegistry, storage: CacheStorage) -> None:
        cache = registry.open("images")

        assert cache.name == "images-v1.0.0"
        assert storage.has("images-v1.0.0")

    def test_expected_names(self, registry: CacheRegistry) -> None:
        assert registry.expected_names == ("static-v1.0.0", "dynamic-v1.0.0", "images-v1.0.0", "api-v1.0.0")

    def test_stale_names(self, registry: CacheRegistry, storage: CacheStorage) -> None:
        storage.open("static-v0.9.0")
        registry.open("static")
        storage.open("old-cache-x")

        assert registry.stale_names() == ["static-v0.9.0", "old-cache-x"]

    def test_purge_deletes_only_stale(
        self, registry: CacheRegistry, storage: CacheStorage, caplog: pytest.LogCaptureFixture
    ) -> None:
        """With the current four caches plus 'old-cache-x', only the latter goes."""
        for name in registry.expected_names:
            storage.open(name)
        storage.open("old-cache-x").put("/x", ok())

        with caplog.at_level(logging.INFO):
            deleted = registry.purge_stale()

        assert deleted == ["old-cache-x"]
        assert storage.keys() == list(registry.expected_names)
        assert "Deleting old cache: old-cache-x" in caplog.text

    def test_version_bump_makes_old_caches_stale(self, storage: CacheStorage) -> None:
        old = CacheRegistry(storage, CacheConfig(version="1.0.0"))
        for role in ("static", "dynamic", "images", "api"):
            old.open(role)

        new = CacheRegistry(storage, CacheConfig(version="1.1.0"))
        new.open("static")

        assert new.purge_stale() == ["static-v1.0.0", "dynamic-v1.0.0", "images-v1.0.0", "api-v1.0.0"]
        assert storage.keys() == ["static-v1.1.0"]

    def test_usage_and_total_size(self, registry: CacheRegistry) -> None:
        registry.open("static").put("/index.html", ok(b"a" * 1000))
        registry.open("images").put("/hero.png", ok(b"b" * 2000))

        assert registry.usage() == {"static-v1.0.0": 1000, "images-v1.0.0": 2000}
        assert registry.total_size() == 3000

    def test_match_looks_in_every_cache(self, registry: CacheRegistry) -> None:
        registry.open("dynamic").put("/offline.html", ok("offline"))
        assert registry.match("/offline.html").body == b"offline"

    def test_reset_deletes_everything(self, registry: CacheRegistry, storage: CacheStorage) -> None:
        registry.open("static").put("/", ok())
        storage.open("old-cache-x")

        registry.reset()

        assert storage.keys() == []
