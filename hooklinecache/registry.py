"""Registry binding the four logical cache roles to versioned cache names."""

import logging

from .config import CacheConfig
from .models import Request, Response
from .storage import Cache, CacheStorage

logger = logging.getLogger(__name__)


class CacheRegistry:
    """Owns the caches of one worker version.

    Each role (static, dynamic, images, api) maps to exactly one name such as
    "static-v1.0.0". Caches of any other name are stale and get purged.
    """

    def __init__(self, storage: CacheStorage, config: CacheConfig) -> None:
        self.storage = storage
        self.config = config

    def name_for(self, role: str) -> str:
        return self.config.name_for(role)

    @property
    def expected_names(self) -> tuple[str, ...]:
        """Cache names that belong to the current version."""
        return self.config.names

    def open(self, role: str) -> Cache:
        """Open the cache for a logical role."""
        return self.storage.open(self.name_for(role))

    def open_name(self, name: str) -> Cache:
        return self.storage.open(name)

    def stale_names(self) -> list[str]:
        """Existing caches whose name is not bound to any current role."""
        expected = set(self.expected_names)
        return [name for name in self.storage.keys() if name not in expected]

    def purge_stale(self) -> list[str]:
        """Delete every stale cache. Returns the deleted names."""
        deleted = []
        for name in self.stale_names():
            logger.info("Deleting old cache: %s", name)
            self.storage.delete(name)
            deleted.append(name)
        return deleted

    def match(self, request: Request | str) -> Response | None:
        """Look a request up across every cache."""
        return self.storage.match(request)

    def total_size(self) -> int:
        return self.storage.total_size()

    def usage(self) -> dict[str, int]:
        """Stored bytes per cache name."""
        return {name: self.storage.open(name).size() for name in self.storage.keys()}

    def reset(self) -> None:
        """Delete every cache, current and stale."""
        for name in self.storage.keys():
            self.storage.delete(name)
        logger.debug("Cache registry reset")
