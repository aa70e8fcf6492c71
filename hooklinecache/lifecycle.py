"""Worker lifecycle: install, activate and client takeover."""

import logging
import threading
from collections.abc import Callable

from .config import AssetsConfig
from .fetcher import NetworkError
from .models import DYNAMIC_ROLE, STATIC_ROLE, Request, Response
from .registry import CacheRegistry
from .storage import StorageError

logger = logging.getLogger(__name__)

# Worker states, in lifecycle order.
PARSED = "parsed"
INSTALLING = "installing"
INSTALLED = "installed"
ACTIVATING = "activating"
ACTIVATED = "activated"
REDUNDANT = "redundant"

ACTIVE_VERSION_KEY = "active_version"

# Opened window URLs kept for inspection; older ones are dropped.
MAX_OPENED_WINDOWS = 50

Fetch = Callable[..., Response]


class InstallError(Exception):
    """Raised when pre-populating the caches fails. The worker becomes redundant."""

    pass


class Clients:
    """Pages (clients) known to the worker and which version controls them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._controller: dict[str, str | None] = {}
        self._opened: list[str] = []

    def add(self, client_id: str, controller: str | None = None) -> None:
        with self._lock:
            self._controller.setdefault(client_id, controller)

    def claim(self, version: str) -> int:
        """Take control of every known client. Returns the number claimed."""
        with self._lock:
            for client_id in self._controller:
                self._controller[client_id] = version
            return len(self._controller)

    def controller_of(self, client_id: str) -> str | None:
        with self._lock:
            return self._controller.get(client_id)

    def open_window(self, url: str) -> None:
        with self._lock:
            self._opened.append(url)
            del self._opened[:-MAX_OPENED_WINDOWS]
        logger.info("Opening client window at %s", url)

    @property
    def opened_windows(self) -> list[str]:
        with self._lock:
            return list(self._opened)

    def __len__(self) -> int:
        with self._lock:
            return len(self._controller)


class Lifecycle:
    """Install/activate state machine for one worker version.

    States: parsed -> installing -> installed -> activating -> activated,
    or redundant when install fails.
    """

    def __init__(
        self,
        version: str,
        registry: CacheRegistry,
        assets: AssetsConfig,
        fetch: Fetch,
        clients: Clients | None = None,
    ) -> None:
        self.version = version
        self.registry = registry
        self.assets = assets
        self._fetch = fetch
        self.clients = clients or Clients()
        self.state = PARSED
        self._skip_waiting = False
        self._lock = threading.RLock()

    @property
    def skip_waiting_requested(self) -> bool:
        return self._skip_waiting

    def install(self) -> None:
        """Pre-populate the static and dynamic caches.

        Critical assets are fetched past any HTTP cache. A single failed
        fetch fails the whole install. A successful install requests
        skip-waiting, so the caller activates straight away.

        Raises:
            InstallError: If any pre-cache fetch fails.
        """
        with self._lock:
            logger.info("Installing worker version %s", self.version)
            self.state = INSTALLING
            try:
                logger.info("Caching critical assets")
                self.registry.open(STATIC_ROLE).add_all(
                    self.assets.critical,
                    lambda request: self._fetch(request, bypass_cache=True),
                )

                logger.info("Pre-caching conversion components")
                self.registry.open(DYNAMIC_ROLE).add_all(
                    [Request(url=url) for url in self.assets.precache],
                    self._fetch,
                )
            except (NetworkError, StorageError) as e:
                self.state = REDUNDANT
                logger.error("Install of version %s failed: %s", self.version, e)
                raise InstallError(f"Install of version {self.version} failed: {e}")

            self.state = INSTALLED
            self._skip_waiting = True

    def skip_waiting(self) -> None:
        """Activate without waiting for older versions to release their clients.

        Before install completes this only records the request.
        """
        with self._lock:
            self._skip_waiting = True
            if self.state == INSTALLED:
                self.activate()

    def activate(self) -> list[str]:
        """Delete stale caches and claim all clients.

        Returns:
            Names of the caches that were deleted.
        """
        with self._lock:
            if self.state == ACTIVATED:
                return []
            if self.state != INSTALLED:
                raise InstallError(f"Cannot activate version {self.version} in state '{self.state}'")

            logger.info("Activating worker version %s", self.version)
            self.state = ACTIVATING
            deleted = self.registry.purge_stale()
            claimed = self.clients.claim(self.version)
            self.registry.storage.set_meta(ACTIVE_VERSION_KEY, self.version)
            self.state = ACTIVATED
            logger.info(
                "Version %s activated (%d stale caches removed, %d clients claimed)",
                self.version,
                len(deleted),
                claimed,
            )
            return deleted

    @property
    def is_active(self) -> bool:
        return self.state == ACTIVATED
