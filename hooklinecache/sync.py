"""Background sync of pending analytics.

Page code stores a pending analytics document in the API cache. When the
sync tag fires, the document is posted to the batch endpoint and removed
once the endpoint accepts it. Failures are only logged; the document stays
in the cache for the next sync attempt.
"""

import json
import logging

from .config import SyncConfig
from .fetcher import Fetcher, NetworkError
from .models import API_ROLE, Response
from .registry import CacheRegistry
from .storage import StorageError

logger = logging.getLogger(__name__)


class AnalyticsSync:
    """Flushes the pending analytics document on the configured sync tag."""

    def __init__(self, config: SyncConfig, registry: CacheRegistry, fetcher: Fetcher) -> None:
        self.config = config
        self._registry = registry
        self._fetcher = fetcher

    def handle(self, tag: str) -> bool:
        """Handle a sync event. Tags other than the configured one are ignored.

        Returns:
            True if pending analytics were delivered and cleared.
        """
        logger.info("Background sync: %s", tag)
        if tag != self.config.tag:
            return False
        return self.flush()

    def flush(self) -> bool:
        """Post the pending document, if any, and clear it on success.

        Returns:
            True if a document was delivered and removed from the cache.
        """
        try:
            logger.info("Syncing analytics data")
            cache = self._registry.open(API_ROLE)
            stored = cache.match(self.config.pending_key)
            if stored is None:
                logger.debug("No pending analytics to sync")
                return False

            data = stored.json()
            response = self._fetcher.post_json(self.config.batch_endpoint, data)

            if not response.ok:
                logger.warning("Analytics batch endpoint returned %d, keeping pending data", response.status)
                return False

            cache.delete(self.config.pending_key)
            logger.info("Analytics synced successfully")
            return True

        except (NetworkError, StorageError, ValueError) as e:
            logger.error("Analytics sync failed: %s", e)
            return False

    def has_pending(self) -> bool:
        return self._registry.open(API_ROLE).match(self.config.pending_key) is not None

    def store_pending(self, payload: object) -> None:
        """Store an analytics document for the next sync.

        The proxy calls this for pages that queue analytics while offline;
        the sync task only consumes the document.
        """
        body = json.dumps(payload).encode("utf-8")
        self._registry.open(API_ROLE).put(
            self.config.pending_key,
            Response(status=200, body=body, headers={"Content-Type": "application/json"}, status_text="OK"),
        )
