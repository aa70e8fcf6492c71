"""Control messages sent by page code to the worker."""

import logging
import queue
from collections.abc import Callable, Sequence
from typing import Any

from .registry import CacheRegistry
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)

SKIP_WAITING = "SKIP_WAITING"
GET_CACHE_SIZE = "GET_CACHE_SIZE"


class MessagePort:
    """One end of a reply channel. Replies are queued until received."""

    def __init__(self) -> None:
        self._queue: queue.Queue = queue.Queue()

    def post_message(self, data: Any) -> None:
        self._queue.put(data)

    def receive(self, timeout: float | None = None) -> Any:
        """Wait for the next reply.

        Raises:
            queue.Empty: If nothing arrives within the timeout.
        """
        return self._queue.get(timeout=timeout)


class ControlChannel:
    """Dispatches control messages by their "type" field.

    - SKIP_WAITING: activate a waiting worker immediately.
    - GET_CACHE_SIZE: reply {"cacheSize": bytes} on the first port.

    Anything else is ignored.
    """

    def __init__(
        self,
        registry: CacheRegistry,
        tasks: BackgroundTasks,
        skip_waiting: Callable[[], None],
    ) -> None:
        self._registry = registry
        self._tasks = tasks
        self._skip_waiting = skip_waiting

    def handle(self, data: Any, ports: Sequence[MessagePort] = ()) -> bool:
        """Handle one message.

        Returns:
            True if the message type was recognised.
        """
        message_type = data.get("type") if isinstance(data, dict) else None

        if message_type == SKIP_WAITING:
            self._skip_waiting()
            return True

        if message_type == GET_CACHE_SIZE:
            if not ports:
                logger.debug("GET_CACHE_SIZE without a reply port, ignoring")
                return False
            self._tasks.spawn("cache-size", self._reply_cache_size, ports[0])
            return True

        logger.debug("Ignoring unrecognised control message: %r", data)
        return False

    def _reply_cache_size(self, port: MessagePort) -> None:
        size = self._registry.total_size()
        port.post_message({"cacheSize": size})
