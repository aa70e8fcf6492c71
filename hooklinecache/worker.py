"""The caching dispatcher: one object owning every component of a worker version."""

import logging
from collections.abc import Sequence
from typing import Any

from .budget import BudgetMonitor, violation_to_dict
from .classifier import Classifier
from .config import Config
from .fetcher import Fetcher
from .lifecycle import Clients, Lifecycle
from .messages import ControlChannel, MessagePort
from .models import Notification, PerformanceViolation, Request, Response
from .notifications import Notifications
from .registry import CacheRegistry
from .storage import CacheStorage, init_db
from .strategies import STRATEGY_TABLE, StrategyExecutor
from .sync import AnalyticsSync
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)


class ServiceWorker:
    """Intercepts requests and applies the caching strategy for their asset class.

    Built once from a Config. Event entry points mirror what a browser
    delivers to a worker: fetch, sync, message, push and notification click.

    Example:
        worker = ServiceWorker(config)
        worker.register()
        response, strategy = worker.on_fetch(Request("/index.html"))
        worker.close()
    """

    def __init__(
        self,
        config: Config,
        storage: CacheStorage | None = None,
        fetcher: Fetcher | None = None,
    ) -> None:
        self.config = config
        self.storage = storage or CacheStorage(init_db(config.storage.path))
        self.registry = CacheRegistry(self.storage, config.cache)
        self.tasks = BackgroundTasks(
            max_workers=config.tasks.max_workers,
            error_log_size=config.tasks.error_log_size,
        )

        report = self._report_violation if config.budget.report_endpoint else None
        self.budget = BudgetMonitor(config.budget, report=report)

        self.fetcher = fetcher or Fetcher(config.network, on_response=self.budget.observe_resource)
        self.classifier = Classifier(config.assets)
        self.strategies = StrategyExecutor(
            self.registry,
            self.fetcher,
            self.classifier,
            self.tasks,
            offline_page=config.assets.offline_page,
            timeout_ms=config.network.timeout_ms,
        )

        self.clients = Clients()
        self.lifecycle = Lifecycle(
            config.cache.version,
            self.registry,
            config.assets,
            self.fetcher.fetch,
            clients=self.clients,
        )
        self.sync = AnalyticsSync(config.sync, self.registry, self.fetcher)
        self.channel = ControlChannel(self.registry, self.tasks, self.lifecycle.skip_waiting)
        self.notifications = Notifications(self.clients)

    def register(self) -> None:
        """Install the worker and activate it once install asks to skip waiting.

        Raises:
            InstallError: If pre-caching fails. The worker stays redundant.
        """
        self.lifecycle.install()
        if self.lifecycle.skip_waiting_requested:
            self.lifecycle.activate()

    def on_fetch(self, request: Request) -> tuple[Response, str] | None:
        """Resolve a request through its caching strategy.

        Returns:
            (response, strategy name), or None for non-GET requests which
            must go to the network untouched.

        Raises:
            NetworkError: When the strategy has no cached fallback.
        """
        if request.method.upper() != "GET":
            return None

        asset_class = self.classifier.classify(request.url)
        strategy, role = STRATEGY_TABLE[asset_class]
        logger.debug("%s classified as %s, using %s", request.url, asset_class, strategy)

        response = self.strategies.run(strategy, request, self.registry.name_for(role))
        return response, strategy

    def on_sync(self, tag: str) -> bool:
        return self.sync.handle(tag)

    def on_message(self, data: Any, ports: Sequence[MessagePort] = ()) -> bool:
        return self.channel.handle(data, ports)

    def on_push(self, data: dict[str, Any] | None) -> Notification:
        return self.notifications.push(data)

    def on_notification_click(self, notification: Notification) -> str:
        return self.notifications.click(notification)

    def cache_size(self) -> int:
        """Total stored body bytes across every cache."""
        return self.registry.total_size()

    def reset(self) -> None:
        """Delete every cache and forget recorded errors and violations."""
        self.tasks.wait_idle(timeout=5.0)
        self.registry.reset()
        self.budget.reset()
        self.tasks.clear_errors()

    def close(self) -> None:
        self.tasks.shutdown()
        self.fetcher.close()
        self.storage.close()

    def _report_violation(self, violation: PerformanceViolation) -> None:
        endpoint = self.config.budget.report_endpoint
        self.tasks.spawn("budget-report", self.fetcher.post_json, endpoint, violation_to_dict(violation), url=endpoint)
