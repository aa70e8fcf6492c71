"""HTTP front end routing browser traffic through the caching dispatcher."""

import json
import logging
import queue
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from .budget import CONVERSION_BUDGETS, CORE_WEB_VITALS, violation_to_dict
from .config import ProxyConfig
from .fetcher import HOP_BY_HOP_HEADERS, NetworkError
from .messages import GET_CACHE_SIZE, MessagePort
from .models import Notification, Request, Response
from .storage import StorageError
from .worker import ServiceWorker

logger = logging.getLogger(__name__)

# Path prefix reserved for control endpoints; never proxied.
CONTROL_PREFIX = "/__sw/"

# Seconds to wait for a message port reply before giving up.
REPLY_TIMEOUT = 5.0

# Request headers not passed on to the origin.
DROPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "accept-encoding"}


class ProxyError(Exception):
    """Raised when the proxy server cannot start."""

    pass


def _notification_to_dict(notification: Notification) -> dict[str, Any]:
    return {
        "title": notification.title,
        "options": notification.options,
        "closed": notification.closed,
    }


class ProxyHandler(BaseHTTPRequestHandler):
    """Request handler: proxied GETs go through the worker, the rest to the origin."""

    # Class-level reference set by factory
    worker: ServiceWorker | None = None

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug("Proxy %s - %s", self.address_string(), format % args)

    def _send_json(self, code: int, data: Any) -> None:
        body = json.dumps(data, indent=2).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def _send_error_json(self, code: int, message: str) -> None:
        self._send_json(code, {"error": message})

    def _send_response(self, response: Response, strategy: str | None = None) -> None:
        self.send_response(response.status, response.status_text or None)
        for key, value in response.headers.items():
            if key.lower() in HOP_BY_HOP_HEADERS:
                continue
            self.send_header(key, value)
        if strategy is not None:
            self.send_header("X-Cache-Strategy", strategy)
        self.send_header("Content-Length", str(response.size))
        self.send_header("Connection", "close")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(response.body)

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length > 0 else b""

    def _read_json(self) -> Any:
        """Parse the request body as JSON. An empty body is None.

        Raises:
            ValueError: If the body is not valid JSON.
        """
        body = self._read_body()
        if not body:
            return None
        return json.loads(body.decode("utf-8"))

    def _build_request(self, body: bytes | None = None) -> Request:
        headers = {
            key: value
            for key, value in self.headers.items()
            if key.lower() not in DROPPED_REQUEST_HEADERS
        }
        return Request(url=self.path, method=self.command, headers=headers, body=body)

    def do_GET(self) -> None:
        """Handle GET requests."""
        try:
            if self.path.startswith(CONTROL_PREFIX):
                self._handle_control_get(self.path[len(CONTROL_PREFIX):])
            else:
                self._handle_fetch()
        except Exception as e:
            logger.exception("Error handling request: %s", e)
            self._send_error_json(500, "Internal server error")

    def do_POST(self) -> None:
        """Handle POST requests."""
        try:
            if self.path.startswith(CONTROL_PREFIX):
                self._handle_control_post(self.path[len(CONTROL_PREFIX):])
            else:
                self._handle_passthrough()
        except Exception as e:
            logger.exception("Error handling POST request: %s", e)
            self._send_error_json(500, "Internal server error")

    def _handle_other(self) -> None:
        try:
            self._handle_passthrough()
        except Exception as e:
            logger.exception("Error handling %s request: %s", self.command, e)
            self._send_error_json(500, "Internal server error")

    do_PUT = _handle_other
    do_PATCH = _handle_other
    do_DELETE = _handle_other
    do_HEAD = _handle_other
    do_OPTIONS = _handle_other

    def _handle_fetch(self) -> None:
        """Handle a proxied GET through the worker's caching strategies."""
        try:
            result = self.worker.on_fetch(self._build_request())
        except NetworkError as e:
            logger.warning("Upstream error for %s: %s", self.path, e)
            self._send_error_json(502, f"Bad gateway: {e}")
            return
        except StorageError as e:
            logger.error("Cache storage error for %s: %s", self.path, e)
            self._send_error_json(500, "Cache storage error")
            return

        response, strategy = result
        self._send_response(response, strategy)

    def _handle_passthrough(self) -> None:
        """Forward a non-GET request to the origin without caching."""
        body = self._read_body()
        request = self._build_request(body or None)
        try:
            response = self.worker.fetcher.fetch(request)
        except NetworkError as e:
            logger.warning("Upstream error for %s %s: %s", self.command, self.path, e)
            self._send_error_json(502, f"Bad gateway: {e}")
            return
        self._send_response(response)

    def _handle_control_get(self, endpoint: str) -> None:
        if endpoint == "health":
            self._send_json(
                200,
                {
                    "status": "ok",
                    "version": self.worker.config.cache.version,
                    "state": self.worker.lifecycle.state,
                },
            )
        elif endpoint == "errors":
            errors = self.worker.tasks.errors()
            self._send_json(
                200,
                {
                    "errors": [
                        {
                            "task": e.task,
                            "url": e.url,
                            "error": e.error,
                            "occurred_at": e.occurred_at.isoformat(),
                        }
                        for e in errors
                    ],
                    "count": len(errors),
                },
            )
        elif endpoint == "budget":
            self._send_json(200, self.worker.budget.summary())
        elif endpoint == "caches":
            self._send_json(
                200,
                {"caches": self.worker.registry.usage(), "total": self.worker.cache_size()},
            )
        else:
            self._send_error_json(404, "Not found")

    def _handle_control_post(self, endpoint: str) -> None:
        try:
            data = self._read_json()
        except ValueError:
            self._send_error_json(400, "Request body must be JSON")
            return

        if endpoint == "message":
            self._handle_message(data)
        elif endpoint == "sync":
            tag = data.get("tag") if isinstance(data, dict) else None
            if not tag:
                self._send_error_json(400, "Sync tag is required")
                return
            self._send_json(200, {"tag": tag, "flushed": self.worker.on_sync(tag)})
        elif endpoint == "push":
            notification = self.worker.on_push(data if isinstance(data, dict) else None)
            self._send_json(201, _notification_to_dict(notification))
        elif endpoint == "notificationclick":
            self._handle_notification_click(data)
        elif endpoint == "budget":
            self._handle_metric(data)
        elif endpoint == "analytics/pending":
            self.worker.sync.store_pending(data)
            self._send_json(202, {"stored": True})
        else:
            self._send_error_json(404, "Not found")

    def _handle_message(self, data: Any) -> None:
        """Deliver a control message; GET_CACHE_SIZE answers with the port reply."""
        port = MessagePort()
        handled = self.worker.on_message(data, [port])

        if handled and isinstance(data, dict) and data.get("type") == GET_CACHE_SIZE:
            try:
                reply = port.receive(timeout=REPLY_TIMEOUT)
            except queue.Empty:
                self._send_error_json(504, "No reply from worker")
                return
            self._send_json(200, reply)
            return

        self._send_json(202, {"handled": handled})

    def _handle_notification_click(self, data: Any) -> None:
        tag = data.get("tag") if isinstance(data, dict) else None
        notification = self.worker.notifications.find(tag or "default")
        if notification is None:
            self._send_error_json(404, "No open notification with that tag")
            return
        url = self.worker.on_notification_click(notification)
        self._send_json(200, {"url": url})

    def _handle_metric(self, data: Any) -> None:
        """Check a page-reported metric (Core Web Vital or conversion timing)."""
        if not isinstance(data, dict) or "metric" not in data or "value" not in data:
            self._send_error_json(400, "Fields 'metric' and 'value' are required")
            return

        metric = str(data["metric"])
        try:
            value = float(data["value"])
        except (TypeError, ValueError):
            self._send_error_json(400, "'value' must be a number")
            return
        url = str(data.get("url", ""))

        if metric in CORE_WEB_VITALS:
            violation = self.worker.budget.check_vital(metric, value, url=url)
        elif metric in CONVERSION_BUDGETS:
            violation = self.worker.budget.check_conversion(metric, value, url=url)
        else:
            self._send_error_json(400, f"Unknown metric '{metric}'")
            return

        self._send_json(200, {"violation": violation_to_dict(violation) if violation else None})


def _create_handler_class(worker: ServiceWorker) -> type:
    """Create a handler class with the worker bound."""

    class BoundProxyHandler(ProxyHandler):
        pass

    BoundProxyHandler.worker = worker
    return BoundProxyHandler


class ProxyServer:
    """Threaded caching proxy in front of the application origin."""

    def __init__(self, config: ProxyConfig, worker: ServiceWorker) -> None:
        self.config = config
        self.worker = worker
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    def start(self) -> None:
        """Start the proxy in a background thread.

        Raises:
            ProxyError: If the server fails to bind.
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Proxy server is already running")
            return

        try:
            self._server = ThreadingHTTPServer((self.config.host, self.config.port), _create_handler_class(self.worker))
            self._server.timeout = 1.0  # Allow periodic shutdown checks

            self._shutdown_event.clear()
            self._thread = threading.Thread(
                target=self._serve_forever,
                name="proxy-server",
                daemon=True,
            )
            self._thread.start()

            logger.info("Proxy server started on port %d for %s", self.config.port, self.worker.config.network.origin)

        except OSError as e:
            if e.errno == 98 or e.errno == 48:  # EADDRINUSE (Linux=98, macOS=48)
                raise ProxyError(
                    f"Port {self.config.port} is already in use. "
                    f"Another process may be using this port, or hooklinecache is already running."
                )
            elif e.errno == 13:  # EACCES
                raise ProxyError(
                    f"Permission denied for port {self.config.port}. "
                    f"Ports below 1024 require root privileges. "
                    f"Use a port >= 1024 or run with elevated permissions."
                )
            else:
                raise ProxyError(f"Failed to start proxy server on port {self.config.port}: {e}")

    def _serve_forever(self) -> None:
        """Server loop that checks for shutdown."""
        while not self._shutdown_event.is_set():
            if self._server:
                self._server.handle_request()

    def stop(self) -> None:
        """Stop the proxy server gracefully."""
        if self._thread is None:
            return

        logger.info("Stopping proxy server...")
        self._shutdown_event.set()

        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        if self._server:
            self._server.server_close()

        self._server = None
        self._thread = None
        logger.info("Proxy server stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
