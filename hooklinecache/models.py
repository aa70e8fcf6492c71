"""Data models for requests, cached responses and dispatcher records."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Asset classes produced by request classification.
CRITICAL = "critical"
IMAGE = "image"
API = "api"
DYNAMIC = "dynamic"
DEFAULT = "default"

ASSET_CLASSES = (CRITICAL, IMAGE, API, DYNAMIC, DEFAULT)

# Logical cache roles. Each role is bound to exactly one versioned cache name.
STATIC_ROLE = "static"
DYNAMIC_ROLE = "dynamic"
IMAGES_ROLE = "images"
API_ROLE = "api"

CACHE_ROLES = (STATIC_ROLE, DYNAMIC_ROLE, IMAGES_ROLE, API_ROLE)


@dataclass(frozen=True)
class Request:
    """An outgoing request as seen by the dispatcher.

    Attributes:
        url: Request URL, either origin-relative ("/index.html") or absolute.
        method: HTTP method (upper case).
        headers: Request headers.
        body: Request payload, or None.
    """

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict, compare=False)
    body: bytes | None = field(default=None, compare=False)

    @property
    def key(self) -> tuple[str, str]:
        """Cache key for this request."""
        return self.method.upper(), self.url


@dataclass(frozen=True)
class Response:
    """An HTTP response, either from the network or from a cache.

    Attributes:
        status: HTTP status code.
        body: Response payload bytes.
        headers: Response headers.
        status_text: Reason phrase (e.g., "OK").
        url: URL the response was produced for.
    """

    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict, compare=False)
    status_text: str = ""
    url: str = ""

    @property
    def ok(self) -> bool:
        """True for 2xx statuses."""
        return 200 <= self.status <= 299

    @property
    def size(self) -> int:
        """Body size in bytes."""
        return len(self.body)

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class TaskError:
    """Failure captured from a detached background task.

    Attributes:
        task: Task name (e.g., "revalidate").
        url: URL the task was working on, if any.
        error: Error description.
        occurred_at: When the failure was captured.
    """

    task: str
    url: str | None
    error: str
    occurred_at: datetime


@dataclass(frozen=True)
class PerformanceViolation:
    """A single breach of a performance budget.

    Attributes:
        metric: Metric name (e.g., "LCP", "javascript-bundle-size").
        value: Observed value (ms, KB or score depending on metric).
        threshold: Threshold the value was compared against.
        severity: "warning", "error" or "critical".
        timestamp: When the violation was recorded.
        url: Resource or page URL the metric belongs to.
        context: Extra details about the observation.
    """

    metric: str
    value: float
    threshold: float
    severity: str
    timestamp: datetime
    url: str = ""
    context: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass
class Notification:
    """A notification shown in response to a push event."""

    title: str
    options: dict[str, Any] = field(default_factory=dict)
    closed: bool = False

    @property
    def data(self) -> dict[str, Any]:
        data = self.options.get("data")
        return data if isinstance(data, dict) else {}

    def close(self) -> None:
        self.closed = True
