"""Performance budget thresholds and violation tracking.

Every network fetch made by the dispatcher is reported here as
(url, size, duration). Resource sizes are checked against per-type budgets
and critical bundles against a load-time budget. Core Web Vitals and
conversion metrics reported by page code use the same checks.
"""

import logging
import math
import random
import re
import threading
from collections.abc import Callable
from dataclasses import asdict
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from .config import BudgetConfig
from .models import PerformanceViolation

logger = logging.getLogger(__name__)

Thresholds = dict[str, float]

# Core Web Vitals thresholds (ms, except CLS which is a layout shift score)
CORE_WEB_VITALS: dict[str, Thresholds] = {
    "LCP": {"good": 2500, "needsImprovement": 4000, "poor": math.inf},
    "FID": {"good": 100, "needsImprovement": 300, "poor": math.inf},
    "CLS": {"good": 0.1, "needsImprovement": 0.25, "poor": math.inf},
    "FCP": {"good": 1800, "needsImprovement": 3000, "poor": math.inf},
    "TTFB": {"good": 800, "needsImprovement": 1800, "poor": math.inf},
    "INP": {"good": 200, "needsImprovement": 500, "poor": math.inf},
}

# Total size budgets per resource type, in KB
RESOURCE_BUDGETS_KB: dict[str, float] = {
    "javascript": 750,
    "css": 100,
    "image": 1000,
    "font": 100,
}

# Conversion timing budgets in ms, with the multiplier giving "needsImprovement"
CONVERSION_BUDGETS: dict[str, tuple[float, float]] = {
    "cta-render-time": (1000, 1.5),
    "hero-image-load-time": (2000, 1.5),
    "interaction-ready-time": (3000, 1.5),
    "form-validation-time": (100, 2),
}

CRITICAL_RESOURCE_LOAD: Thresholds = {"good": 1000, "needsImprovement": 2000, "poor": math.inf}

# Violations kept in memory: once over MAX_VIOLATIONS, trim to the last KEEP_VIOLATIONS.
MAX_VIOLATIONS = 100
KEEP_VIOLATIONS = 50

_RESOURCE_TYPES = (
    ("javascript", re.compile(r"\.(js|mjs|jsx|ts|tsx)$", re.IGNORECASE)),
    ("css", re.compile(r"\.css$", re.IGNORECASE)),
    ("image", re.compile(r"\.(png|jpg|jpeg|gif|webp|svg)$", re.IGNORECASE)),
    ("font", re.compile(r"\.(woff2?|ttf|otf)$", re.IGNORECASE)),
)


def resource_type(url: str) -> str | None:
    """Return the budget type of a resource URL, or None if unbudgeted."""
    path = urlparse(url).path
    for name, pattern in _RESOURCE_TYPES:
        if pattern.search(path):
            return name
    return None


def conversion_thresholds(metric: str) -> Thresholds:
    budget, multiplier = CONVERSION_BUDGETS[metric]
    return {"good": budget, "needsImprovement": budget * multiplier, "poor": math.inf}


class BudgetMonitor:
    """Checks metrics against budgets and keeps a bounded list of violations."""

    def __init__(
        self,
        config: BudgetConfig,
        report: Callable[[PerformanceViolation], None] | None = None,
    ) -> None:
        self.config = config
        self._report = report
        self._violations: list[PerformanceViolation] = []
        self._callbacks: list[Callable[[PerformanceViolation], None]] = []
        self._lock = threading.Lock()
        self._random = random.random

    def check_budget(self, metric: str, value: float, thresholds: Thresholds, url: str = "") -> PerformanceViolation | None:
        """Compare a value with good/needsImprovement/poor thresholds.

        Above "poor" is always reported as critical. Above "needsImprovement"
        is an error, reported unless the alert threshold is "poor". Above
        "good" is a warning, reported only when the alert threshold is "good".

        Returns:
            The recorded violation, or None.
        """
        if not self.config.enabled:
            return None

        alert_threshold = self.config.alert_threshold
        if value > thresholds["poor"]:
            severity = "critical"
            violated = True
        elif value > thresholds["needsImprovement"]:
            severity = "error"
            violated = alert_threshold != "poor"
        elif value > thresholds["good"]:
            severity = "warning"
            violated = alert_threshold == "good"
        else:
            return None

        if not violated or self._random() > self.config.sample_rate:
            return None

        violation = PerformanceViolation(
            metric=metric,
            value=value,
            threshold=thresholds[alert_threshold],
            severity=severity,
            timestamp=datetime.now(UTC),
            url=url,
        )
        self._handle_violation(violation)
        return violation

    def check_vital(self, metric: str, value: float, url: str = "") -> PerformanceViolation | None:
        """Check a Core Web Vital (LCP, FID, CLS, FCP, TTFB, INP)."""
        return self.check_budget(metric, value, CORE_WEB_VITALS[metric], url=url)

    def check_conversion(self, metric: str, value: float, url: str = "") -> PerformanceViolation | None:
        """Check a conversion timing such as "cta-render-time"."""
        return self.check_budget(metric, value, conversion_thresholds(metric), url=url)

    def check_resource_budget(self, kind: str, size_bytes: int, url: str = "") -> PerformanceViolation | None:
        """Check a resource size against its type budget.

        Over budget is an error; over 1.5x budget is critical.
        """
        if not self.config.enabled:
            return None

        threshold = RESOURCE_BUDGETS_KB.get(kind)
        if threshold is None:
            return None

        size_kb = size_bytes / 1024
        if size_kb <= threshold:
            return None

        violation = PerformanceViolation(
            metric=f"{kind}-bundle-size",
            value=size_kb,
            threshold=threshold,
            severity="critical" if size_kb > threshold * 1.5 else "error",
            timestamp=datetime.now(UTC),
            url=url,
        )
        self._handle_violation(violation)
        return violation

    def observe_resource(self, url: str, size_bytes: int, duration_ms: float) -> None:
        """Check a fetched resource against size and load-time budgets."""
        kind = resource_type(url)
        if kind is not None:
            self.check_resource_budget(kind, size_bytes, url=url)

        if "main." in url or "app." in url:
            self.check_budget("critical-resource-load-time", duration_ms, CRITICAL_RESOURCE_LOAD, url=url)

    def on_violation(self, callback: Callable[[PerformanceViolation], None]) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def violations(self) -> list[PerformanceViolation]:
        with self._lock:
            return list(self._violations)

    def summary(self) -> dict[str, Any]:
        """Counts per severity and the ten most recent violations."""
        with self._lock:
            violations = list(self._violations)

        return {
            "total_violations": len(violations),
            "critical_violations": sum(1 for v in violations if v.severity == "critical"),
            "error_violations": sum(1 for v in violations if v.severity == "error"),
            "warning_violations": sum(1 for v in violations if v.severity == "warning"),
            "recent_violations": [violation_to_dict(v) for v in violations[-10:]],
        }

    def reset(self) -> None:
        """Forget all violations and callbacks."""
        with self._lock:
            self._violations = []
            self._callbacks = []

    def _handle_violation(self, violation: PerformanceViolation) -> None:
        with self._lock:
            self._violations.append(violation)
            if len(self._violations) > MAX_VIOLATIONS:
                self._violations = self._violations[-KEEP_VIOLATIONS:]
            callbacks = list(self._callbacks)

        if self.config.enable_alerts:
            logger.warning(
                "Performance budget %s: %s = %.1f (threshold %s)",
                violation.severity.upper(),
                violation.metric,
                violation.value,
                violation.threshold,
            )

        for callback in callbacks:
            try:
                callback(violation)
            except Exception as e:
                logger.error("Violation callback error: %s", e)

        if self._report is not None:
            self._report(violation)


def violation_to_dict(violation: PerformanceViolation) -> dict[str, Any]:
    """Convert a violation to a JSON-serializable dictionary."""
    data = asdict(violation)
    data["timestamp"] = violation.timestamp.isoformat()
    if math.isinf(data["threshold"]):
        data["threshold"] = None
    return data
