"""Tests for the performance budget monitor."""

import logging
import math
from datetime import UTC, datetime
from unittest.mock import Mock

import pytest

from hooklinecache.budget import (
    KEEP_VIOLATIONS,
    MAX_VIOLATIONS,
    BudgetMonitor,
    conversion_thresholds,
    resource_type,
    violation_to_dict,
)
from hooklinecache.config import BudgetConfig
from hooklinecache.models import PerformanceViolation

TIGHT = {"good": 1, "needsImprovement": 2, "poor": 3}


@pytest.fixture
def monitor() -> BudgetMonitor:
    return BudgetMonitor(BudgetConfig())


class TestCheckBudget:
    """Severity and alert threshold rules."""

    def test_within_budget(self, monitor: BudgetMonitor) -> None:
        assert monitor.check_vital("LCP", 2000) is None
        assert monitor.violations() == []

    def test_above_poor_is_critical(self, monitor: BudgetMonitor) -> None:
        violation = monitor.check_budget("custom", 4, TIGHT)

        assert violation.severity == "critical"
        assert violation.threshold == 2

    def test_above_needs_improvement_is_error(self, monitor: BudgetMonitor) -> None:
        violation = monitor.check_vital("LCP", 4500, url="/")

        assert violation.severity == "error"
        assert violation.metric == "LCP"
        assert violation.threshold == 4000
        assert violation.url == "/"

    def test_warning_only_reported_at_good_threshold(self) -> None:
        assert BudgetMonitor(BudgetConfig()).check_vital("LCP", 3000) is None

        violation = BudgetMonitor(BudgetConfig(alert_threshold="good")).check_vital("LCP", 3000)
        assert violation.severity == "warning"
        assert violation.threshold == 2500

    def test_poor_threshold_suppresses_errors(self) -> None:
        monitor = BudgetMonitor(BudgetConfig(alert_threshold="poor"))

        assert monitor.check_vital("CLS", 0.5) is None
        assert monitor.check_budget("custom", 4, TIGHT).severity == "critical"

    def test_sample_rate_zero_drops_violations(self) -> None:
        monitor = BudgetMonitor(BudgetConfig(sample_rate=0.0))
        assert monitor.check_vital("LCP", 9000) is None

    def test_disabled_monitor(self) -> None:
        monitor = BudgetMonitor(BudgetConfig(enabled=False))

        assert monitor.check_vital("LCP", 9000) is None
        assert monitor.check_resource_budget("javascript", 10_000_000) is None

    def test_conversion_budgets(self, monitor: BudgetMonitor) -> None:
        assert conversion_thresholds("cta-render-time")["needsImprovement"] == 1500
        assert conversion_thresholds("form-validation-time")["needsImprovement"] == 200

        assert monitor.check_conversion("cta-render-time", 1400) is None
        assert monitor.check_conversion("cta-render-time", 1600).severity == "error"
        assert monitor.check_conversion("form-validation-time", 250).severity == "error"


class TestResourceBudget:
    """Size budgets per resource type."""

    def test_under_budget(self, monitor: BudgetMonitor) -> None:
        assert monitor.check_resource_budget("css", 50 * 1024) is None

    def test_over_budget_is_error(self, monitor: BudgetMonitor) -> None:
        violation = monitor.check_resource_budget("javascript", 800 * 1024, url="/assets/main.js")

        assert violation.severity == "error"
        assert violation.metric == "javascript-bundle-size"
        assert violation.value == 800
        assert violation.threshold == 750

    def test_far_over_budget_is_critical(self, monitor: BudgetMonitor) -> None:
        assert monitor.check_resource_budget("font", 200 * 1024).severity == "critical"

    def test_unknown_kind(self, monitor: BudgetMonitor) -> None:
        assert monitor.check_resource_budget("video", 10_000_000) is None

    @pytest.mark.parametrize(
        "url,kind",
        [
            ("/assets/main.4f2a.js", "javascript"),
            ("/src/App.tsx", "javascript"),
            ("/src/index.css?v=3", "css"),
            ("/hero.webp", "image"),
            ("https://fonts.gstatic.com/s/inter.woff2", "font"),
            ("/api/analytics.json", None),
            ("/", None),
        ],
    )
    def test_resource_type(self, url: str, kind: str | None) -> None:
        assert resource_type(url) == kind


class TestObserveResource:
    """Fetch observations feed both size and load-time budgets."""

    def test_large_image(self, monitor: BudgetMonitor) -> None:
        monitor.observe_resource("/images/hero.png", 2 * 1024 * 1024, 50)

        [violation] = monitor.violations()
        assert violation.metric == "image-bundle-size"
        assert violation.severity == "critical"

    def test_slow_critical_bundle(self, monitor: BudgetMonitor) -> None:
        monitor.observe_resource("/src/main.tsx", 1024, 2500)

        [violation] = monitor.violations()
        assert violation.metric == "critical-resource-load-time"
        assert violation.severity == "error"

    def test_fast_small_resource(self, monitor: BudgetMonitor) -> None:
        monitor.observe_resource("/app.css", 1024, 10)
        assert monitor.violations() == []


class TestViolationHandling:
    """Storage, alerting, callbacks and reporting."""

    def test_trims_to_recent_violations(self, monitor: BudgetMonitor) -> None:
        for i in range(MAX_VIOLATIONS):
            monitor.check_resource_budget("css", (101 + i) * 1024)
        assert len(monitor.violations()) == MAX_VIOLATIONS

        monitor.check_resource_budget("css", 500 * 1024)

        violations = monitor.violations()
        assert len(violations) == KEEP_VIOLATIONS
        assert violations[-1].value == 500

    def test_logs_warning_when_alerts_enabled(self, monitor: BudgetMonitor, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            monitor.check_vital("LCP", 5000)

        assert "Performance budget ERROR: LCP" in caplog.text

    def test_no_log_when_alerts_disabled(self, caplog: pytest.LogCaptureFixture) -> None:
        monitor = BudgetMonitor(BudgetConfig(enable_alerts=False))

        with caplog.at_level(logging.WARNING):
            monitor.check_vital("LCP", 5000)

        assert "Performance budget" not in caplog.text
        assert len(monitor.violations()) == 1

    def test_callbacks(self, monitor: BudgetMonitor, caplog: pytest.LogCaptureFixture) -> None:
        broken = Mock(side_effect=RuntimeError("callback broke"))
        working = Mock()
        monitor.on_violation(broken)
        monitor.on_violation(working)

        with caplog.at_level(logging.ERROR):
            violation = monitor.check_vital("TTFB", 2000)

        working.assert_called_once_with(violation)
        assert "Violation callback error: callback broke" in caplog.text

    def test_report_hook(self) -> None:
        report = Mock()
        monitor = BudgetMonitor(BudgetConfig(), report=report)

        violation = monitor.check_vital("INP", 600)

        report.assert_called_once_with(violation)

    def test_summary(self, monitor: BudgetMonitor) -> None:
        for _ in range(12):
            monitor.check_resource_budget("css", 120 * 1024)
        monitor.check_budget("custom", 4, TIGHT)

        summary = monitor.summary()

        assert summary["total_violations"] == 13
        assert summary["error_violations"] == 12
        assert summary["critical_violations"] == 1
        assert summary["warning_violations"] == 0
        assert len(summary["recent_violations"]) == 10
        assert summary["recent_violations"][-1]["metric"] == "custom"

    def test_reset(self, monitor: BudgetMonitor) -> None:
        callback = Mock()
        monitor.on_violation(callback)
        monitor.check_vital("LCP", 5000)

        monitor.reset()
        monitor.check_vital("LCP", 5000)

        assert len(monitor.violations()) == 1
        assert callback.call_count == 1


class TestViolationToDict:
    """Tests for violation_to_dict."""

    def test_serializes_fields(self, monitor: BudgetMonitor) -> None:
        violation = monitor.check_vital("LCP", 4500, url="/")

        data = violation_to_dict(violation)

        assert data["metric"] == "LCP"
        assert data["severity"] == "error"
        assert data["threshold"] == 4000
        assert data["timestamp"] == violation.timestamp.isoformat()

    def test_infinite_threshold_becomes_none(self) -> None:
        violation = PerformanceViolation(
            metric="LCP",
            value=9000,
            threshold=math.inf,
            severity="critical",
            timestamp=datetime.now(UTC),
        )
        assert violation_to_dict(violation)["threshold"] is None
