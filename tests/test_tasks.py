"""Tests for detached background tasks."""

import threading

import pytest

from hooklinecache.tasks import BackgroundTasks


@pytest.fixture
def pool() -> BackgroundTasks:
    tasks = BackgroundTasks(max_workers=1, error_log_size=3)
    yield tasks
    tasks.shutdown()


def fail(message: str) -> None:
    raise RuntimeError(message)


class TestSpawn:
    """Fire-and-forget tasks."""

    def test_result_is_returned(self, pool: BackgroundTasks) -> None:
        future = pool.spawn("revalidate", lambda: 42)

        assert future.result(timeout=5) == 42
        assert pool.errors() == []

    def test_failure_is_recorded(self, pool: BackgroundTasks) -> None:
        future = pool.spawn("revalidate", fail, "origin down", url="/index.html")

        assert future.result(timeout=5) is None
        errors = pool.errors()
        assert len(errors) == 1
        assert errors[0].task == "revalidate"
        assert errors[0].url == "/index.html"
        assert errors[0].error == "origin down"

    def test_error_log_is_bounded(self, pool: BackgroundTasks) -> None:
        """Only the most recent failures are kept."""
        for i in range(5):
            pool.spawn("revalidate", fail, f"error {i}")
        assert pool.wait_idle(timeout=5)

        assert [e.error for e in pool.errors()] == ["error 2", "error 3", "error 4"]

    def test_clear_errors(self, pool: BackgroundTasks) -> None:
        pool.spawn("revalidate", fail, "x").result(timeout=5)
        pool.clear_errors()
        assert pool.errors() == []


class TestSubmit:
    """Tasks whose outcome the caller collects."""

    def test_failure_stays_on_future(self, pool: BackgroundTasks) -> None:
        future = pool.submit(fail, "boom")

        with pytest.raises(RuntimeError, match="boom"):
            future.result(timeout=5)
        assert pool.errors() == []


class TestRunNow:
    """Calls that must start without waiting for a pool worker."""

    def test_runs_while_pool_is_busy(self, pool: BackgroundTasks) -> None:
        gate = threading.Event()
        pool.spawn("slow", gate.wait, 5)

        try:
            future = pool.run_now("race", lambda: "done")
            assert future.result(timeout=1) == "done"
        finally:
            gate.set()

    def test_failure_stays_on_future(self, pool: BackgroundTasks) -> None:
        future = pool.run_now("race", fail, "boom")

        with pytest.raises(RuntimeError, match="boom"):
            future.result(timeout=5)
        assert pool.errors() == []

    def test_counted_until_finished(self, pool: BackgroundTasks) -> None:
        gate = threading.Event()
        pool.run_now("race", gate.wait, 5)

        assert not pool.wait_idle(timeout=0.05)
        gate.set()
        assert pool.wait_idle(timeout=5)


class TestWaitIdle:
    """Tests for wait_idle."""

    def test_idle_pool(self, pool: BackgroundTasks) -> None:
        assert pool.wait_idle(timeout=0.1)

    def test_times_out_while_busy(self, pool: BackgroundTasks) -> None:
        gate = threading.Event()
        pool.spawn("slow", gate.wait, 5)

        try:
            assert not pool.wait_idle(timeout=0.05)
        finally:
            gate.set()

        assert pool.wait_idle(timeout=5)
