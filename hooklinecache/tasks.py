"""Detached background tasks with a bounded failure log."""

import logging
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from typing import Any

from .models import TaskError

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Thread pool for work that must not delay the response it belongs to.

    Tasks started with spawn() are fire-and-forget: their failures are kept in
    a bounded error log instead of being raised, so persistent revalidation
    problems stay visible without affecting requests.

    Example:
        tasks = BackgroundTasks(max_workers=4)
        tasks.spawn("revalidate", refresh, url, url=url)
        tasks.errors()  # [TaskError(...)] if refresh raised
        tasks.shutdown()
    """

    def __init__(self, max_workers: int = 4, error_log_size: int = 100) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="hookline-task")
        self._errors: deque[TaskError] = deque(maxlen=error_log_size)
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run fn on a pool thread and return its future. Failures stay on the future."""
        future = self._executor.submit(fn, *args)
        self._track(future)
        return future

    def run_now(self, name: str, fn: Callable[..., Any], *args: Any) -> Future:
        """Run fn on its own daemon thread, outside the pool, and return its future.

        The call starts immediately even when every pool worker is busy.
        Failures stay on the future.
        """
        future: Future = Future()

        def _run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                result = fn(*args)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(result)

        self._track(future)
        threading.Thread(target=_run, name=f"hookline-{name}", daemon=True).start()
        return future

    def spawn(self, task: str, fn: Callable[..., Any], *args: Any, url: str | None = None) -> Future:
        """Run fn detached and return its future.

        A failure is recorded in the error log before the future completes,
        and the future then resolves to None.
        """

        def _run() -> Any:
            try:
                return fn(*args)
            except Exception as e:
                self.record_error(task, e, url=url)
                return None

        return self.submit(_run)

    def record_error(self, task: str, error: BaseException | str, url: str | None = None) -> None:
        """Add a failure to the error log."""
        entry = TaskError(task=task, url=url, error=str(error), occurred_at=datetime.now(UTC))
        with self._lock:
            self._errors.append(entry)
        logger.debug("Background %s failed for %s: %s", task, url, error)

    def errors(self) -> list[TaskError]:
        """Recorded failures, oldest first."""
        with self._lock:
            return list(self._errors)

    def clear_errors(self) -> None:
        with self._lock:
            self._errors.clear()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every task submitted so far has finished.

        Returns:
            True if all tasks finished within the timeout.
        """
        with self._lock:
            futures = set(self._pending)
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_tasks, cancel_futures=not wait_for_tasks)

    def _track(self, future: Future) -> None:
        with self._lock:
            self._pending.add(future)

        def _untrack(done: Future) -> None:
            with self._lock:
                self._pending.discard(done)

        future.add_done_callback(_untrack)
