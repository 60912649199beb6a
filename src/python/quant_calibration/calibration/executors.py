"""
Executors used by the calibration engine.

``make_executor(workers)`` returns a bounded ``ThreadPoolExecutor`` for a
positive worker count and a ``SynchronousExecutor`` otherwise, so callers
have a single submit/join code path whatever the concurrency setting.
Pool threads run every call with the submitting thread's log context, so
records from instrument and Jacobian workers carry the run's ``run_id``.
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor

from ..monitoring.logging import with_log_context


class SynchronousExecutor(Executor):
    """Executor running every submitted call on the calling thread."""

    def __init__(self):
        self._shutdown = False
        self._lock = threading.Lock()

    def submit(self, fn, /, *args, **kwargs) -> Future:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")

        future: Future = Future()
        future.set_running_or_notify_cancel()
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        with self._lock:
            self._shutdown = True


class ContextThreadPoolExecutor(ThreadPoolExecutor):
    """Thread pool binding the submitter's log context around each call."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        return super().submit(with_log_context(fn), *args, **kwargs)


def make_executor(workers: int, thread_name_prefix: str = "calibration") -> Executor:
    """Bounded thread pool for ``workers > 0``, synchronous executor otherwise."""
    if workers > 0:
        return ContextThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=thread_name_prefix
        )
    return SynchronousExecutor()
