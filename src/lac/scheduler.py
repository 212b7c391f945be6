"""Fixed-size worker pool hosting conversion tasks (standard library).

Every engine entry point is submitted here as one task. The pool depth caps
how many transcodes touch the CPU and disk at once; there is no per-job
cancellation, only `shutdown()`, which lets running tasks finish.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from loguru import logger

from .errors import PoolClosedError


DEFAULT_DEPTH = 2


class WorkerPool:
    def __init__(self, max_workers: int = DEFAULT_DEPTH) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._exe = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="lac-worker")
        self._max_workers = max_workers
        self._closed = False
        self._lock = threading.Lock()

    @property
    def depth(self) -> int:
        return self._max_workers

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        with self._lock:
            if self._closed:
                raise PoolClosedError("worker pool is shut down; no new conversions accepted")
            return self._exe.submit(fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        logger.debug("worker pool shutting down (wait={})", wait)
        self._exe.shutdown(wait=wait)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown(wait=True)
