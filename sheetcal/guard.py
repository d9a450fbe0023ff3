from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ReconcileGuard:
    """Bounded-wait lock around a reconcile run.

    Waiters never queue up: if the lock is not free within the wait bound
    the caller is told so and is expected to give up.
    """

    def __init__(self, wait_seconds: float = 2.0, lock: threading.Lock | None = None) -> None:
        self.wait_seconds = wait_seconds
        self._lock = lock or threading.Lock()

    @contextmanager
    def hold(self, wait_seconds: float | None = None) -> Iterator[bool]:
        timeout = self.wait_seconds if wait_seconds is None else wait_seconds
        acquired = self._lock.acquire(timeout=max(0.0, timeout))
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()
