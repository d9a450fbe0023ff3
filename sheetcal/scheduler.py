from __future__ import annotations

import itertools
import logging
import threading

from sheetcal.debounce import DebounceCoalescer


logger = logging.getLogger(__name__)


class ChangeDispatcher:
    """Run each change notification in its own thread.

    Notifications never wait on each other; the coalescer decides which one
    of a burst actually syncs.
    """

    def __init__(self, coalescer: DebounceCoalescer) -> None:
        self.coalescer = coalescer
        self._counter = itertools.count(1)
        self._threads: list[threading.Thread] = []
        self._threads_lock = threading.Lock()

    def dispatch(self, trigger: str = "edit") -> threading.Thread:
        thread = threading.Thread(
            target=self._handle,
            args=(trigger,),
            name=f"sheetcal-change-{next(self._counter)}",
            daemon=True,
        )
        with self._threads_lock:
            self._threads = [item for item in self._threads if item.is_alive()]
            self._threads.append(thread)
        thread.start()
        return thread

    def _handle(self, trigger: str) -> None:
        try:
            result = self.coalescer.on_change(trigger=trigger)
        except Exception:
            logger.exception("Change handler for %s crashed", trigger)
            return
        if result is not None:
            logger.info("Sync after %s: %s (%s)", trigger, result.status, result.message)

    def join(self, timeout: float | None = None) -> None:
        with self._threads_lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout=timeout)

    def stop(self) -> None:
        self.join(timeout=5)
