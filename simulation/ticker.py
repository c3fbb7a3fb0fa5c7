"""PeriodicTicker — cancellable fixed-period driver on a daemon thread.

The ticker calls its callback every ``interval`` seconds.  Deadlines are
advanced by exactly ``interval`` each period, so a slow callback does not
push every later tick back (no cumulative drift).  If the process stalls
for several periods, missed deadlines are skipped rather than replayed in a
burst; ChaosMode recomputes everything from absolute elapsed time, so a
missed tick only delays the next update.

``cancel()`` is idempotent and only signals the thread by default, so it
is safe to call from inside the callback (game over fires on the tick
thread) or while holding a lock the callback is waiting for.  Pass
``wait=True`` to join the thread.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from loguru import logger


class PeriodicTicker:
    """Calls ``callback`` every ``interval`` seconds until cancelled."""

    def __init__(
        self,
        interval: float,
        callback: Callable[[], object],
        name: str = "chaos-tick",
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self._callback = callback
        self._name = name
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def start(self) -> None:
        if self.running:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop,), name=self._name, daemon=True
        )
        self._thread.start()

    def cancel(self, wait: bool = False) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop.set()
        self._thread = None
        if wait and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    def owns_current_thread(self) -> bool:
        """True when called from this ticker's live thread.

        A thread that was cancelled while its callback waited on a lock is
        no longer the owner, so the callback can drop the stale tick.
        """
        return self._thread is not None and self._thread is threading.current_thread()

    def _run(self, stop: threading.Event) -> None:
        next_at = time.monotonic() + self.interval
        while not stop.wait(max(0.0, next_at - time.monotonic())):
            try:
                self._callback()
            except Exception:
                logger.exception(f"{self._name}: tick callback failed")
            self.ticks += 1
            next_at += self.interval
            now = time.monotonic()
            if next_at < now:
                skipped = int((now - next_at) // self.interval) + 1
                next_at += skipped * self.interval
