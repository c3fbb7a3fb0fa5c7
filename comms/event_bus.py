"""EventBus — thread-safe pub/sub for session and incident notifications.

This is the messaging hub shared by ChaosMode, IncidentEngine and the HTTP
layer.  Two delivery styles are supported on the same bus:

  - queue subscribers (``subscribe()``) receive every message as
    ``{"type": ..., "data": ...}`` and drain it at their own pace.  This is
    how presentation layers consume ``session:*`` notifications.
  - handlers (``on(event_type, handler)``) are called synchronously on the
    publishing thread for one event type.  ChaosMode consumes
    ``incident:resolved`` this way so a resolution is applied before the
    publisher returns.
"""

from __future__ import annotations

import queue
import threading
from typing import Any, Callable

from loguru import logger

Handler = Callable[[dict], Any]

_QUEUE_MAXSIZE = 1000


class EventBus:
    """Simple thread-safe pub/sub for pushing events to subscribers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[queue.Queue] = []
        self._handlers: dict[str, list[Handler]] = {}

    def subscribe(self, _filter: str | None = None) -> queue.Queue:
        """Subscribe to events. Returns a Queue that receives all events.

        The optional ``_filter`` parameter is accepted for API compatibility
        but is ignored; the caller must filter events itself.
        """
        q: queue.Queue = queue.Queue(maxsize=_QUEUE_MAXSIZE)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            try:
                self._subscribers.remove(q)
            except ValueError:
                pass

    def on(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register a synchronous handler. Returns a callable that removes it."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.off(event_type, handler)

    def off(self, event_type: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type)
            if not handlers:
                return
            try:
                handlers.remove(handler)
            except ValueError:
                pass

    def handler_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, []))

    def publish(self, event_type: str, data: dict | None = None) -> None:
        msg: dict = {"type": event_type}
        if data is not None:
            msg["data"] = data
        with self._lock:
            for q in self._subscribers:
                try:
                    q.put_nowait(msg)
                except queue.Full:
                    # Drop oldest so game-over and wave events are never lost
                    # behind a backlog of tick summaries.
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass
                    try:
                        q.put_nowait(msg)
                    except queue.Full:
                        pass
            handlers = list(self._handlers.get(event_type, ()))

        # Handlers run outside the lock so they may publish or (un)subscribe.
        for handler in handlers:
            try:
                handler(data if data is not None else {})
            except Exception:
                logger.exception(f"EventBus handler error for '{event_type}'")
