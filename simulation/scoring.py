"""ScoringEngine — records chaos session outcomes."""

from __future__ import annotations

import threading
from collections import deque

from loguru import logger

_HISTORY_SIZE = 50


class ScoringEngine:
    """Keeps the best survival time and a short history of finished sessions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.longest_survival: float = 0.0
        self.sessions_played: int = 0
        self._history: deque[float] = deque(maxlen=_HISTORY_SIZE)

    def record_survival(self, survival_seconds: float) -> bool:
        """Record a finished session. Returns True if it set a new best."""
        with self._lock:
            self.sessions_played += 1
            self._history.append(survival_seconds)
            new_best = survival_seconds > self.longest_survival
            if new_best:
                self.longest_survival = survival_seconds
        if new_best:
            logger.info(f"New longest chaos survival: {survival_seconds:.0f}s")
        return new_best

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "longest_survival": round(self.longest_survival),
                "sessions_played": self.sessions_played,
                "recent_survivals": [round(s) for s in self._history],
            }
