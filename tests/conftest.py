"""Shared fixtures for chaos session tests."""

from __future__ import annotations

import pytest

from comms.event_bus import EventBus


class FakeClock:
    """Controllable wall clock (seconds)."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualTicker:
    """Stand-in for PeriodicTicker; ticks only when ``fire()`` is called."""

    def __init__(self, interval: float, callback) -> None:
        self.interval = interval
        self._callback = callback
        self.running = False
        self.starts = 0
        self.cancels = 0

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        self.starts += 1

    def cancel(self, wait: bool = False) -> None:
        if self.running:
            self.cancels += 1
        self.running = False

    def owns_current_thread(self) -> bool:
        return self.running

    def fire(self) -> None:
        if self.running:
            self._callback()


class FakeIncidentEngine:
    """Incident collaborator with a hand-managed active list."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.active: list[dict] = []
        self.combo_count = 0
        self.stats = {"total_resolved": 0, "active_count": 0}
        self.resolve_result: dict | None = None

    def reset(self) -> None:
        self.calls.append("reset")
        self.active = []

    def start(self, mode: str) -> None:
        self.calls.append(f"start:{mode}")

    def stop(self) -> None:
        self.calls.append("stop")

    def pause(self) -> None:
        self.calls.append("pause")

    def resume(self) -> None:
        self.calls.append("resume")

    def resolve_incident(self, incident_id: str, action: str = "manual") -> dict | None:
        self.calls.append(f"resolve:{incident_id}:{action}")
        return self.resolve_result

    def get_active_incidents(self) -> list[dict]:
        return list(self.active)

    def get_stats(self) -> dict:
        return dict(self.stats)


class FakeScoring:
    def __init__(self) -> None:
        self.recorded: list[float] = []

    def record_survival(self, survival_seconds: float) -> None:
        self.recorded.append(survival_seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def fake_incidents():
    return FakeIncidentEngine()


@pytest.fixture
def fake_scoring():
    return FakeScoring()


def drain(q) -> list[dict]:
    """Pop every message currently in a bus subscription queue."""
    msgs = []
    while not q.empty():
        msgs.append(q.get_nowait())
    return msgs


def of_type(msgs: list[dict], event_type: str) -> list[dict]:
    return [m for m in msgs if m["type"] == event_type]
