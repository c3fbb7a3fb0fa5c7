"""Integration tests — ChaosMode driving the real IncidentEngine over the EventBus."""

from __future__ import annotations

import random
import time

import pytest

from comms.event_bus import EventBus
from conftest import FakeClock, ManualTicker, drain, of_type
from simulation.chaos_mode import ChaosMode
from simulation.cluster import ClusterState
from simulation.incidents import INCIDENT_DEFS, SEVERITY_LEVELS, IncidentEngine
from simulation.scoring import ScoringEngine
from simulation.ticker import PeriodicTicker


def _wire(clock, ticker_factory=ManualTicker, **kwargs):
    bus = EventBus()
    cluster = ClusterState()
    incidents = IncidentEngine(bus, cluster, clock=clock, rng=random.Random(3))
    scoring = ScoringEngine()
    mode = ChaosMode(
        bus, incidents, scoring, cluster,
        clock=clock, ticker_factory=ticker_factory, **kwargs,
    )
    return bus, cluster, incidents, scoring, mode


@pytest.mark.integration
class TestChaosSessionFlow:
    def test_first_wave_spawns_incident_on_seeded_cluster(self):
        clock = FakeClock()
        bus, cluster, incidents, _, mode = _wire(clock)
        sub = bus.subscribe()
        mode.start()
        clock.advance(1)
        mode.tick()

        active = incidents.get_active_incidents()
        assert len(active) == 1
        assert active[0]["severity"] == 1
        assert active[0]["target"] in {r["name"] for r in cluster}
        types = [m["type"] for m in drain(sub)]
        assert types.index("session:wave") < types.index("incident:created")

    def test_resolving_feeds_session(self):
        clock = FakeClock()
        bus, _, incidents, _, mode = _wire(clock)
        mode.start()
        clock.advance(1)
        mode.tick()
        (incident,) = incidents.get_active_incidents()
        mode.session.cluster_health = 90.0

        clock.advance(5)
        result = incidents.resolve_incident(incident["id"], "patch-configmap")

        assert mode.session.incidents_resolved == 1
        assert mode.session.total_xp == result["xp_earned"]
        assert mode.session.highest_combo == 1
        assert mode.session.cluster_health == pytest.approx(92.0)
        assert mode.get_status()["active_incidents"] == []

    def test_neglected_session_ends_with_report(self):
        clock = FakeClock()
        bus, _, incidents, scoring, mode = _wire(clock)
        sub = bus.subscribe()
        mode.start()

        report = None
        for _ in range(3600):
            clock.advance(1)
            report = mode.tick() or report
            if mode.state == "game_over":
                break

        assert mode.state == "game_over"
        assert report is not None
        # Only self-clearing incidents can resolve without a player
        assert report["incidents_resolved"] == report["incident_breakdown"]["total_resolved"]
        assert report["incident_breakdown"]["by_category"].get("Config", 0) == 0
        assert report["waves_reached"] >= 2
        assert report["incident_breakdown"]["active_count"] == len(incidents.get_active_incidents())
        assert scoring.sessions_played == 1
        assert len(of_type(drain(sub), "session:game-over")) == 1

        # No waves land after game over
        before = len(incidents.get_active_incidents())
        bus.publish("session:wave", {"incident_count": 3, "difficulty_level": 5})
        assert len(incidents.get_active_incidents()) == before

    def test_auto_resolve_feeds_session(self):
        clock = FakeClock()
        bus, _, incidents, _, mode = _wire(clock)
        sub = bus.subscribe()
        mode.start()
        readiness = next(d for d in INCIDENT_DEFS if d.name == "ReadinessProbeFailure")
        incident = incidents.spawn_incident(readiness)

        for _ in range(60):
            clock.advance(1)
            mode.tick()

        assert incidents.get_incident(incident.id) is None
        assert mode.session.incidents_resolved == 1
        assert mode.session.total_xp == SEVERITY_LEVELS[2].xp_reward
        resolved = of_type(drain(sub), "incident:resolved")
        assert [r["data"]["action"] for r in resolved] == ["auto"]

    def test_player_resolve_refused_while_paused(self):
        clock = FakeClock()
        bus, _, incidents, _, mode = _wire(clock)
        mode.start()
        clock.advance(1)
        mode.tick()
        (incident,) = incidents.get_active_incidents()

        mode.pause()
        assert mode.resolve_incident(incident["id"]) is None
        assert len(incidents.get_active_incidents()) == 1
        assert mode.session.incidents_resolved == 0

        mode.resume()
        result = mode.resolve_incident(incident["id"], "patch-configmap")
        assert result is not None
        assert mode.session.incidents_resolved == 1
        assert mode.session.total_xp == result["xp_earned"]

    def test_paused_waves_do_not_spawn(self):
        clock = FakeClock()
        bus, _, incidents, _, mode = _wire(clock)
        mode.start()
        mode.pause()
        bus.publish("session:wave", {"incident_count": 2, "difficulty_level": 1})
        assert incidents.get_active_incidents() == []

    def test_restart_clears_incidents(self):
        clock = FakeClock()
        bus, _, incidents, _, mode = _wire(clock)
        mode.start()
        for _ in range(30):
            clock.advance(1)
            mode.tick()
        assert incidents.get_active_incidents()

        mode.restart()
        assert incidents.get_active_incidents() == []
        assert bus.handler_count("session:wave") == 1
        assert bus.handler_count("session:tick") == 1
        assert bus.handler_count("incident:resolved") == 1


@pytest.mark.integration
class TestChaosSessionRealTicker:
    def test_ticker_drives_session(self):
        bus, _, incidents, _, mode = _wire(time.time, ticker_factory=_fast_ticker)
        sub = bus.subscribe()
        mode.start()
        try:
            deadline = time.monotonic() + 2.0
            while time.monotonic() < deadline:
                if mode.session.wave_number >= 1:
                    break
                time.sleep(0.01)
        finally:
            mode.exit()

        assert mode.session.wave_number >= 1
        msgs = drain(sub)
        assert of_type(msgs, "session:tick")
        assert msgs[-1]["type"] == "session:exited"

    def test_pause_stops_ticks(self):
        bus, _, _, _, mode = _wire(time.time, ticker_factory=_fast_ticker)
        mode.start()
        time.sleep(0.1)
        mode.pause()
        time.sleep(0.05)
        sub = bus.subscribe()
        time.sleep(0.1)
        try:
            assert of_type(drain(sub), "session:tick") == []
        finally:
            mode.destroy()


def _fast_ticker(interval, callback):
    return PeriodicTicker(0.01, callback)
