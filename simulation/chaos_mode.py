"""ChaosMode — survival session state machine, difficulty curve and waves.

Architecture
------------
ChaosMode runs a single chaos survival session through a small state
machine:

  idle -> playing <-> paused
             |
             v
         game_over            (exit() returns to idle from any state)

While ``playing``, a PeriodicTicker calls ``tick()`` once per second.  Each
tick recomputes ``survival_time`` from absolute clock values (start time
minus accumulated pause time), then runs four sub-steps in a fixed order:

  1. difficulty  — level rises by one every 2 minutes (cap 10), chaos budget
     grows linearly, health decay scales with the level
  2. health      — every active incident drains health, scaled by severity
     and by how long it has been left unresolved; once any incident has been
     resolved a small regeneration applies on every tick
  3. waves       — the wave interval shrinks with difficulty; each wave start
     is followed by a cooldown, after which the next wave starts directly
  4. game over   — health at or below the threshold ends the session

The session never spawns incidents itself.  It announces wave boundaries
with ``session:wave``; the IncidentEngine listens and spawns the batch.
Resolutions come back as ``incident:resolved`` and feed XP, combo and a
health bonus into the session.

All session mutations and the notifications they publish happen under one
re-entrant lock, so a tick summary always matches the counters that a
concurrent resolution sees.

Events published on EventBus:
  - ``session:started``, ``session:tick``, ``session:wave``
  - ``session:incident-resolved``, ``session:game-over``
  - ``session:paused``, ``session:resumed``, ``session:exited``
"""

from __future__ import annotations

import copy
import math
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from loguru import logger

from .ticker import PeriodicTicker

if TYPE_CHECKING:
    from comms.event_bus import EventBus
    from .cluster import ClusterState
    from .incidents import IncidentEngine
    from .scoring import ScoringEngine


# Baseline topology seeded into the cluster on every start
CHAOS_TOPOLOGY: dict[str, list[dict]] = {
    "nodes": [
        {"kind": "Node", "name": "chaos-node-1", "spec": {"cpu": "8", "memory": "16Gi", "status": "Ready"}},
        {"kind": "Node", "name": "chaos-node-2", "spec": {"cpu": "8", "memory": "16Gi", "status": "Ready"}},
        {"kind": "Node", "name": "chaos-node-3", "spec": {"cpu": "8", "memory": "16Gi", "status": "Ready"}},
    ],
    "workloads": [
        {"kind": "Deployment", "name": "web-frontend", "spec": {"replicas": 2, "image": "nginx:latest"}},
        {"kind": "Deployment", "name": "api-backend", "spec": {"replicas": 2, "image": "node:18"}},
        {"kind": "Deployment", "name": "worker", "spec": {"replicas": 1, "image": "python:3.11"}},
        {"kind": "Service", "name": "web-svc", "spec": {"type": "ClusterIP", "port": 80}},
        {"kind": "Service", "name": "api-svc", "spec": {"type": "ClusterIP", "port": 3000}},
    ],
}

MAX_DIFFICULTY = 10
MAX_HEALTH = 100.0

# Difficulty curve
_MINUTES_PER_LEVEL = 2
_CHAOS_BUDGET_PER_MINUTE = 0.5
_DECAY_PER_LEVEL = 0.1

# Health accounting (per-minute rates, applied per tick as rate / 60)
_SEVERITY_PENALTY = 2.0
_AGE_PENALTY_PER_MINUTE = 0.5
_REGEN_RATE = 0.5
_MAX_RESOLVE_BONUS = 10.0
_RESOLVE_BONUS_PER_SEVERITY = 2.0

# Wave cadence
_BASE_WAVE_INTERVAL = 3.0        # minutes
_WAVE_INTERVAL_PER_LEVEL = 0.2   # minutes shaved off per difficulty level
_MIN_WAVE_INTERVAL = 1.0         # minutes
_MAX_WAVE_INCIDENTS = 5
_BASE_WAVE_COOLDOWN = 15         # seconds
_MIN_WAVE_COOLDOWN = 5           # seconds


def difficulty_for(survival_time: float) -> int:
    minutes = survival_time / 60
    return min(MAX_DIFFICULTY, 1 + math.floor(minutes / _MINUTES_PER_LEVEL))


def chaos_budget_for(survival_time: float) -> float:
    return 1 + (survival_time / 60) * _CHAOS_BUDGET_PER_MINUTE


def wave_interval_for(difficulty_level: int) -> float:
    """Minutes between scheduled waves at this difficulty."""
    return max(_MIN_WAVE_INTERVAL, _BASE_WAVE_INTERVAL - difficulty_level * _WAVE_INTERVAL_PER_LEVEL)


def wave_incident_count_for(wave_number: int) -> int:
    return min(_MAX_WAVE_INCIDENTS, 1 + wave_number // 3)


def wave_cooldown_for(difficulty_level: int) -> int:
    return max(_MIN_WAVE_COOLDOWN, _BASE_WAVE_COOLDOWN - difficulty_level)


def incident_penalty(severity: float, age_seconds: float) -> float:
    """Per-minute health penalty of one unresolved incident."""
    age_minutes = max(0.0, age_seconds) / 60
    return severity * _SEVERITY_PENALTY * (1 + age_minutes * _AGE_PENALTY_PER_MINUTE)


@dataclass
class ChaosSession:
    """All mutable state of one chaos session.

    Replaced wholesale on start so no field survives a restart by accident.
    """

    state: str = "idle"
    survival_time: float = 0.0
    start_time: float = 0.0
    paused_time: float = 0.0
    pause_start: float = 0.0
    chaos_budget: float = 1.0
    difficulty_level: int = 1
    health_decay_rate: float = 0.0
    cluster_health: float = MAX_HEALTH
    total_xp: int = 0
    incidents_resolved: int = 0
    highest_combo: int = 0
    wave_number: int = 0
    wave_incident_count: int = 0
    wave_cooldown: bool = False
    wave_cooldown_timer: int = 0


class ChaosMode:
    """Chaos survival state machine + difficulty curve + wave controller."""

    STATES = ("idle", "playing", "paused", "game_over")

    def __init__(
        self,
        event_bus: EventBus,
        incident_engine: IncidentEngine,
        scoring_engine: ScoringEngine | None = None,
        cluster_state: ClusterState | None = None,
        *,
        tick_interval: float = 1.0,
        game_over_threshold: float = 0.0,
        clock: Callable[[], float] = time.time,
        ticker_factory: Callable[..., PeriodicTicker] = PeriodicTicker,
    ) -> None:
        self._event_bus = event_bus
        self._incidents = incident_engine
        self._scoring = scoring_engine
        self._cluster = cluster_state
        self._clock = clock
        self.game_over_threshold = game_over_threshold

        self._lock = threading.RLock()
        self._ticker = ticker_factory(tick_interval, self._on_timer)
        self._unsubscribe_resolved: Callable[[], None] | None = None
        self._destroyed = False

        self.session = ChaosSession()
        self.final_report: dict | None = None

    @property
    def state(self) -> str:
        return self.session.state

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # -- Public interface -------------------------------------------------------

    def start(self) -> None:
        """Reset the session and begin playing."""
        with self._lock:
            if self._destroyed:
                return
            self._stop_ticking()
            self.session = ChaosSession(state="playing", start_time=self._clock())
            self.final_report = None

            self._setup_cluster()
            self._incidents.reset()
            self._incidents.start("chaos")

            self._ticker.start()
            self._detach_listener()
            self._unsubscribe_resolved = self._event_bus.on(
                "incident:resolved", self._handle_incident_resolved
            )

            logger.info("Chaos session started")
            self._event_bus.publish("session:started", {
                "topology": copy.deepcopy(CHAOS_TOPOLOGY),
                "difficulty_level": self.session.difficulty_level,
            })

    def tick(self) -> dict | None:
        """Advance the session by one tick.

        Returns the final report if the session ended during this tick.
        """
        with self._lock:
            s = self.session
            if self._destroyed or s.state != "playing":
                return None

            now = self._clock()
            s.survival_time = max(s.survival_time, now - s.start_time - s.paused_time)

            self._update_difficulty()
            self._update_health(now)
            self._update_waves()
            report = self._check_game_over()

            self._event_bus.publish("session:tick", {
                "survival_time": round(s.survival_time),
                "difficulty_level": s.difficulty_level,
                "chaos_budget": round(s.chaos_budget, 1),
                "cluster_health": round(s.cluster_health),
                "active_incident_count": len(self._active_incidents()),
                "incidents_resolved": s.incidents_resolved,
                "current_combo": self._current_combo(),
                "highest_combo": s.highest_combo,
                "total_xp": s.total_xp,
                "wave_number": s.wave_number,
            })
            return report

    def on_incident_resolved(self, resolution: dict) -> None:
        """Apply an incident resolution to the session (playing only)."""
        with self._lock:
            s = self.session
            if self._destroyed or s.state != "playing":
                return

            xp = resolution.get("xp_earned") or 0
            combo = resolution.get("combo") or 0
            severity = resolution.get("severity") or 0

            s.incidents_resolved += 1
            s.total_xp += xp
            s.highest_combo = max(s.highest_combo, combo)

            bonus = min(_MAX_RESOLVE_BONUS, severity * _RESOLVE_BONUS_PER_SEVERITY)
            s.cluster_health = min(MAX_HEALTH, s.cluster_health + bonus)

            logger.debug(f"Incident resolved: +{xp} XP, combo {combo}, +{bonus} health")
            self._event_bus.publish("session:incident-resolved", {
                "xp_earned": xp,
                "combo": combo,
                "health_recovered": bonus,
                "cluster_health": round(s.cluster_health),
            })

    def resolve_incident(self, incident_id: str, action: str = "manual") -> dict | None:
        """Resolve an incident on behalf of the player.

        The state check and the resolution run under the session lock, so a
        concurrent pause waits until the XP is credited. Returns None when not
        playing or when the incident is unknown.
        """
        with self._lock:
            if self._destroyed or self.session.state != "playing":
                return None
            return self._incidents.resolve_incident(incident_id, action)

    def pause(self) -> None:
        with self._lock:
            s = self.session
            if self._destroyed or s.state != "playing":
                return
            s.state = "paused"
            s.pause_start = self._clock()
            self._stop_ticking()
            self._incidents.pause()
            logger.info(f"Chaos session paused at {s.survival_time:.0f}s")
            self._event_bus.publish("session:paused", {"survival_time": round(s.survival_time)})

    def resume(self) -> None:
        with self._lock:
            s = self.session
            if self._destroyed or s.state != "paused":
                return
            s.state = "playing"
            s.paused_time += self._clock() - s.pause_start
            self._incidents.resume()
            self._ticker.start()
            logger.info("Chaos session resumed")
            self._event_bus.publish("session:resumed", {})

    def restart(self) -> None:
        with self._lock:
            if self._destroyed:
                return
            self._stop_ticking()
            self._incidents.reset()
            self.start()

    def exit(self) -> None:
        """Leave the session and return to idle without resetting counters."""
        with self._lock:
            if self._destroyed:
                return
            self._stop_ticking()
            self._incidents.stop()
            self._detach_listener()
            self.session.state = "idle"
            logger.info("Chaos session exited")
            self._event_bus.publish("session:exited", {})

    def get_status(self) -> dict:
        """Snapshot of the session for API/frontend. Safe in any state."""
        with self._lock:
            s = self.session
            return {
                "state": s.state,
                "survival_time": round(s.survival_time),
                "difficulty_level": s.difficulty_level,
                "chaos_budget": round(s.chaos_budget, 1),
                "cluster_health": round(s.cluster_health),
                "health_decay_rate": round(s.health_decay_rate, 2),
                "active_incidents": self._active_incidents(),
                "incidents_resolved": s.incidents_resolved,
                "current_combo": self._current_combo(),
                "highest_combo": s.highest_combo,
                "total_xp": s.total_xp,
                "wave_number": s.wave_number,
                "wave_incident_count": s.wave_incident_count,
                "wave_cooldown": s.wave_cooldown,
                "wave_cooldown_timer": s.wave_cooldown_timer,
            }

    def destroy(self) -> None:
        with self._lock:
            self._stop_ticking()
            self._detach_listener()
            self._destroyed = True
            self._event_bus = None
            self._incidents = None
            self._scoring = None
            self._cluster = None

    # -- Setup ------------------------------------------------------------------

    def _setup_cluster(self) -> None:
        if self._cluster is None:
            logger.warning("No cluster state attached; skipping topology seed")
            return
        self._cluster.clear()
        for resource in CHAOS_TOPOLOGY["nodes"] + CHAOS_TOPOLOGY["workloads"]:
            self._cluster.add_resource({
                "kind": resource["kind"],
                "name": resource["name"],
                "metadata": {"name": resource["name"], "namespace": "default", "labels": {}},
                "spec": dict(resource["spec"]),
                "status": {"phase": "Running"},
            })

    # -- Tick sub-steps ---------------------------------------------------------

    def _update_difficulty(self) -> None:
        s = self.session
        s.difficulty_level = difficulty_for(s.survival_time)
        s.chaos_budget = chaos_budget_for(s.survival_time)
        s.health_decay_rate = s.difficulty_level * _DECAY_PER_LEVEL

    def _update_health(self, now: float) -> None:
        s = self.session
        penalty = sum(
            incident_penalty(inc.get("severity", 0), now - inc.get("created_at", now))
            for inc in self._active_incidents()
        )
        penalty += s.health_decay_rate

        # Regeneration stays on for the rest of the session after the first fix
        regen = _REGEN_RATE if s.incidents_resolved > 0 else 0.0
        health = s.cluster_health - penalty / 60 + regen / 60
        s.cluster_health = max(0.0, min(MAX_HEALTH, health))

    def _update_waves(self) -> None:
        s = self.session
        if s.wave_cooldown:
            s.wave_cooldown_timer -= 1
            if s.wave_cooldown_timer <= 0:
                s.wave_cooldown = False
                self._start_wave()
            return

        minutes = s.survival_time / 60
        expected_wave = math.floor(minutes / wave_interval_for(s.difficulty_level)) + 1
        if expected_wave > s.wave_number:
            self._start_wave()

    def _start_wave(self) -> None:
        s = self.session
        s.wave_number += 1
        s.wave_incident_count = wave_incident_count_for(s.wave_number)

        logger.debug(f"Wave {s.wave_number}: {s.wave_incident_count} incidents at level {s.difficulty_level}")
        self._event_bus.publish("session:wave", {
            "wave_number": s.wave_number,
            "incident_count": s.wave_incident_count,
            "difficulty_level": s.difficulty_level,
        })

        s.wave_cooldown = True
        s.wave_cooldown_timer = wave_cooldown_for(s.difficulty_level)

    def _check_game_over(self) -> dict | None:
        if self.session.cluster_health <= self.game_over_threshold:
            return self._game_over()
        return None

    def _game_over(self) -> dict:
        s = self.session
        s.state = "game_over"
        self._stop_ticking()
        self._incidents.stop()

        if self._scoring is not None:
            self._scoring.record_survival(s.survival_time)

        report = {
            "survival_time": round(s.survival_time),
            "difficulty_reached": s.difficulty_level,
            "incidents_resolved": s.incidents_resolved,
            "highest_combo": s.highest_combo,
            "total_xp": s.total_xp,
            "waves_reached": s.wave_number,
            "incident_breakdown": self._incidents.get_stats(),
        }
        self.final_report = report

        logger.info(
            f"Chaos session over: survived {report['survival_time']}s, "
            f"level {report['difficulty_reached']}, {report['incidents_resolved']} resolved"
        )
        self._event_bus.publish("session:game-over", report)
        return report

    # -- Helpers ----------------------------------------------------------------

    def _on_timer(self) -> None:
        with self._lock:
            if self._ticker.owns_current_thread():
                self.tick()

    def _handle_incident_resolved(self, data: dict) -> None:
        self.on_incident_resolved(data)

    def _active_incidents(self) -> list[dict]:
        if self._incidents is None:
            return []
        return self._incidents.get_active_incidents()

    def _current_combo(self) -> int:
        if self._incidents is None:
            return 0
        return self._incidents.combo_count

    def _stop_ticking(self) -> None:
        self._ticker.cancel()

    def _detach_listener(self) -> None:
        if self._unsubscribe_resolved is not None:
            self._unsubscribe_resolved()
            self._unsubscribe_resolved = None
