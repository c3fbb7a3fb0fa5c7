"""IncidentEngine — spawns, tracks and resolves cluster incidents.

Architecture
------------
Incidents are simulated infrastructure problems (CrashLoopBackOff,
NodeNotReady, ...) pinned to a resource in the ClusterState.  The engine
does not run its own clock.  In chaos mode it listens for the session's
``session:wave`` notifications and spawns ``incident_count`` incidents per
wave, picking definitions with a difficulty-weighted roll:

  - only definitions with ``severity <= min(5, ceil(level / 2))`` are
    eligible, so early waves never contain control-plane outages
  - an eligible definition weighs 3 once ``level >= 2 * severity``, 2 once
    ``level >= severity``, otherwise 1

A wave stops early once ``5 + difficulty_level`` incidents are active.  On
every ``session:tick`` incidents with an ``auto_resolve_time`` that have been
open that long resolve themselves (action ``auto``) and are scored like any
other resolution.  Neither runs while the engine is paused or stopped.

Resolution XP comes from the severity table.  Resolving within
``combo_window`` seconds of the previous resolution grows the combo and
multiplies XP by ``1 + 0.25 * combo``; a resolution that took under 30s
earns a further 1.5x.

Events published on the EventBus:
  - ``incident:created``: new incident is active
  - ``incident:resolved``: carries ``xp_earned``, ``combo`` and ``severity``

Events are always published after the engine's own lock is released, so a
subscriber (ChaosMode) may call back into ``get_active_incidents()``.
"""

from __future__ import annotations

import math
import random
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from loguru import logger

if TYPE_CHECKING:
    from comms.event_bus import EventBus
    from .cluster import ClusterState


@dataclass(frozen=True)
class IncidentDef:
    """Static description of an incident type."""

    name: str
    category: str
    severity: int
    affected_kinds: tuple[str, ...]
    auto_resolve_time: float | None = None  # seconds until the incident clears itself


@dataclass(frozen=True)
class SeverityLevel:
    level: int
    name: str
    xp_reward: int


SEVERITY_LEVELS: dict[int, SeverityLevel] = {
    1: SeverityLevel(1, "Low", 25),
    2: SeverityLevel(2, "Medium", 50),
    3: SeverityLevel(3, "High", 100),
    4: SeverityLevel(4, "Critical", 200),
    5: SeverityLevel(5, "Emergency", 350),
}

INCIDENT_DEFS: list[IncidentDef] = [
    IncidentDef("CrashLoopBackOff",       "Pod",          3, ("Pod", "Deployment")),
    IncidentDef("ImagePullBackOff",       "Pod",          2, ("Pod", "Deployment")),
    IncidentDef("OOMKilled",              "Pod",          3, ("Pod", "Deployment")),
    IncidentDef("PodEviction",            "Pod",          2, ("Pod", "Node")),
    IncidentDef("ReadinessProbeFailure",  "Pod",          2, ("Pod", "Service"), 60),
    IncidentDef("PodStuckTerminating",    "Pod",          2, ("Pod",), 120),
    IncidentDef("NodeNotReady",           "Node",         5, ("Node", "Pod")),
    IncidentDef("NodeDiskPressure",       "Node",         4, ("Node",)),
    IncidentDef("NodeMemoryPressure",     "Node",         4, ("Node", "Pod")),
    IncidentDef("NodePIDPressure",        "Node",         3, ("Node",)),
    IncidentDef("ServiceEndpointMissing", "Network",      3, ("Service", "Deployment")),
    IncidentDef("DNSResolutionFailure",   "Network",      4, ("Service", "Pod")),
    IncidentDef("PVCPending",             "Storage",      3, ("PersistentVolumeClaim",)),
    IncidentDef("EtcdLatency",            "ControlPlane", 5, ("Node",)),
    # Only severity-1 entry; keeps the pool non-empty while the cap is 1 (levels 1-2)
    IncidentDef("ConfigMapMissing",       "Config",       1, ("Deployment",)),
]

# Seconds between resolutions that still extend the combo
DEFAULT_COMBO_WINDOW = 10.0

# Active incidents allowed at difficulty 0; each level adds one
_BASE_MAX_ACTIVE = 5

# Resolutions faster than this earn the quick-fix bonus
_QUICK_FIX_SECONDS = 30.0
_QUICK_FIX_MULT = 1.5


def max_severity_for(level: int) -> int:
    return min(5, math.ceil(level / 2))


def incident_weight(level: int, definition: IncidentDef) -> int:
    if level >= definition.severity * 2:
        return 3
    if level >= definition.severity:
        return 2
    return 1


@dataclass
class Incident:
    """A live or resolved incident."""

    id: str
    name: str
    category: str
    severity: int
    target: str
    created_at: float
    state: str = "Active"
    resolved_at: float | None = None
    resolved_by: str | None = None
    auto_resolve_time: float | None = None

    def resolution_time(self) -> float | None:
        if self.resolved_at is None:
            return None
        return self.resolved_at - self.created_at

    def is_expired(self, now: float) -> bool:
        if self.auto_resolve_time is None:
            return False
        return now - self.created_at >= self.auto_resolve_time

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "severity": self.severity,
            "target": self.target,
            "state": self.state,
            "created_at": self.created_at,
        }


class IncidentEngine:
    """Incident collaborator for the chaos session."""

    def __init__(
        self,
        event_bus: EventBus,
        cluster_state: ClusterState | None = None,
        *,
        combo_window: float = DEFAULT_COMBO_WINDOW,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._event_bus = event_bus
        self._cluster = cluster_state
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self.combo_window = combo_window

        self.mode: str | None = None
        self.running = False
        self.paused = False
        self.difficulty_level = 1
        self.combo_count = 0
        self._last_resolve_time: float | None = None
        self._counter = 0
        self._active: dict[str, Incident] = {}
        self._resolved: list[Incident] = []
        self._unsubscribers: list[Callable[[], None]] = []

    # -- Lifecycle ----------------------------------------------------------

    def start(self, mode: str) -> None:
        with self._lock:
            self.mode = mode
            self.running = True
            self.paused = False
            self.combo_count = 0
            self._counter = 0
            self._active.clear()
            self._resolved = []
        self._detach()
        if mode == "chaos":
            self._unsubscribers = [
                self._event_bus.on("session:wave", self._on_wave),
                self._event_bus.on("session:tick", self._on_tick),
            ]
        logger.debug(f"Incident engine started in {mode} mode")

    def stop(self) -> None:
        with self._lock:
            self.running = False
            self.paused = True
        self._detach()

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def reset(self) -> None:
        self.stop()
        with self._lock:
            self._active.clear()
            self._resolved = []
            self._counter = 0
            self.difficulty_level = 1
            self.combo_count = 0
            self._last_resolve_time = None

    def _detach(self) -> None:
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()

    # -- Spawning -----------------------------------------------------------

    def _on_wave(self, data: dict) -> None:
        if not self.running or self.paused:
            return
        self.spawn_wave(
            int(data.get("incident_count", 1)),
            int(data.get("difficulty_level", self.difficulty_level)),
        )

    def _on_tick(self, data: dict) -> None:
        if not self.running or self.paused:
            return
        self.process_auto_resolve()

    def max_active(self) -> int:
        return _BASE_MAX_ACTIVE + self.difficulty_level

    def spawn_wave(self, count: int, difficulty_level: int) -> list[Incident]:
        """Spawn up to `count` incidents, stopping at the active-incident cap."""
        self.difficulty_level = max(1, min(10, difficulty_level))
        spawned = []
        for _ in range(count):
            with self._lock:
                full = len(self._active) >= self.max_active()
            if full:
                logger.debug(f"Incident cap {self.max_active()} reached; wave truncated")
                break
            spawned.append(self.spawn_incident())
        return spawned

    def select_definition(self, level: int | None = None) -> IncidentDef:
        level = self.difficulty_level if level is None else level
        cap = max_severity_for(level)
        pool = [d for d in INCIDENT_DEFS if d.severity <= cap]
        weights = [incident_weight(level, d) for d in pool]
        return self._rng.choices(pool, weights=weights, k=1)[0]

    def select_target(self, definition: IncidentDef) -> str:
        if self._cluster is None:
            return "unknown"
        candidates: list[dict] = []
        for kind in definition.affected_kinds:
            candidates.extend(self._cluster.get_by_kind(kind))
        if not candidates:
            return "unknown"
        return self._rng.choice(candidates).get("name", "unknown")

    def spawn_incident(
        self,
        definition: IncidentDef | None = None,
        target: str | None = None,
        severity: int | None = None,
    ) -> Incident:
        if definition is None:
            definition = self.select_definition()
        if target is None:
            target = self.select_target(definition)
        with self._lock:
            self._counter += 1
            incident = Incident(
                id=f"inc-{self._counter}",
                name=definition.name,
                category=definition.category,
                severity=severity if severity is not None else definition.severity,
                target=target,
                created_at=self._clock(),
                auto_resolve_time=definition.auto_resolve_time,
            )
            self._active[incident.id] = incident
        self._event_bus.publish("incident:created", incident.to_dict())
        return incident

    # -- Resolution ---------------------------------------------------------

    def resolve_incident(self, incident_id: str, action: str = "manual") -> dict | None:
        """Resolve an active incident. Returns the XP/combo result or None."""
        with self._lock:
            incident = self._active.pop(incident_id, None)
            if incident is None:
                return None
            now = self._clock()
            incident.state = "Resolved"
            incident.resolved_at = now
            incident.resolved_by = action
            self._resolved.append(incident)

            level = SEVERITY_LEVELS.get(incident.severity, SEVERITY_LEVELS[1])
            xp = level.xp_reward
            if (
                self._last_resolve_time is not None
                and now - self._last_resolve_time < self.combo_window
            ):
                self.combo_count += 1
                xp = math.floor(xp * (1 + self.combo_count * 0.25))
            else:
                self.combo_count = 1
            self._last_resolve_time = now

            resolution_time = incident.resolution_time()
            if resolution_time is not None and resolution_time < _QUICK_FIX_SECONDS:
                xp = math.floor(xp * _QUICK_FIX_MULT)
            combo = self.combo_count

        payload = {
            "id": incident.id,
            "name": incident.name,
            "severity": incident.severity,
            "resolution_time": round(resolution_time, 1),
            "action": action,
            "xp_earned": xp,
            "combo": combo,
        }
        logger.debug(f"Resolved {incident.name} ({incident.id}) for {xp} XP, combo {combo}")
        self._event_bus.publish("incident:resolved", payload)
        return {"xp_earned": xp, "combo": combo, "resolution_time": payload["resolution_time"]}

    def process_auto_resolve(self) -> list[str]:
        """Resolve every incident past its auto-resolve time. Returns their ids."""
        now = self._clock()
        with self._lock:
            expired = [inc.id for inc in self._active.values() if inc.is_expired(now)]
        for incident_id in expired:
            self.resolve_incident(incident_id, "auto")
        return expired

    # -- Queries ------------------------------------------------------------

    def get_active_incidents(self) -> list[dict]:
        with self._lock:
            return [inc.to_dict() for inc in self._active.values()]

    def get_incident(self, incident_id: str) -> dict | None:
        with self._lock:
            incident = self._active.get(incident_id)
            return incident.to_dict() if incident is not None else None

    def get_stats(self) -> dict:
        with self._lock:
            total = len(self._resolved)
            avg = (
                sum(inc.resolution_time() or 0.0 for inc in self._resolved) / total
                if total
                else 0.0
            )
            by_severity: dict[int, int] = {}
            by_category: dict[str, int] = {}
            for inc in self._resolved:
                by_severity[inc.severity] = by_severity.get(inc.severity, 0) + 1
                by_category[inc.category] = by_category.get(inc.category, 0) + 1
            return {
                "total_resolved": total,
                "active_count": len(self._active),
                "average_resolve_time": round(avg, 1),
                "by_severity": by_severity,
                "by_category": by_category,
                "current_combo": self.combo_count,
                "difficulty_level": self.difficulty_level,
            }
