"""Chaos survival simulation — session state machine and its collaborators.

Package layout:
  chaos_mode.py — ChaosMode (session state machine, difficulty, health, waves)
  ticker.py     — PeriodicTicker (cancellable 1 Hz driver)
  incidents.py  — IncidentEngine (wave-driven spawning, resolution, combos)
  scoring.py    — ScoringEngine (session outcomes)
  cluster.py    — ClusterState (mock cluster resource store)
"""

from .chaos_mode import CHAOS_TOPOLOGY, ChaosMode, ChaosSession
from .cluster import ClusterState
from .incidents import Incident, IncidentEngine
from .scoring import ScoringEngine
from .ticker import PeriodicTicker

__all__ = [
    "CHAOS_TOPOLOGY",
    "ChaosMode",
    "ChaosSession",
    "ClusterState",
    "Incident",
    "IncidentEngine",
    "PeriodicTicker",
    "ScoringEngine",
]
