"""ClusterState — in-memory store of mock cluster resources.

Resources are plain dicts keyed by ``Kind/namespace/name``.  The store is
what incidents target (a NodeNotReady needs a Node to land on) and what the
chaos session seeds with its baseline topology on every start.
"""

from __future__ import annotations

import copy
import threading
from typing import Iterator


def resource_uid(kind: str, name: str, namespace: str = "default") -> str:
    return f"{kind}/{namespace}/{name}"


class ClusterState:
    """Mapping from resource identity to resource record."""

    def __init__(self) -> None:
        self._resources: dict[str, dict] = {}
        self._lock = threading.Lock()

    def clear(self) -> None:
        with self._lock:
            self._resources.clear()

    def add_resource(self, record: dict) -> str:
        """Insert or replace a resource record. Returns its uid."""
        kind = record.get("kind")
        metadata = record.get("metadata") or {}
        name = record.get("name") or metadata.get("name")
        if not kind or not name:
            raise ValueError("resource record needs 'kind' and 'name'")
        namespace = metadata.get("namespace", "default")
        uid = resource_uid(kind, name, namespace)
        with self._lock:
            self._resources[uid] = {**record, "uid": uid, "name": name}
        return uid

    def get(self, kind: str, name: str, namespace: str = "default") -> dict | None:
        with self._lock:
            return self._resources.get(resource_uid(kind, name, namespace))

    def get_by_kind(self, kind: str) -> list[dict]:
        with self._lock:
            return [r for r in self._resources.values() if r["kind"] == kind]

    def snapshot(self) -> list[dict]:
        with self._lock:
            return copy.deepcopy(list(self._resources.values()))

    def __iter__(self) -> Iterator[dict]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._resources)
