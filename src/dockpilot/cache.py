"""
Snapshot cache for engine resources.

Holds the most recent successful read of each resource so views can render
without waiting on the engine. Unlike a TTL cache nothing here expires: an
entry is only ever replaced wholesale by a newer successful refresh, and a
failed refresh leaves the previous snapshot in place.

Features:
- One immutable Snapshot per (kind, key)
- Stale-on-error: failures are recorded but never clear data
- Stats are only sampled for containers last seen running
- Version counter bumped on every replacement (cheap change detection)
- Refresh / failure statistics

Keys:
- CONTAINERS: the show-all flag
- CONTAINER_DETAIL, STATS: container id
- LOGS: (container id, tail)
- IMAGES, VOLUMES, NETWORKS: None

All access happens on the event loop thread, so there is no locking.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from .engine import EngineResult
from .model import RUNNING

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    CONTAINERS = "containers"
    CONTAINER_DETAIL = "container_detail"
    STATS = "stats"
    LOGS = "logs"
    IMAGES = "images"
    VOLUMES = "volumes"
    NETWORKS = "networks"


_COLLECTIONS = {ResourceKind.CONTAINERS, ResourceKind.IMAGES, ResourceKind.VOLUMES, ResourceKind.NETWORKS}


@dataclass(frozen=True)
class Snapshot:
    """Result of one successful refresh. Collections are stored as tuples."""
    kind: ResourceKind
    key: Hashable
    data: Any
    refreshed_at: float


class ResourceCache:
    def __init__(self, engine, clock: Callable[[], float] = time.time):
        self.engine = engine
        self._clock = clock
        self._entries: Dict[Tuple[ResourceKind, Hashable], Snapshot] = {}
        self._errors: Dict[Tuple[ResourceKind, Hashable], str] = {}
        self._version = 0
        self._stats = {
            'refreshes': 0,
            'failures': 0,
            'skipped': 0,
        }

    @property
    def version(self) -> int:
        return self._version

    def get(self, kind: ResourceKind, key: Hashable = None) -> Optional[Snapshot]:
        return self._entries.get((kind, self._normalize_key(kind, key)))

    def last_error(self, kind: ResourceKind, key: Hashable = None) -> Optional[str]:
        return self._errors.get((kind, self._normalize_key(kind, key)))

    async def refresh(self, kind: ResourceKind, key: Hashable = None) -> EngineResult:
        """Fetch from the engine and replace the snapshot on success.

        Returns the engine result; on success its value is the new Snapshot
        (or None when a stats sample was skipped for a non-running container).
        """
        key = self._normalize_key(kind, key)
        if kind is ResourceKind.STATS and self.last_known_state(key) != RUNNING:
            # Stopped, paused or unknown: sampling would only produce zeros.
            self._stats['skipped'] += 1
            if self._entries.pop((kind, key), None) is not None:
                self._version += 1
            return EngineResult.success(None)

        result = await self._fetch(kind, key)
        if not result.ok:
            self._stats['failures'] += 1
            self._errors[(kind, key)] = result.error
            logger.debug(f"Refresh of {kind.value}:{key} failed, keeping previous snapshot: {result.error}")
            return result

        data = tuple(result.value) if kind in _COLLECTIONS else result.value
        snapshot = Snapshot(kind, key, data, self._clock())
        self._entries[(kind, key)] = snapshot
        self._errors.pop((kind, key), None)
        self._stats['refreshes'] += 1
        self._version += 1
        return EngineResult.success(snapshot)

    def forget(self, kind: ResourceKind, key: Hashable = None) -> None:
        key = self._normalize_key(kind, key)
        self._errors.pop((kind, key), None)
        if self._entries.pop((kind, key), None) is not None:
            self._version += 1

    def forget_container(self, container_id: str) -> None:
        """Drop everything cached about one container (after it was removed)."""
        stale = [
            k for k in self._entries
            if (k[0] in (ResourceKind.CONTAINER_DETAIL, ResourceKind.STATS) and k[1] == container_id)
            or (k[0] is ResourceKind.LOGS and k[1][0] == container_id)
        ]
        for entry_key in stale:
            del self._entries[entry_key]
            self._errors.pop(entry_key, None)
        if stale:
            self._version += 1
            logger.debug(f"Dropped {len(stale)} cached entries for container {container_id[:12]}")

    def last_known_state(self, container_id: str) -> Optional[str]:
        detail = self._entries.get((ResourceKind.CONTAINER_DETAIL, container_id))
        if detail is not None:
            return detail.data.state
        for show_all in (True, False):
            listing = self._entries.get((ResourceKind.CONTAINERS, show_all))
            if listing is None:
                continue
            for record in listing.data:
                if record.id == container_id or record.id.startswith(container_id):
                    return record.state
        return None

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            'entries': len(self._entries),
            'errors': len(self._errors),
            'version': self._version,
        }

    @staticmethod
    def _normalize_key(kind: ResourceKind, key: Hashable) -> Hashable:
        if kind is ResourceKind.CONTAINERS:
            return bool(key)
        return key

    async def _fetch(self, kind: ResourceKind, key: Hashable) -> EngineResult:
        if kind is ResourceKind.CONTAINERS:
            return await self.engine.list_containers(all=key)
        if kind is ResourceKind.CONTAINER_DETAIL:
            return await self.engine.get_container_details(key)
        if kind is ResourceKind.STATS:
            return await self.engine.get_container_stats(key)
        if kind is ResourceKind.LOGS:
            container_id, tail = key
            return await self.engine.get_container_logs(container_id, tail)
        if kind is ResourceKind.IMAGES:
            return await self.engine.list_images()
        if kind is ResourceKind.VOLUMES:
            return await self.engine.list_volumes()
        if kind is ResourceKind.NETWORKS:
            return await self.engine.list_networks()
        raise ValueError(f"Unknown resource kind: {kind}")
