"""
Periodic refresh scheduling.

Each visible view registers a ScopeKey; while the engine is reachable the
scheduler keeps exactly one asyncio task per mounted scope, refreshing the
matching cache entries immediately and then every `interval` seconds.

Lifecycle:
- mount(scope): remember the scope; start its timer if connected
- unmount(scope): forget it and cancel its timer (an in-flight refresh is
  cancelled before it can write to the cache)
- rescope(old, new): the same view changed target or filters
- connect()/retry_connection(): probe the engine; timers only run after a
  successful probe, and a connectivity failure in any tick suspends all
  of them until the next successful retry

Other failures are reported through on_error and ticking continues; a tick
where every refresh of a scope succeeded is reported through on_refresh.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from .cache import ResourceCache, ResourceKind
from .engine import EngineResult

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Optional["ScopeKey"], str], None]
RefreshCallback = Callable[["ScopeKey"], None]


@dataclass(frozen=True)
class ScopeKey:
    view: str
    target: Optional[str] = None
    filters: Tuple[Tuple[str, Hashable], ...] = ()

    @classmethod
    def containers(cls, show_all: bool = False) -> "ScopeKey":
        return cls("list", filters=(("all", bool(show_all)),))

    @classmethod
    def details(cls, container_id: str) -> "ScopeKey":
        return cls("details", container_id)

    @classmethod
    def logs(cls, container_id: str, tail: str = "100") -> "ScopeKey":
        return cls("logs", container_id, (("tail", tail),))

    @classmethod
    def images(cls) -> "ScopeKey":
        return cls("images")

    @classmethod
    def volumes(cls) -> "ScopeKey":
        return cls("volumes")

    @classmethod
    def networks(cls) -> "ScopeKey":
        return cls("networks")

    def filter(self, name: str, default: Hashable = None) -> Hashable:
        return dict(self.filters).get(name, default)


_STATIC_VIEWS = {
    "images": ResourceKind.IMAGES,
    "volumes": ResourceKind.VOLUMES,
    "networks": ResourceKind.NETWORKS,
}
SCHEDULABLE_VIEWS = {"list", "details", "logs", *_STATIC_VIEWS}


class SyncScheduler:
    def __init__(self, engine, cache: ResourceCache, interval: float = 5.0,
                 on_error: Optional[ErrorCallback] = None,
                 on_refresh: Optional[RefreshCallback] = None):
        self.engine = engine
        self.cache = cache
        self.interval = interval
        self.on_error = on_error
        self.on_refresh = on_refresh
        self.connected = False
        self.last_error: Optional[str] = None
        self._mounted: Dict[ScopeKey, None] = {}
        self._timers: Dict[ScopeKey, asyncio.Task] = {}

    @property
    def active_timer_count(self) -> int:
        return len(self._timers)

    @property
    def mounted_scopes(self) -> List[ScopeKey]:
        return list(self._mounted)

    def has_timer(self, scope: ScopeKey) -> bool:
        return scope in self._timers

    async def connect(self) -> bool:
        """Probe the engine. Starts timers for mounted scopes only on success."""
        result = await self.engine.check_connection()
        if result.ok and result.value:
            self.connected = True
            self.last_error = None
            logger.info("Docker engine reachable")
            for scope in self._mounted:
                self._start_timer(scope)
        else:
            self._suspend(result.error or "Docker engine did not answer ping")
        return self.connected

    async def retry_connection(self) -> bool:
        logger.info("Connection retry requested")
        return await self.connect()

    def mount(self, scope: ScopeKey) -> None:
        if scope.view not in SCHEDULABLE_VIEWS:
            raise ValueError(f"View '{scope.view}' has no refreshable scope")
        self._mounted[scope] = None
        if self.connected:
            self._start_timer(scope)

    def unmount(self, scope: ScopeKey) -> None:
        self._mounted.pop(scope, None)
        task = self._timers.pop(scope, None)
        if task is not None:
            task.cancel()
            logger.debug(f"Timer stopped for {scope}")

    def rescope(self, old: Optional[ScopeKey], new: Optional[ScopeKey]) -> None:
        if old == new:
            return
        if old is not None:
            self.unmount(old)
        if new is not None:
            self.mount(new)

    async def refresh_scope(self, scope: ScopeKey) -> List[EngineResult]:
        """Refresh every cache entry backing one scope, in order."""
        if scope.view == "list":
            return [await self.cache.refresh(ResourceKind.CONTAINERS, scope.filter("all", False))]
        if scope.view == "details":
            detail = await self.cache.refresh(ResourceKind.CONTAINER_DETAIL, scope.target)
            if detail.connectivity:
                return [detail]
            return [detail, await self.cache.refresh(ResourceKind.STATS, scope.target)]
        if scope.view == "logs":
            return [await self.cache.refresh(ResourceKind.LOGS, (scope.target, scope.filter("tail", "100")))]
        return [await self.cache.refresh(_STATIC_VIEWS[scope.view])]

    async def shutdown(self) -> None:
        tasks = list(self._timers.values())
        self._timers.clear()
        self._mounted.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug(f"Scheduler stopped ({len(tasks)} timers)")

    def _start_timer(self, scope: ScopeKey) -> None:
        if scope in self._timers:
            return
        task = asyncio.create_task(self._run(scope), name=f"refresh:{scope.view}:{scope.target}")
        task.add_done_callback(lambda t, s=scope: self._timer_done(s, t))
        self._timers[scope] = task
        logger.debug(f"Timer started for {scope}")

    def _timer_done(self, scope: ScopeKey, task: asyncio.Task) -> None:
        if self._timers.get(scope) is task:
            del self._timers[scope]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Refresh timer for {scope} crashed", exc_info=task.exception())

    async def _run(self, scope: ScopeKey) -> None:
        while True:
            failed = False
            for result in await self.refresh_scope(scope):
                if result.ok:
                    continue
                if result.connectivity:
                    self._suspend(result.error)
                    return
                failed = True
                self._report(scope, result.error)
            if not failed and self.on_refresh:
                self.on_refresh(scope)
            await asyncio.sleep(self.interval)

    def _suspend(self, reason: str) -> None:
        was_connected = self.connected
        self.connected = False
        self.last_error = reason
        current = asyncio.current_task()
        timers = list(self._timers.values())
        self._timers.clear()
        for task in timers:
            if task is not current:
                task.cancel()
        if was_connected:
            logger.warning(f"Engine connection lost, {len(timers)} timers suspended: {reason}")
        else:
            logger.warning(f"Engine not reachable: {reason}")
        if self.on_error:
            self.on_error(None, reason)

    def _report(self, scope: ScopeKey, message: str) -> None:
        self.last_error = message
        logger.debug(f"Refresh of {scope} failed: {message}")
        if self.on_error:
            self.on_error(scope, message)
