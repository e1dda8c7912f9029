"""
Container lifecycle actions.

ActionDispatcher maps a user action onto the matching engine call and keeps
the rest of the client consistent afterwards:
  - remove asks for confirmation first and never forces
  - a successful remove drops the container's cached detail/stats/logs and
    tells the view coordinator, which leaves the detail view if needed
  - every action that reached the engine, successful or not, is followed by
    exactly one refresh of the container list

Actions on the same container are serialized; actions on different
containers may interleave.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Union

from .cache import ResourceCache, ResourceKind

logger = logging.getLogger(__name__)

ConfirmFn = Callable[[str], Union[bool, Awaitable[bool]]]


class LifecycleAction(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    PAUSE = "pause"
    UNPAUSE = "unpause"
    REMOVE = "remove"


@dataclass(frozen=True)
class ActionOutcome:
    action: LifecycleAction
    container_id: str
    ok: bool
    error: Optional[str] = None
    cancelled: bool = False


class ActionDispatcher:
    def __init__(self, engine, cache: ResourceCache, coordinator=None):
        self.engine = engine
        self.cache = cache
        self.coordinator = coordinator
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def apply(self, action: Union[LifecycleAction, str], container_id: str,
                    confirm_fn: Optional[ConfirmFn] = None) -> ActionOutcome:
        action = LifecycleAction(action)
        lock = self._locks.setdefault(container_id, asyncio.Lock())
        self._lock_users[container_id] = self._lock_users.get(container_id, 0) + 1
        try:
            async with lock:
                return await self._apply_locked(action, container_id, confirm_fn)
        finally:
            self._lock_users[container_id] -= 1
            if not self._lock_users[container_id]:
                del self._lock_users[container_id]
                del self._locks[container_id]

    async def _apply_locked(self, action: LifecycleAction, container_id: str,
                            confirm_fn: Optional[ConfirmFn]) -> ActionOutcome:
        if action is LifecycleAction.REMOVE and not await self._confirmed(confirm_fn, container_id):
            logger.info(f"Remove of {container_id[:12]} declined")
            return ActionOutcome(action, container_id, ok=False, cancelled=True)

        result = await self._call(action, container_id)
        if result.ok:
            logger.info(f"{action.value} {container_id[:12]}: ok")
            if action is LifecycleAction.REMOVE:
                self.cache.forget_container(container_id)
                if self.coordinator is not None:
                    self.coordinator.on_container_removed(container_id)
        else:
            logger.error(f"{action.value} {container_id[:12]} failed: {result.error}")
            if self.coordinator is not None:
                self.coordinator.report_error(result.error)

        await self._refresh_list()
        return ActionOutcome(action, container_id, result.ok, result.error)

    async def _call(self, action: LifecycleAction, container_id: str):
        if action is LifecycleAction.START:
            return await self.engine.start_container(container_id)
        if action is LifecycleAction.STOP:
            return await self.engine.stop_container(container_id)
        if action is LifecycleAction.RESTART:
            return await self.engine.restart_container(container_id)
        if action is LifecycleAction.PAUSE:
            return await self.engine.pause_container(container_id)
        if action is LifecycleAction.UNPAUSE:
            return await self.engine.unpause_container(container_id)
        return await self.engine.remove_container(container_id, force=False)

    async def _confirmed(self, confirm_fn: Optional[ConfirmFn], container_id: str) -> bool:
        if confirm_fn is None:
            return False
        answer = confirm_fn(f"Remove container {container_id[:12]}?")
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    async def _refresh_list(self) -> None:
        show_all = self.coordinator.show_all if self.coordinator is not None else False
        refreshed = await self.cache.refresh(ResourceKind.CONTAINERS, show_all)
        if not refreshed.ok:
            logger.debug(f"Post-action refresh failed: {refreshed.error}")
