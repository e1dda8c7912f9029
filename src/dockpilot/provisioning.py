"""
Guided provisioning from a template.

Runs the "use template" flow as an explicit phase machine:

    checking --present--> creating --> done
    checking --missing--> pulling --ok--> pulled --(pacing delay)--> creating --> done
    pulling --error--> failed --> creating --> done
    checking --error--> creating --> done

Every path ends with the create form being handed the template, even when
the pull failed, so the user can still adjust and submit. Dismissing the
flow (dismiss()) at any point discards whatever result is still in flight:
no further transition, no handoff.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

from .templates import Template

logger = logging.getLogger(__name__)

Handoff = Callable[[Template], Union[None, Awaitable[None]]]


class Phase(str, Enum):
    CHECKING = "checking"
    PULLING = "pulling"
    PULLED = "pulled"
    CREATING = "creating"
    FAILED = "failed"
    DONE = "done"


@dataclass
class ProvisioningSession:
    template: Template
    phase: Phase = Phase.CHECKING
    message: str = ""
    error: Optional[str] = None
    history: List[Phase] = field(default_factory=list)


class ProvisioningWorkflow:
    def __init__(self, engine, template: Template,
                 on_transition: Optional[Callable[[ProvisioningSession], None]] = None,
                 handoff: Optional[Handoff] = None,
                 pacing_delay: float = 1.0):
        self.engine = engine
        self.session = ProvisioningSession(template)
        self.on_transition = on_transition
        self.handoff = handoff
        self.pacing_delay = pacing_delay
        self._dismissed = asyncio.Event()

    @property
    def dismissed(self) -> bool:
        return self._dismissed.is_set()

    def dismiss(self) -> None:
        if not self._dismissed.is_set():
            logger.debug(f"Provisioning of {self.session.template.image} dismissed in {self.session.phase.value}")
        self._dismissed.set()

    async def run(self) -> ProvisioningSession:
        image = self.session.template.image
        self._enter(Phase.CHECKING, f"Checking for {image}...")

        exists = await self.engine.check_image_exists(image)
        if self.dismissed:
            return self.session

        if not exists.ok:
            # Existence unknown: surface it and let the user try creating anyway.
            self.session.error = exists.error
        elif not exists.value:
            self._enter(Phase.PULLING, f"Pulling {image}...")
            pulled = await self.engine.pull_image(image)
            if self.dismissed:
                return self.session
            if pulled.ok:
                self._enter(Phase.PULLED, f"Successfully pulled {image}")
                if not await self._pace():
                    return self.session
            else:
                self.session.error = pulled.error
                self._enter(Phase.FAILED, f"Failed to pull {image}")

        self._enter(Phase.CREATING, f"Configure container from {self.session.template.name}")
        if self.handoff is not None:
            handed = self.handoff(self.session.template)
            if asyncio.iscoroutine(handed):
                await handed
        self._enter(Phase.DONE, self.session.message)
        return self.session

    async def _pace(self) -> bool:
        """Hold the pulled message for pacing_delay; False if dismissed meanwhile."""
        try:
            await asyncio.wait_for(self._dismissed.wait(), timeout=self.pacing_delay)
        except asyncio.TimeoutError:
            return True
        return False

    def _enter(self, phase: Phase, message: str) -> None:
        self.session.phase = phase
        self.session.message = message
        self.session.history.append(phase)
        logger.debug(f"Provisioning {self.session.template.image}: {phase.value}")
        if self.on_transition is not None:
            self.on_transition(self.session)
