"""
Multi-service deployment from compose text.

DeploymentOrchestrator creates one container per service, in document order,
attempting every service exactly once. A failure on one service never stops
the others; each outcome lands in a DeploymentResult and the whole batch in
an immutable DeploymentReport. Creation and start are separate steps:
deploy() only creates, start_all() starts whatever was created.

There is no rollback. Containers created before a later failure stay
created, and re-submitting the same text attempts every service again.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .compose import ServiceSpec, parse_compose
from .errors import PartialBatchError, ValidationError
from .model import DeploymentResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentReport:
    results: Tuple[DeploymentResult, ...] = ()

    @property
    def successes(self) -> Tuple[DeploymentResult, ...]:
        return tuple(r for r in self.results if r.success)

    @property
    def failures(self) -> Tuple[DeploymentResult, ...]:
        return tuple(r for r in self.results if not r.success)

    @property
    def is_partial(self) -> bool:
        return bool(self.successes) and bool(self.failures)

    def summary(self) -> str:
        return f"{len(self.successes)} of {len(self.results)} services created"

    def raise_for_failures(self) -> None:
        if self.failures:
            names = ", ".join(r.service_name for r in self.failures)
            raise PartialBatchError(f"{self.summary()}; failed: {names}", report=self)


@dataclass(frozen=True)
class StartOutcome:
    service_name: str
    container_id: str
    ok: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class StartReport:
    outcomes: Tuple[StartOutcome, ...] = ()

    @property
    def started(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)


class DeploymentOrchestrator:
    def __init__(self, engine):
        self.engine = engine

    async def deploy(self, spec_text: str) -> DeploymentReport:
        """Parse and create every service. Raises ValidationError only for unparseable input."""
        services = parse_compose(spec_text)
        return await self.deploy_services(services)

    async def deploy_services(self, services: Sequence[ServiceSpec]) -> DeploymentReport:
        results: List[DeploymentResult] = []
        for service in services:
            results.append(await self._deploy_one(service))
        report = DeploymentReport(tuple(results))
        if report.failures:
            logger.warning(f"Compose deployment: {report.summary()}")
        else:
            logger.info(f"Compose deployment: {report.summary()}")
        return report

    async def _deploy_one(self, service: ServiceSpec) -> DeploymentResult:
        if service.error or service.container is None:
            return DeploymentResult(service.name, False, error=service.error or "No image specified")
        try:
            service.container.validate()
        except ValidationError as e:
            return DeploymentResult(service.name, False, error=e.message)

        created = await self.engine.create_container(service.container)
        if not created.ok:
            return DeploymentResult(service.name, False, error=created.error)
        return DeploymentResult(service.name, True, container_id=created.value)

    async def start_all(self, report: DeploymentReport) -> StartReport:
        """Start every successfully created container. Best effort."""
        outcomes: List[StartOutcome] = []
        for result in report.successes:
            if not result.container_id:
                continue
            started = await self.engine.start_container(result.container_id)
            if not started.ok:
                logger.error(f"Failed to start {result.service_name}: {started.error}")
            outcomes.append(StartOutcome(result.service_name, result.container_id,
                                         started.ok, started.error))
        return StartReport(tuple(outcomes))
