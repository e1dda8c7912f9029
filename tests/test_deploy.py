import pytest

from conftest import failed, ok
from dockpilot.compose import ServiceSpec
from dockpilot.deploy import DeploymentOrchestrator, DeploymentReport
from dockpilot.errors import PartialBatchError, ValidationError
from dockpilot.model import ContainerSpec, DeploymentResult

COMPOSE = """
services:
  db:
    image: postgres:16
  api:
    image: ghcr.io/acme/api:1.0
  broken:
    image: "Not A Valid::Image"
  web:
    image: nginx:latest
  noimage:
    command: sleep 1
"""


@pytest.mark.asyncio
async def test_every_service_attempted_in_order(engine):
    ids = iter(["id-db", "id-web"])

    async def create(spec):
        if spec.name == "api":
            return failed("Failed to create container: Conflict")
        return ok(next(ids))

    engine.create_container.side_effect = create

    report = await DeploymentOrchestrator(engine).deploy(COMPOSE)

    assert [r.service_name for r in report.results] == ["db", "api", "broken", "web", "noimage"]
    assert [r.success for r in report.results] == [True, False, False, True, False]
    assert report.results[0].container_id == "id-db"
    assert report.results[1].error == "Failed to create container: Conflict"
    assert report.results[4].error == "No image specified"
    assert report.is_partial
    assert report.summary() == "2 of 5 services created"


@pytest.mark.asyncio
async def test_locally_invalid_services_never_reach_engine(engine):
    engine.create_container.return_value = ok("cid")

    await DeploymentOrchestrator(engine).deploy(COMPOSE)

    created = [call.args[0].image for call in engine.create_container.await_args_list]
    assert created == ["postgres:16", "ghcr.io/acme/api:1.0", "nginx:latest"]


@pytest.mark.asyncio
async def test_redeploying_same_text_creates_every_service_again(engine):
    engine.create_container.return_value = ok("cid")
    orchestrator = DeploymentOrchestrator(engine)

    first = await orchestrator.deploy(COMPOSE)
    second = await orchestrator.deploy(COMPOSE)

    assert engine.create_container.await_count == 2 * len(first.successes) == 6
    assert [r.service_name for r in second.successes] == ["db", "api", "web"]


@pytest.mark.asyncio
async def test_empty_spec_is_rejected_before_engine(engine):
    with pytest.raises(ValidationError, match="upload a compose file"):
        await DeploymentOrchestrator(engine).deploy("  ")
    engine.create_container.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_all_is_best_effort(engine):
    report = DeploymentReport((
        DeploymentResult("a", True, "id-a"),
        DeploymentResult("b", False, error="x"),
        DeploymentResult("c", True, "id-c"),
        DeploymentResult("d", True, "id-d"),
    ))

    async def start(container_id):
        return failed("Failed to start container: port in use") if container_id == "id-c" else ok()

    engine.start_container.side_effect = start

    started = await DeploymentOrchestrator(engine).start_all(report)

    assert [o.service_name for o in started.outcomes] == ["a", "c", "d"]
    assert started.started == 2
    assert started.failed == 1
    assert engine.start_container.await_count == 3


@pytest.mark.asyncio
async def test_deploy_services_accepts_parsed_specs(engine):
    engine.create_container.return_value = ok("cid")
    services = [ServiceSpec("one", ContainerSpec(image="alpine", name="one"))]

    report = await DeploymentOrchestrator(engine).deploy_services(services)

    assert report.successes == (DeploymentResult("one", True, "cid"),)
    assert report.failures == ()
    report.raise_for_failures()


def test_raise_for_failures_carries_report():
    report = DeploymentReport((DeploymentResult("a", True, "id"), DeploymentResult("b", False, error="x")))
    with pytest.raises(PartialBatchError) as excinfo:
        report.raise_for_failures()
    assert excinfo.value.report is report
    assert "b" in excinfo.value.message
