import asyncio

import pytest
from unittest.mock import MagicMock

from conftest import failed, ok
from dockpilot.provisioning import Phase, ProvisioningWorkflow
from dockpilot.templates import Template

TEMPLATE = Template(id="redis", name="Redis", image="redis:latest")


def make_workflow(engine, handoff=None, pacing_delay=0.01, on_transition=None):
    return ProvisioningWorkflow(engine, TEMPLATE, on_transition=on_transition,
                                handoff=handoff or MagicMock(), pacing_delay=pacing_delay)


@pytest.mark.asyncio
async def test_present_image_goes_straight_to_creating(engine):
    engine.check_image_exists.return_value = ok(True)
    handoff = MagicMock()

    session = await make_workflow(engine, handoff).run()

    assert session.history == [Phase.CHECKING, Phase.CREATING, Phase.DONE]
    engine.pull_image.assert_not_awaited()
    handoff.assert_called_once_with(TEMPLATE)


@pytest.mark.asyncio
async def test_missing_image_is_pulled_then_paced(engine):
    engine.check_image_exists.return_value = ok(False)
    engine.pull_image.return_value = ok("sha256:abc")
    messages = []

    session = await make_workflow(engine, on_transition=lambda s: messages.append(s.message)).run()

    assert session.history == [Phase.CHECKING, Phase.PULLING, Phase.PULLED, Phase.CREATING, Phase.DONE]
    engine.pull_image.assert_awaited_once_with("redis:latest")
    assert "Successfully pulled redis:latest" in messages
    assert session.error is None


@pytest.mark.asyncio
async def test_pull_failure_still_hands_off(engine):
    engine.check_image_exists.return_value = ok(False)
    engine.pull_image.return_value = failed("Failed to pull image: manifest unknown")
    handoff = MagicMock()

    session = await make_workflow(engine, handoff).run()

    assert session.history == [Phase.CHECKING, Phase.PULLING, Phase.FAILED, Phase.CREATING, Phase.DONE]
    assert session.error == "Failed to pull image: manifest unknown"
    handoff.assert_called_once()


@pytest.mark.asyncio
async def test_check_failure_surfaces_error_and_skips_pull(engine):
    engine.check_image_exists.return_value = failed("Failed to check image: boom")

    session = await make_workflow(engine).run()

    assert session.history == [Phase.CHECKING, Phase.CREATING, Phase.DONE]
    assert session.error == "Failed to check image: boom"
    engine.pull_image.assert_not_awaited()


@pytest.mark.asyncio
async def test_async_handoff_is_awaited(engine):
    engine.check_image_exists.return_value = ok(True)
    called = []

    async def handoff(template):
        called.append(template.id)

    await make_workflow(engine, handoff).run()
    assert called == ["redis"]


@pytest.mark.asyncio
async def test_dismiss_during_pacing_stops_before_handoff(engine):
    engine.check_image_exists.return_value = ok(False)
    engine.pull_image.return_value = ok("sha256:abc")
    handoff = MagicMock()
    workflow = make_workflow(engine, handoff, pacing_delay=30)

    task = asyncio.create_task(workflow.run())
    while workflow.session.phase is not Phase.PULLED:
        await asyncio.sleep(0)
    workflow.dismiss()
    session = await asyncio.wait_for(task, timeout=1)

    assert session.history[-1] is Phase.PULLED
    handoff.assert_not_called()


@pytest.mark.asyncio
async def test_result_arriving_after_dismiss_is_discarded(engine):
    gate = asyncio.Event()

    async def slow_check(image):
        await gate.wait()
        return ok(False)

    engine.check_image_exists.side_effect = slow_check
    handoff = MagicMock()
    workflow = make_workflow(engine, handoff)

    task = asyncio.create_task(workflow.run())
    await asyncio.sleep(0)
    workflow.dismiss()
    gate.set()
    session = await task

    assert workflow.dismissed
    assert session.history == [Phase.CHECKING]
    engine.pull_image.assert_not_awaited()
    handoff.assert_not_called()
