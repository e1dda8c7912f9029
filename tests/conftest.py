import pytest
from unittest.mock import AsyncMock, MagicMock

from dockpilot.engine import EngineResult
from dockpilot.model import ContainerDetail, ContainerRecord

ENGINE_METHODS = [
    "check_connection", "list_containers", "start_container", "stop_container",
    "restart_container", "pause_container", "unpause_container", "remove_container",
    "get_container_logs", "get_container_details", "get_container_stats",
    "create_container", "create_and_start_container", "list_images", "remove_image",
    "pull_image", "check_image_exists", "search_registry", "list_volumes",
    "create_volume", "remove_volume", "list_networks", "create_network",
    "remove_network", "deploy_compose",
]


def ok(value=None):
    return EngineResult.success(value)


def failed(message="boom", connectivity=False):
    return EngineResult.failure(message, connectivity=connectivity)


def record(container_id="c1", state="running", name=None):
    return ContainerRecord(id=container_id, name=name or f"name-{container_id}",
                           image="nginx:latest", state=state, status=state)


def detail(container_id="c1", state="running"):
    return ContainerDetail(id=container_id, name=f"name-{container_id}", image="nginx:latest",
                           state=state, status=state, created="2024-01-01T00:00:00Z")


@pytest.fixture
def engine():
    """EngineClient stand-in: every operation is an AsyncMock returning a successful result."""
    mock = MagicMock()
    for name in ENGINE_METHODS:
        setattr(mock, name, AsyncMock(return_value=ok()))
    mock.check_connection.return_value = ok(True)
    for name in ("list_containers", "list_images", "list_volumes", "list_networks", "search_registry"):
        getattr(mock, name).return_value = ok([])
    return mock


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    return tmp_path
