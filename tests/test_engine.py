import pytest
import requests
from unittest.mock import MagicMock

from docker.errors import APIError, DockerException, NotFound

from dockpilot.engine import EngineClient, EngineResult, build_create_kwargs, stats_from_raw
from dockpilot.errors import ConnectivityError, OperationError
from dockpilot.model import ContainerSpec


@pytest.fixture
def mock_docker(mocker):
    mock_client = MagicMock()
    mocker.patch("docker.from_env", return_value=mock_client)
    return mock_client


@pytest.mark.asyncio
async def test_list_containers_maps_summary(mock_docker):
    mock_docker.api.containers.return_value = [{
        "Id": "abcdef0123456789",
        "Names": ["/web"],
        "Image": "nginx:latest",
        "State": "running",
        "Status": "Up 2 minutes",
        "Ports": [{"IP": "0.0.0.0", "PrivatePort": 80, "PublicPort": 8080, "Type": "tcp"}],
        "Created": 1700000000,
    }]

    result = await EngineClient().list_containers(all=True)

    assert result.ok
    mock_docker.api.containers.assert_called_with(all=True)
    c = result.value[0]
    assert c.name == "web"
    assert c.short_id == "abcdef012345"
    assert c.is_running
    assert str(c.ports[0]) == "0.0.0.0:8080->80/tcp"


@pytest.mark.asyncio
async def test_container_actions(mock_docker):
    mock_container = MagicMock()
    mock_docker.containers.get.return_value = mock_container
    engine = EngineClient()

    assert (await engine.start_container("123")).ok
    mock_docker.containers.get.assert_called_with("123")
    mock_container.start.assert_called_once()

    await engine.remove_container("123")
    mock_container.remove.assert_called_once_with(force=False)


@pytest.mark.asyncio
async def test_api_error_becomes_failed_result(mock_docker):
    mock_docker.containers.get.side_effect = NotFound("404", explanation="No such container: 123")

    result = await EngineClient().stop_container("123")

    assert not result.ok
    assert not result.connectivity
    assert result.error == "Failed to stop container: No such container: 123"
    with pytest.raises(OperationError):
        result.unwrap()


@pytest.mark.asyncio
async def test_connection_refused_is_connectivity_failure(mock_docker):
    mock_docker.api.images.side_effect = requests.exceptions.ConnectionError("refused")

    result = await EngineClient().list_images()

    assert result.connectivity
    with pytest.raises(ConnectivityError):
        result.unwrap()


@pytest.mark.asyncio
async def test_client_construction_is_retried(mocker):
    client = MagicMock()
    client.ping.return_value = True
    from_env = mocker.patch("docker.from_env", side_effect=[DockerException("no socket"), client])

    engine = EngineClient()
    assert engine.client is None

    result = await engine.check_connection()

    assert result.ok and result.value is True
    assert from_env.call_count == 2


@pytest.mark.asyncio
async def test_unreachable_engine_reports_connectivity(mocker):
    mocker.patch("docker.from_env", side_effect=DockerException("no socket"))

    result = await EngineClient().check_connection()

    assert not result.ok
    assert result.connectivity


@pytest.mark.asyncio
async def test_check_image_exists_compares_full_reference(mock_docker):
    mock_docker.api.images.return_value = [
        {"Id": "sha256:1", "RepoTags": ["nginx:latest", "redis:7"]},
        {"Id": "sha256:2", "RepoTags": None},
    ]
    engine = EngineClient()

    assert (await engine.check_image_exists("nginx")).value is True
    assert (await engine.check_image_exists("redis:7")).value is True
    assert (await engine.check_image_exists("redis")).value is False


@pytest.mark.asyncio
async def test_pull_defaults_to_latest_tag(mock_docker):
    mock_docker.images.pull.return_value.id = "sha256:abc"
    engine = EngineClient()

    await engine.pull_image("postgres")
    mock_docker.images.pull.assert_called_with("postgres", tag="latest")

    await engine.pull_image("localhost:5000/app:1.2")
    mock_docker.images.pull.assert_called_with("localhost:5000/app", tag="1.2")


@pytest.mark.asyncio
async def test_logs_tail_and_decode(mock_docker):
    container = mock_docker.containers.get.return_value
    container.logs.return_value = b"line one\nline two\n"

    result = await EngineClient().get_container_logs("c1")

    assert result.value == "line one\nline two\n"
    container.logs.assert_called_with(stdout=True, stderr=True, tail=100)


@pytest.mark.asyncio
async def test_invalid_tail_is_rejected_without_engine_call(mock_docker):
    result = await EngineClient().get_container_logs("c1", "lots")

    assert not result.ok
    mock_docker.containers.get.assert_not_called()


@pytest.mark.asyncio
async def test_container_details(mock_docker):
    mock_docker.containers.get.return_value.attrs = {
        "Id": "c1",
        "Name": "/db",
        "Created": "2024-01-01T00:00:00Z",
        "State": {"Status": "exited"},
        "Config": {"Image": "postgres:16", "Env": ["POSTGRES_DB=app"]},
        "Mounts": [{"Type": "volume", "Source": "/var/lib/docker/volumes/pg/_data",
                    "Destination": "/var/lib/postgresql/data", "Mode": "z", "RW": True}],
        "NetworkSettings": {
            "Ports": {"5432/tcp": [{"HostIp": "0.0.0.0", "HostPort": "5432"}], "9187/tcp": None},
            "Networks": {"bridge": {"IPAddress": "172.17.0.2"}},
        },
    }

    d = (await EngineClient().get_container_details("c1")).value

    assert d.name == "db"
    assert d.state == "exited"
    assert not d.is_running
    assert d.env == ("POSTGRES_DB=app",)
    assert d.networks == {"bridge": "172.17.0.2"}
    assert d.mounts[0].destination == "/var/lib/postgresql/data"
    assert {p.private_port: p.public_port for p in d.ports} == {5432: 5432, 9187: None}


def test_stats_from_raw():
    sample = stats_from_raw({
        "cpu_stats": {"cpu_usage": {"total_usage": 300}, "system_cpu_usage": 2000, "online_cpus": 2},
        "precpu_stats": {"cpu_usage": {"total_usage": 100}, "system_cpu_usage": 1000},
        "memory_stats": {"usage": 256, "limit": 1024},
        "networks": {"eth0": {"rx_bytes": 10, "tx_bytes": 20}, "eth1": {"rx_bytes": 5, "tx_bytes": 5}},
    })
    assert sample.cpu_percent == 40.0
    assert sample.memory_percent == 25.0
    assert (sample.network_rx, sample.network_tx) == (15, 25)


def test_stats_from_raw_first_sample_has_no_cpu():
    sample = stats_from_raw({"cpu_stats": {}, "precpu_stats": {}, "memory_stats": {}})
    assert sample.cpu_percent == 0.0
    assert sample.memory_percent == 0.0


def test_build_create_kwargs():
    spec = ContainerSpec(
        image="nginx:latest",
        name="web",
        ports={"80/tcp": "8080", "443/tcp": ""},
        volumes=["/srv/html:/usr/share/nginx/html:ro", "./conf:/etc/nginx/conf.d", "logs:/var/log/nginx"],
        env=["MODE=prod"],
        network="backend",
        restart_policy="on-failure:3",
        command=["nginx", "-g", "daemon off;"],
        memory_limit=128 * 1024 * 1024,
        cpu_quota=50000,
    )

    kwargs = build_create_kwargs(spec)

    assert kwargs["ports"] == {"80/tcp": ("0.0.0.0", 8080), "443/tcp": None}
    assert kwargs["volumes"] == ["/srv/html:/usr/share/nginx/html:ro", "./conf:/etc/nginx/conf.d:rw"]
    assert len(kwargs["mounts"]) == 1
    assert kwargs["mounts"][0]["Source"] == "logs"
    assert kwargs["mounts"][0]["Type"] == "volume"
    assert kwargs["restart_policy"] == {"Name": "on-failure", "MaximumRetryCount": 3}
    assert kwargs["network"] == "backend"
    assert kwargs["mem_limit"] == 128 * 1024 * 1024
    assert kwargs["cpu_quota"] == 50000


def test_minimal_spec_sends_only_image():
    assert build_create_kwargs(ContainerSpec(image="alpine")) == {"image": "alpine"}


@pytest.mark.asyncio
async def test_create_and_start_reports_start_failure(mock_docker):
    created = MagicMock()
    created.id = "f00dfeedbeef0000"
    created.start.side_effect = APIError("500", explanation="port is already allocated")
    mock_docker.containers.create.return_value = created

    result = await EngineClient().create_and_start_container(ContainerSpec(image="nginx"))

    assert not result.ok
    assert result.error.startswith("Failed to start container after creation")
    assert "port is already allocated" in result.error


@pytest.mark.asyncio
async def test_search_registry(mock_docker):
    mock_docker.images.search.return_value = [
        {"name": "redis", "description": "", "star_count": 12000, "is_official": True, "is_automated": False},
    ]

    result = await EngineClient().search_registry("redis")

    mock_docker.images.search.assert_called_with(term="redis", limit=25)
    assert result.value[0].description == "No description"
    assert result.value[0].is_official


@pytest.mark.asyncio
async def test_deploy_compose_parse_error(mock_docker):
    result = await EngineClient().deploy_compose("services: [")

    assert not result.ok
    assert result.error.startswith("Failed to parse compose file")
    mock_docker.containers.create.assert_not_called()


def test_engine_result_helpers():
    assert EngineResult.success(3).unwrap() == 3
    assert not EngineResult.failure("x").ok


@pytest.mark.asyncio
async def test_volume_and_network_crud(mock_docker):
    volume = MagicMock()
    volume.name = "pg-data"
    volume.attrs = {"Driver": "local", "Mountpoint": "/var/lib/docker/volumes/pg-data/_data"}
    mock_docker.volumes.list.return_value = [volume]
    mock_docker.networks.create.return_value.id = "net123"
    engine = EngineClient()

    volumes = (await engine.list_volumes()).value
    assert volumes[0].name == "pg-data"
    assert volumes[0].driver == "local"

    await engine.remove_volume("pg-data", force=True)
    mock_docker.volumes.get.return_value.remove.assert_called_once_with(force=True)

    assert (await engine.create_network("backend")).value == "net123"
    mock_docker.networks.create.assert_called_once_with("backend", driver="bridge")


@pytest.mark.asyncio
async def test_list_images_hides_untagged_names(mock_docker):
    mock_docker.api.images.return_value = [
        {"Id": "sha256:aaa", "RepoTags": ["<none>:<none>"], "Size": 1024, "Created": 1},
        {"Id": "sha256:bbb", "RepoTags": ["alpine:3.19"], "Size": 2048, "Created": 2},
    ]

    images = (await EngineClient().list_images()).value

    assert images[0].repo_tags == ()
    assert images[1].repo_tags == ("alpine:3.19",)
