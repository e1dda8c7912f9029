import pytest

from dockpilot.errors import ValidationError
from dockpilot.model import ContainerSpec, VolumeSpec
from dockpilot import validation


@pytest.mark.parametrize("image", [
    "nginx",
    "nginx:latest",
    "postgres:16-alpine",
    "bitnami/kafka:latest",
    "localhost:5000/team/app:1.0",
    "mcr.microsoft.com/mssql/server:2022-latest",
])
def test_valid_image_names(image):
    assert validation.validate_image_name(image) == image


@pytest.mark.parametrize("image", ["", "   ", "Not A Valid::Image", "nginx::latest", "nginx:"])
def test_invalid_image_names(image):
    with pytest.raises(ValidationError):
        validation.validate_image_name(image)


def test_validation_error_is_value_error():
    with pytest.raises(ValueError):
        validation.validate_name("-starts-with-dash")


def test_name_rules():
    assert validation.validate_name("web_1.api-v2") == "web_1.api-v2"
    with pytest.raises(ValidationError):
        validation.validate_name("a" * 256)
    with pytest.raises(ValidationError):
        validation.validate_name("has space")


def test_port_string():
    assert validation.validate_port_string("8080") == 8080
    for bad in ("0", "65536", "http", ""):
        with pytest.raises(ValidationError):
            validation.validate_port_string(bad)


def test_env_key():
    assert validation.validate_env_key("_PATH_2") == "_PATH_2"
    with pytest.raises(ValidationError):
        validation.validate_env_key("2FAST")


def test_volume_path_rejects_traversal_and_relative():
    assert validation.validate_volume_path("/data") == "/data"
    with pytest.raises(ValidationError):
        validation.validate_volume_path("/data/../etc")
    with pytest.raises(ValidationError):
        validation.validate_volume_path("data")


def test_memory_and_cpu_limits():
    assert validation.validate_memory_limit("512M") == "512m"
    assert validation.validate_memory_limit("") == ""
    with pytest.raises(ValidationError):
        validation.validate_memory_limit("lots")
    assert validation.validate_cpu_limit(0.5) == 0.5
    with pytest.raises(ValidationError):
        validation.validate_cpu_limit(0)
    with pytest.raises(ValidationError):
        validation.validate_cpu_limit(2048)


def test_network_names():
    for name in ("bridge", "host", "none", "container:db", "backend-net"):
        assert validation.validate_network_name(name) == name
    with pytest.raises(ValidationError):
        validation.validate_network_name("bad name")


def test_restart_policy():
    assert validation.validate_restart_policy("on-failure:3") == "on-failure:3"
    with pytest.raises(ValidationError):
        validation.validate_restart_policy("sometimes")


def test_volume_spec_parse():
    spec = VolumeSpec.parse("/srv/www:/usr/share/nginx/html:ro")
    assert spec.is_bind and spec.read_only
    named = VolumeSpec.parse("pgdata:/var/lib/postgresql/data")
    assert not named.is_bind
    assert named.mode == "rw"
    with pytest.raises(ValidationError):
        VolumeSpec.parse("just-a-name")


def test_container_spec_validate_reports_first_problem():
    ContainerSpec(image="redis:7", name="cache", ports={"6379/tcp": "6379"},
                  volumes=["redis-data:/data"], env=["A=1"]).validate()

    with pytest.raises(ValidationError, match="environment variable"):
        ContainerSpec(image="redis:7", env=["1BAD=x"]).validate()
    with pytest.raises(ValidationError, match="Port"):
        ContainerSpec(image="redis:7", ports={"6379/tcp": "99999"}).validate()
    with pytest.raises(ValidationError, match="absolute"):
        ContainerSpec(image="redis:7", volumes=["redis-data:data"]).validate()
