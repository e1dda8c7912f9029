"""
Docker engine facade.

This module wraps docker-py behind an async interface. Each public operation
runs its blocking SDK call in a worker thread (asyncio.to_thread) and returns
an EngineResult instead of raising, so callers never see SDK exceptions:

  - Listing and inspecting containers, images, volumes, networks
  - Container lifecycle (start, stop, restart, pause, unpause, remove)
  - Logs (tail) and single-shot stats samples
  - Image pull / existence check / registry search
  - Container creation from a ContainerSpec, optionally followed by start
  - Compose deployment (delegated to DeploymentOrchestrator)

Error Handling:
  - Socket / connection-refused errors → EngineResult with connectivity=True
  - API errors (404, 409, bad parameters) → EngineResult with the explanation
  - Client construction failure → client is None, retried on the next call

Failure messages read "Failed to <operation>: <cause>".

Dependencies:
  - docker>=7.0.0 (docker-py client)
  - requests (connection error classification)
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

import docker
import requests
from docker.errors import DockerException
from docker.types import Mount
from docker.utils import parse_repository_tag

from .deploy import DeploymentOrchestrator, DeploymentReport
from .errors import ConnectivityError, DockPilotError, OperationError, ValidationError
from .model import (
    ContainerDetail, ContainerRecord, ContainerSpec, ImageInfo, MountInfo, NetworkInfo,
    PortMapping, SearchResult, StatsSample, VolumeInfo, VolumeSpec,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LOG_TAIL = "100"
DEFAULT_SEARCH_LIMIT = 25
NOT_CONNECTED = "Docker engine is not reachable"


@dataclass(frozen=True)
class EngineResult(Generic[T]):
    """Outcome of one engine call: either a value or an error message."""
    value: Optional[T] = None
    error: Optional[str] = None
    connectivity: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "EngineResult":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str, connectivity: bool = False) -> "EngineResult":
        return cls(error=error, connectivity=connectivity)

    def unwrap(self) -> T:
        """Return the value or raise ConnectivityError / OperationError."""
        if self.ok:
            return self.value
        if self.connectivity:
            raise ConnectivityError(self.error)
        raise OperationError(self.error)


def engine_call(operation: str) -> Callable:
    """
    Turn a blocking SDK method into an async one returning EngineResult.

    The wrapped body runs in a worker thread and may use self.client freely;
    any exception it raises is converted to a failed result.

    Usage:
        @engine_call("list containers")
        def list_containers(self, all: bool = False) -> List[ContainerRecord]:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self: "EngineClient", *args, **kwargs) -> EngineResult:
            return await asyncio.to_thread(self._invoke, operation, func, args, kwargs)
        return wrapper
    return decorator


def _explain(error: Exception) -> str:
    return getattr(error, "explanation", None) or str(error)


def _normalize_reference(reference: str) -> str:
    if "@" in reference:
        return reference
    last = reference.rsplit("/", 1)[-1]
    return reference if ":" in last else f"{reference}:latest"


def _tail_arg(tail: str):
    tail = str(tail).strip().lower()
    if tail == "all":
        return "all"
    if not tail.isdigit():
        raise ValidationError(f"Invalid log tail '{tail}'", hint="Use a line count or 'all'")
    return int(tail)


def _restart_policy(policy: str) -> Dict[str, Any]:
    name, _, retries = policy.partition(":")
    result: Dict[str, Any] = {"Name": name}
    if name == "on-failure" and retries.isdigit():
        result["MaximumRetryCount"] = int(retries)
    return result


def build_create_kwargs(spec: ContainerSpec) -> Dict[str, Any]:
    """Translate a ContainerSpec into containers.create() keyword arguments."""
    kwargs: Dict[str, Any] = {"image": spec.image}
    if spec.name:
        kwargs["name"] = spec.name
    if spec.ports:
        kwargs["ports"] = {
            container_port: ("0.0.0.0", int(host_port)) if host_port else None
            for container_port, host_port in spec.ports.items()
        }
    binds: List[str] = []
    mounts: List[Mount] = []
    for raw in spec.volumes:
        volume = VolumeSpec.parse(raw)
        if volume.is_bind:
            binds.append(str(volume))
        else:
            mounts.append(Mount(target=volume.target, source=volume.source,
                                type="volume", read_only=volume.read_only))
    if binds:
        kwargs["volumes"] = binds
    if mounts:
        kwargs["mounts"] = mounts
    if spec.env:
        kwargs["environment"] = list(spec.env)
    if spec.network:
        kwargs["network"] = spec.network
    if spec.restart_policy:
        kwargs["restart_policy"] = _restart_policy(spec.restart_policy)
    if spec.command:
        kwargs["command"] = list(spec.command)
    if spec.memory_limit:
        kwargs["mem_limit"] = spec.memory_limit
    if spec.cpu_quota:
        kwargs["cpu_quota"] = spec.cpu_quota
    return kwargs


def _port_mappings(raw_ports: Optional[List[Dict[str, Any]]]) -> Tuple[PortMapping, ...]:
    return tuple(
        PortMapping(
            private_port=p.get("PrivatePort", 0),
            public_port=p.get("PublicPort"),
            ip=p.get("IP", ""),
            port_type=p.get("Type", "tcp"),
        )
        for p in raw_ports or []
    )


def _binding_mappings(bindings: Optional[Dict[str, Any]]) -> Tuple[PortMapping, ...]:
    """Inspect-style {"80/tcp": [{"HostIp": ..., "HostPort": ...}]} to PortMappings."""
    result = []
    for key, hosts in (bindings or {}).items():
        port, _, proto = key.partition("/")
        if not hosts:
            result.append(PortMapping(int(port), None, "", proto or "tcp"))
            continue
        for host in hosts:
            host_port = host.get("HostPort")
            result.append(PortMapping(int(port), int(host_port) if host_port else None,
                                      host.get("HostIp", ""), proto or "tcp"))
    return tuple(result)


def stats_from_raw(raw: Dict[str, Any]) -> StatsSample:
    cpu_stats = raw.get('cpu_stats', {})
    precpu_stats = raw.get('precpu_stats', {})
    cpu_usage = cpu_stats.get('cpu_usage', {}).get('total_usage', 0)
    precpu_usage = precpu_stats.get('cpu_usage', {}).get('total_usage', 0)
    system_delta = cpu_stats.get('system_cpu_usage', 0) - precpu_stats.get('system_cpu_usage', 0)
    online_cpus = cpu_stats.get('online_cpus') or len(cpu_stats.get('cpu_usage', {}).get('percpu_usage') or []) or 1
    cpu_delta = cpu_usage - precpu_usage
    cpu_percent = 0.0
    if cpu_delta > 0 and system_delta > 0:
        cpu_percent = (cpu_delta / system_delta) * online_cpus * 100.0

    memory = raw.get('memory_stats', {})
    usage = memory.get('usage', 0)
    limit = memory.get('limit', 0)
    memory_percent = (usage / limit) * 100.0 if limit else 0.0

    rx = tx = 0
    for iface in (raw.get('networks') or {}).values():
        rx += iface.get('rx_bytes', 0)
        tx += iface.get('tx_bytes', 0)

    return StatsSample(round(cpu_percent, 2), usage, limit, round(memory_percent, 2), rx, tx)


class EngineClient:
    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url
        self.client = None
        self._connect()

    def _connect(self) -> bool:
        try:
            if self.base_url:
                self.client = docker.DockerClient(base_url=self.base_url, timeout=None)
            else:
                self.client = docker.from_env(timeout=None)
            return True
        except DockerException as e:
            logger.warning(f"Docker client unavailable: {e}")
            self.client = None
            return False

    def _invoke(self, operation: str, func: Callable, args: tuple, kwargs: dict) -> EngineResult:
        if self.client is None and not self._connect():
            return EngineResult.failure(f"Failed to {operation}: {NOT_CONNECTED}", connectivity=True)
        try:
            return EngineResult.success(func(self, *args, **kwargs))
        except requests.exceptions.ConnectionError as e:
            logger.warning(f"Engine unreachable during {func.__name__}: {e}")
            return EngineResult.failure(f"Failed to {operation}: {NOT_CONNECTED}", connectivity=True)
        except DockPilotError as e:
            logger.error(f"Docker operation failed in {func.__name__}: {e}")
            return EngineResult.failure(e.message)
        except Exception as e:
            logger.error(f"Docker operation failed in {func.__name__}: {e}", exc_info=True)
            return EngineResult.failure(f"Failed to {operation}: {_explain(e)}")

    # --- connectivity ---

    @engine_call("connect to Docker")
    def check_connection(self) -> bool:
        return bool(self.client.ping())

    # --- containers ---

    @engine_call("list containers")
    def list_containers(self, all: bool = False) -> List[ContainerRecord]:
        res = []
        for c in self.client.api.containers(all=all):
            names = c.get("Names") or [""]
            res.append(ContainerRecord(
                id=c["Id"],
                name=names[0].lstrip("/"),
                image=c.get("Image", ""),
                state=c.get("State", ""),
                status=c.get("Status", ""),
                ports=_port_mappings(c.get("Ports")),
                created=c.get("Created", 0),
            ))
        return res

    @engine_call("start container")
    def start_container(self, container_id: str) -> None:
        self.client.containers.get(container_id).start()

    @engine_call("stop container")
    def stop_container(self, container_id: str) -> None:
        self.client.containers.get(container_id).stop()

    @engine_call("restart container")
    def restart_container(self, container_id: str) -> None:
        self.client.containers.get(container_id).restart()

    @engine_call("pause container")
    def pause_container(self, container_id: str) -> None:
        self.client.containers.get(container_id).pause()

    @engine_call("unpause container")
    def unpause_container(self, container_id: str) -> None:
        self.client.containers.get(container_id).unpause()

    @engine_call("remove container")
    def remove_container(self, container_id: str, force: bool = False) -> None:
        self.client.containers.get(container_id).remove(force=force)

    @engine_call("get logs")
    def get_container_logs(self, container_id: str, tail: str = DEFAULT_LOG_TAIL) -> str:
        tail_arg = _tail_arg(tail)
        raw = self.client.containers.get(container_id).logs(stdout=True, stderr=True, tail=tail_arg)
        return raw.decode("utf-8", errors="replace")

    @engine_call("inspect container")
    def get_container_details(self, container_id: str) -> ContainerDetail:
        attrs = self.client.containers.get(container_id).attrs
        state = attrs.get("State", {})
        config = attrs.get("Config", {})
        settings = attrs.get("NetworkSettings", {})
        mounts = tuple(
            MountInfo(
                mount_type=m.get("Type", ""),
                source=m.get("Source", ""),
                destination=m.get("Destination", ""),
                mode=m.get("Mode", ""),
                rw=m.get("RW", True),
            )
            for m in attrs.get("Mounts") or []
        )
        networks = {
            name: (net or {}).get("IPAddress", "")
            for name, net in (settings.get("Networks") or {}).items()
        }
        return ContainerDetail(
            id=attrs.get("Id", container_id),
            name=attrs.get("Name", "").lstrip("/"),
            image=config.get("Image", ""),
            state=state.get("Status", ""),
            status=state.get("Status", ""),
            created=attrs.get("Created", ""),
            ports=_binding_mappings(settings.get("Ports")),
            mounts=mounts,
            env=tuple(config.get("Env") or ()),
            networks=networks,
        )

    @engine_call("get stats")
    def get_container_stats(self, container_id: str) -> StatsSample:
        return stats_from_raw(self.client.containers.get(container_id).stats(stream=False))

    @engine_call("create container")
    def create_container(self, spec: ContainerSpec) -> str:
        container = self.client.containers.create(**build_create_kwargs(spec))
        logger.info(f"Created container {container.id[:12]} from {spec.image}")
        return container.id

    @engine_call("create and start container")
    def create_and_start_container(self, spec: ContainerSpec) -> str:
        container = self.client.containers.create(**build_create_kwargs(spec))
        try:
            container.start()
        except DockerException as e:
            raise OperationError(
                f"Failed to start container after creation ({container.id[:12]}): {_explain(e)}"
            ) from e
        logger.info(f"Created and started container {container.id[:12]} from {spec.image}")
        return container.id

    # --- images ---

    @engine_call("list images")
    def list_images(self) -> List[ImageInfo]:
        return [
            ImageInfo(
                id=img["Id"],
                repo_tags=tuple(t for t in img.get("RepoTags") or () if t != "<none>:<none>"),
                size=img.get("Size", 0),
                created=img.get("Created", 0),
            )
            for img in self.client.api.images()
        ]

    @engine_call("remove image")
    def remove_image(self, image_id: str, force: bool = False) -> None:
        self.client.images.remove(image=image_id, force=force)

    @engine_call("pull image")
    def pull_image(self, image: str) -> str:
        repository, tag = parse_repository_tag(image)
        pulled = self.client.images.pull(repository, tag=tag or "latest")
        logger.info(f"Pulled {repository}:{tag or 'latest'}")
        return pulled.id

    @engine_call("check image")
    def check_image_exists(self, image: str) -> bool:
        wanted = _normalize_reference(image)
        for img in self.client.api.images():
            refs = list(img.get("RepoTags") or ()) + list(img.get("RepoDigests") or ())
            if any(_normalize_reference(ref) == wanted for ref in refs):
                return True
        return False

    @engine_call("search images")
    def search_registry(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[SearchResult]:
        return [
            SearchResult(
                name=r.get("name", ""),
                description=r.get("description") or "No description",
                star_count=r.get("star_count", 0),
                is_official=bool(r.get("is_official")),
                is_automated=bool(r.get("is_automated")),
            )
            for r in self.client.images.search(term=query, limit=limit)
        ]

    # --- volumes ---

    @engine_call("list volumes")
    def list_volumes(self) -> List[VolumeInfo]:
        return [
            VolumeInfo(
                name=v.name,
                driver=v.attrs.get("Driver", "local"),
                mountpoint=v.attrs.get("Mountpoint", ""),
                created_at=v.attrs.get("CreatedAt", ""),
            )
            for v in self.client.volumes.list()
        ]

    @engine_call("create volume")
    def create_volume(self, name: str) -> str:
        return self.client.volumes.create(name=name).name

    @engine_call("remove volume")
    def remove_volume(self, name: str, force: bool = False) -> None:
        self.client.volumes.get(name).remove(force=force)

    # --- networks ---

    @engine_call("list networks")
    def list_networks(self) -> List[NetworkInfo]:
        res = []
        for n in self.client.networks.list():
            ipam = (n.attrs.get("IPAM") or {}).get("Config") or [{}]
            res.append(NetworkInfo(
                id=n.id,
                name=n.name,
                driver=n.attrs.get("Driver", ""),
                scope=n.attrs.get("Scope", ""),
                internal=bool(n.attrs.get("Internal")),
                subnet=ipam[0].get("Subnet", "n/a"),
                gateway=ipam[0].get("Gateway", "n/a"),
            ))
        return res

    @engine_call("create network")
    def create_network(self, name: str, driver: str = "bridge") -> str:
        return self.client.networks.create(name, driver=driver).id

    @engine_call("remove network")
    def remove_network(self, network_id: str) -> None:
        self.client.networks.get(network_id).remove()

    # --- compose ---

    async def deploy_compose(self, spec_text: str) -> "EngineResult[DeploymentReport]":
        """Create one container per compose service; never starts them."""
        try:
            report = await DeploymentOrchestrator(self).deploy(spec_text)
        except ValidationError as e:
            return EngineResult.failure(f"Failed to parse compose file: {e.message}")
        return EngineResult.success(report)
