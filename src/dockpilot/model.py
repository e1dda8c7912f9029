"""
Data models for engine resources and creation requests.

Every record the engine returns is an immutable dataclass so snapshots can be
handed to any number of readers without copying. The only mutable type is
ContainerSpec, which forms and compose parsing fill in step by step before it
is validated and sent.

Data Classes:
  - ContainerRecord: one row of the container list (state is opaque text)
  - ContainerDetail: inspect view with mounts, env and network attachments
  - StatsSample: single non-streamed resource sample
  - ImageInfo, VolumeInfo, NetworkInfo, SearchResult
  - ContainerSpec: creation request (ports, volumes, env, limits)
  - VolumeSpec: parsed "source:target[:mode]" volume string
  - DeploymentResult: outcome of one compose service
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from . import validation
from .errors import ValidationError

RUNNING = "running"


@dataclass(frozen=True)
class PortMapping:
    private_port: int
    public_port: Optional[int] = None
    ip: str = ""
    port_type: str = "tcp"

    def __str__(self) -> str:
        if self.public_port:
            host = self.ip or "0.0.0.0"
            return f"{host}:{self.public_port}->{self.private_port}/{self.port_type}"
        return f"{self.private_port}/{self.port_type}"


@dataclass(frozen=True)
class ContainerRecord:
    id: str
    name: str
    image: str
    state: str
    status: str
    ports: Tuple[PortMapping, ...] = ()
    created: int = 0

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @property
    def is_running(self) -> bool:
        return self.state == RUNNING


@dataclass(frozen=True)
class MountInfo:
    mount_type: str
    source: str
    destination: str
    mode: str = ""
    rw: bool = True


@dataclass(frozen=True)
class ContainerDetail:
    id: str
    name: str
    image: str
    state: str
    status: str
    created: str
    ports: Tuple[PortMapping, ...] = ()
    mounts: Tuple[MountInfo, ...] = ()
    env: Tuple[str, ...] = ()
    networks: Dict[str, str] = field(default_factory=dict)  # name -> ip

    @property
    def is_running(self) -> bool:
        return self.state == RUNNING


@dataclass(frozen=True)
class StatsSample:
    cpu_percent: float
    memory_usage: int
    memory_limit: int
    memory_percent: float
    network_rx: int
    network_tx: int


@dataclass(frozen=True)
class ImageInfo:
    id: str
    repo_tags: Tuple[str, ...]
    size: int
    created: int

    @property
    def short_id(self) -> str:
        return self.id.split(":", 1)[-1][:12]

    @property
    def size_mb(self) -> float:
        return round(self.size / (1024 * 1024), 2)


@dataclass(frozen=True)
class VolumeInfo:
    name: str
    driver: str
    mountpoint: str
    created_at: str = ""


@dataclass(frozen=True)
class NetworkInfo:
    id: str
    name: str
    driver: str
    scope: str
    internal: bool = False
    subnet: str = "n/a"
    gateway: str = "n/a"


@dataclass(frozen=True)
class SearchResult:
    name: str
    description: str
    star_count: int
    is_official: bool
    is_automated: bool


@dataclass(frozen=True)
class VolumeSpec:
    source: str
    target: str
    mode: str = "rw"

    @classmethod
    def parse(cls, spec: str) -> "VolumeSpec":
        """Parse "source:target[:mode]"; anything shorter is rejected."""
        parts = spec.split(":")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise ValidationError(f"Invalid volume '{spec}'", hint="Use source:target[:ro]")
        mode = parts[2] if len(parts) > 2 and parts[2] else "rw"
        return cls(parts[0], parts[1], mode)

    @property
    def is_bind(self) -> bool:
        return self.source.startswith(("/", "."))

    @property
    def read_only(self) -> bool:
        return self.mode == "ro"

    def __str__(self) -> str:
        return f"{self.source}:{self.target}:{self.mode}"


@dataclass
class ContainerSpec:
    """Container creation request.

    ports maps "<container_port>/<proto>" to a host port string, volumes are
    "source:target[:mode]" strings, env entries are "KEY=value".
    """
    image: str
    name: Optional[str] = None
    ports: Dict[str, str] = field(default_factory=dict)
    volumes: List[str] = field(default_factory=list)
    env: List[str] = field(default_factory=list)
    network: Optional[str] = None
    restart_policy: Optional[str] = None
    command: List[str] = field(default_factory=list)
    memory_limit: Optional[int] = None  # bytes
    cpu_quota: Optional[int] = None     # microseconds per 100ms period

    def validate(self) -> "ContainerSpec":
        """Check every field locally; raises ValidationError on the first problem."""
        validation.validate_image_name(self.image)
        if self.name:
            validation.validate_name(self.name, "Container name")
        for container_port, host_port in self.ports.items():
            validation.validate_port_string(container_port.split("/", 1)[0])
            if host_port:
                validation.validate_port_string(host_port)
        for volume in self.volumes:
            parsed = VolumeSpec.parse(volume)
            validation.validate_volume_path(parsed.target)
            if parsed.source.startswith("/"):
                validation.validate_volume_path(parsed.source)
            elif not parsed.is_bind:
                validation.validate_name(parsed.source, "Volume name")
        for entry in self.env:
            validation.validate_env_key(entry.split("=", 1)[0])
        if self.network:
            validation.validate_network_name(self.network)
        if self.restart_policy:
            validation.validate_restart_policy(self.restart_policy)
        if self.memory_limit is not None and self.memory_limit <= 0:
            raise ValidationError("Memory limit must be positive")
        if self.cpu_quota is not None and self.cpu_quota <= 0:
            raise ValidationError("CPU quota must be positive")
        return self


@dataclass(frozen=True)
class DeploymentResult:
    service_name: str
    success: bool
    container_id: Optional[str] = None
    error: Optional[str] = None
