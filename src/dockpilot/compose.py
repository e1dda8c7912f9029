"""
Compose file parsing.

Turns a compose YAML document into an ordered list of ServiceSpec, one per
service, each carrying either a ContainerSpec ready for creation or the
reason it cannot be created. Only the keys needed to create a single
container are read: image, container_name, environment, ports, volumes,
networks, restart, command, mem_limit and cpus. Everything else (build,
depends_on, healthcheck, ...) is ignored.

A document that cannot be parsed at all raises ValidationError; problems
confined to one service are reported on that service only.
"""

import logging
import re
import shlex
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml

from .errors import ValidationError
from .model import ContainerSpec
from .validation import validate_cpu_limit, validate_memory_limit

logger = logging.getLogger(__name__)

_INT_TAG = "tag:yaml.org,2002:int"


class ComposeLoader(yaml.SafeLoader):
    """SafeLoader without YAML 1.1 base-60 integers, so 22:22 stays a string."""


ComposeLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _INT_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
ComposeLoader.add_implicit_resolver(
    _INT_TAG,
    re.compile(r"^(?:[-+]?0b[0-1_]+|[-+]?0[0-7_]+|[-+]?(?:0|[1-9][0-9_]*)|[-+]?0x[0-9a-fA-F_]+)$"),
    list("-+0123456789"),
)

CPU_PERIOD = 100000
_MEMORY_FACTORS = {
    "b": 1,
    "k": 1024, "kb": 1024,
    "m": 1024 ** 2, "mb": 1024 ** 2,
    "g": 1024 ** 3, "gb": 1024 ** 3,
}


@dataclass
class ServiceSpec:
    name: str
    container: Optional[ContainerSpec] = None
    error: Optional[str] = None


def parse_memory_limit(limit: Any) -> Optional[int]:
    """'512m' -> bytes. Integers are taken as bytes; empty means no limit."""
    if limit is None:
        return None
    if isinstance(limit, int):
        return limit
    value = validate_memory_limit(str(limit))
    if not value:
        return None
    for suffix in sorted(_MEMORY_FACTORS, key=len, reverse=True):
        if value.endswith(suffix):
            return int(float(value[:-len(suffix)]) * _MEMORY_FACTORS[suffix])
    return int(float(value))


def cpus_to_quota(cpus: Any) -> Optional[int]:
    if cpus is None or cpus == "":
        return None
    try:
        value = float(cpus)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid cpus value: {cpus}") from None
    return int(validate_cpu_limit(value) * CPU_PERIOD)


def parse_port(entry: Any) -> Dict[str, str]:
    """'8080:80', '127.0.0.1:8080:80/udp' or '80' -> {'80/tcp': '8080'}."""
    text = str(entry).strip()
    container, _, proto = text.partition("/")
    parts = container.split(":")
    host_port = parts[-2] if len(parts) >= 2 else ""
    return {f"{parts[-1]}/{proto or 'tcp'}": host_port}


def parse_command(command: Any) -> List[str]:
    if command is None:
        return []
    if isinstance(command, str):
        return shlex.split(command)
    if isinstance(command, list):
        return [str(part) for part in command]
    raise ValidationError(f"Unsupported command format: {command!r}")


def parse_environment(environment: Any) -> List[str]:
    if not environment:
        return []
    if isinstance(environment, dict):
        return [f"{k}={'' if v is None else v}" for k, v in environment.items()]
    return [str(entry) for entry in environment]


def first_network(networks: Any) -> Optional[str]:
    if not networks:
        return None
    if isinstance(networks, dict):
        return next(iter(networks))
    return str(networks[0])


def _container_spec(name: str, service: Dict[str, Any]) -> ContainerSpec:
    image = service.get("image")
    if not image:
        raise ValidationError("No image specified")
    ports: Dict[str, str] = {}
    for entry in service.get("ports") or []:
        ports.update(parse_port(entry))
    return ContainerSpec(
        image=str(image),
        name=service.get("container_name") or name,
        ports=ports,
        volumes=[str(v) for v in service.get("volumes") or []],
        env=parse_environment(service.get("environment")),
        network=first_network(service.get("networks")),
        restart_policy=service.get("restart"),
        command=parse_command(service.get("command")),
        memory_limit=parse_memory_limit(service.get("mem_limit")),
        cpu_quota=cpus_to_quota(service.get("cpus")),
    )


def parse_compose(text: str) -> List[ServiceSpec]:
    """Parse compose YAML into services in document order."""
    if not text or not text.strip():
        raise ValidationError("Please upload a compose file first")
    try:
        document = yaml.load(text, Loader=ComposeLoader)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML: {e}") from e
    if not isinstance(document, dict) or not isinstance(document.get("services"), dict):
        raise ValidationError("Compose file has no services section")

    services: List[ServiceSpec] = []
    for name, body in document["services"].items():
        name = str(name)
        if not isinstance(body, dict):
            services.append(ServiceSpec(name, error="Service definition must be a mapping"))
            continue
        try:
            services.append(ServiceSpec(name, container=_container_spec(name, body)))
        except ValidationError as e:
            logger.debug(f"Service {name} rejected during parsing: {e.message}")
            services.append(ServiceSpec(name, error=e.message))
    return services
