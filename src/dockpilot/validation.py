"""Local validation for container creation input.

Everything here runs before an engine call so that obviously malformed
requests fail fast with a readable message. Each validator returns the
(possibly normalized) value and raises ValidationError otherwise.
"""

from __future__ import annotations

import re

from .errors import ValidationError

MAX_NAME_LENGTH = 255
MAX_CPUS = 1024.0

BUILTIN_NETWORKS = {"bridge", "host", "none"}
RESTART_POLICIES = {"no", "always", "unless-stopped", "on-failure"}
MEMORY_SUFFIXES = ("kb", "mb", "gb", "k", "m", "g", "b")

_NAME_RE = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9_.-]*$')
_ENV_KEY_RE = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')
_COMPONENT = r'[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*'
_IMAGE_RE = re.compile(
    r'^(?:[a-zA-Z0-9.-]+(?::[0-9]+)?/)?'
    rf'{_COMPONENT}(?:/{_COMPONENT})*'
    r'(?::[A-Za-z0-9_][A-Za-z0-9_.-]{0,127})?'
    r'(?:@sha256:[a-f0-9]{64})?$'
)


def validate_name(name: str, what: str = "Name") -> str:
    """Validate a container, volume or network name.

    Names must start with an alphanumeric character and contain only
    alphanumerics, hyphens, underscores or dots (max 255 characters).
    """
    if not name:
        raise ValidationError(f"{what} cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"{what} too long (max {MAX_NAME_LENGTH} characters)")
    if not _NAME_RE.match(name):
        raise ValidationError(
            f"{what} must start with alphanumeric and contain only alphanumeric, "
            "hyphens, underscores, or dots"
        )
    return name


def validate_image_name(image: str) -> str:
    """Validate an image reference such as nginx, bitnami/redis:7 or host:5000/app:1.0."""
    if not image or not image.strip():
        raise ValidationError("Image name cannot be empty")
    image = image.strip()
    if len(image) > MAX_NAME_LENGTH:
        raise ValidationError("Image name too long")
    if not _IMAGE_RE.match(image):
        raise ValidationError(f"Invalid image reference: {image}",
                              hint="Use [registry/]repository[:tag]")
    return image


def validate_port(port: int) -> int:
    if not 0 < port <= 65535:
        raise ValidationError(f"Port number out of range: {port}")
    return port


def validate_port_string(port_str: str) -> int:
    """Parse and validate a port number given as text."""
    try:
        port = int(str(port_str).strip())
    except ValueError:
        raise ValidationError(f"Invalid port number: {port_str}") from None
    return validate_port(port)


def validate_env_key(key: str) -> str:
    if not key:
        raise ValidationError("Environment variable name cannot be empty")
    if not _ENV_KEY_RE.match(key):
        raise ValidationError(
            f"Invalid environment variable name: {key} "
            "(must start with letter/underscore, contain only alphanumeric/underscore)"
        )
    return key


def validate_volume_path(path: str) -> str:
    """Validate an absolute path used on either side of a bind mount."""
    if not path:
        raise ValidationError("Volume path cannot be empty")
    if ".." in path:
        raise ValidationError("Volume path cannot contain '..' (directory traversal)")
    if not path.startswith("/"):
        raise ValidationError(f"Volume path must be absolute: {path}")
    return path


def validate_memory_limit(limit: str) -> str:
    """Accept a plain byte count or a k/m/g (kb/mb/gb) suffixed size. Empty means no limit."""
    value = limit.strip().lower()
    if not value:
        return value
    number = value
    for suffix in MEMORY_SUFFIXES:
        if value.endswith(suffix):
            number = value[:-len(suffix)]
            break
    try:
        parsed = float(number)
    except ValueError:
        raise ValidationError("Memory limit must be a number or include suffix (k, m, g)") from None
    if parsed <= 0:
        raise ValidationError("Memory limit must be positive")
    return value


def validate_cpu_limit(cpus: float) -> float:
    if cpus <= 0:
        raise ValidationError("CPU limit must be positive")
    if cpus > MAX_CPUS:
        raise ValidationError("CPU limit unreasonably high (max 1024 cores)")
    return cpus


def validate_network_name(network: str) -> str:
    """Builtin networks and container:<name> are accepted as-is."""
    if not network:
        raise ValidationError("Network name cannot be empty")
    if network in BUILTIN_NETWORKS or network.startswith("container:"):
        return network
    return validate_name(network, "Network name")


def validate_restart_policy(policy: str) -> str:
    name = policy.split(":", 1)[0]
    if name not in RESTART_POLICIES:
        raise ValidationError(
            f"Unknown restart policy: {policy}",
            hint=f"Use one of {', '.join(sorted(RESTART_POLICIES))}",
        )
    return policy
