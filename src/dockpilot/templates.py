"""
Container templates.

A template is a reusable, pre-filled creation request: image, ports, volumes,
environment, limits. A fixed catalogue of built-ins ships with the package;
user templates live in templates.yaml next to config.yaml and are rewritten
after every change.

Templates can be exported to JSON (one or all user templates) and imported
back; an import always gets a fresh id and is marked as a user template, so
importing the same file twice yields two independent copies.
"""

import json
import logging
import shutil
import uuid
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from . import get_config_dir
from .errors import ValidationError
from .model import ContainerSpec

logger = logging.getLogger(__name__)

MB = 1024 * 1024
CPU_PERIOD = 100000

# Field names as written by older JSON exports.
_ALIASES = {
    "containerPort": "container_port",
    "hostPort": "host_port",
    "envVars": "env",
    "restartPolicy": "restart_policy",
    "memoryLimit": "memory_limit",
    "cpuLimit": "cpu_limit",
    "isCustom": "is_custom",
}


@dataclass
class PortBinding:
    container_port: str
    host_port: str = ""


@dataclass
class VolumeBinding:
    source: str
    target: str
    readonly: bool = False


@dataclass
class EnvVar:
    key: str
    value: str = ""


@dataclass
class Template:
    id: str
    name: str
    image: str
    description: str = ""
    ports: List[PortBinding] = field(default_factory=list)
    volumes: List[VolumeBinding] = field(default_factory=list)
    env: List[EnvVar] = field(default_factory=list)
    network: str = "bridge"
    restart_policy: str = "unless-stopped"
    command: str = ""
    memory_limit: str = ""  # MB
    cpu_limit: str = ""     # cores
    color: str = ""
    is_custom: bool = False

    def to_container_spec(self, name: Optional[str] = None) -> ContainerSpec:
        """Build the creation request the create form would submit for this template."""
        ports: Dict[str, str] = {}
        for port in self.ports:
            if not port.container_port:
                continue
            key = port.container_port if "/" in port.container_port else f"{port.container_port}/tcp"
            ports[key] = port.host_port
        volumes = [
            f"{v.source}:{v.target}" + (":ro" if v.readonly else "")
            for v in self.volumes if v.source and v.target
        ]
        env = [f"{e.key}={e.value}" for e in self.env if e.key]
        try:
            memory = int(float(self.memory_limit) * MB) if self.memory_limit else None
            cpu_quota = int(float(self.cpu_limit) * CPU_PERIOD) if self.cpu_limit else None
        except ValueError:
            raise ValidationError(f"Template '{self.name}' has a non-numeric resource limit") from None
        return ContainerSpec(
            image=self.image,
            name=name or None,
            ports=ports,
            volumes=volumes,
            env=env,
            network=self.network if self.network and self.network != "bridge" else None,
            restart_policy=self.restart_policy if self.restart_policy and self.restart_policy != "no" else None,
            command=self.command.split(),
            memory_limit=memory,
            cpu_quota=cpu_quota,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Template":
        if not isinstance(data, dict):
            raise ValidationError("Template must be an object")
        data = {_ALIASES.get(k, k): v for k, v in data.items()}
        if not data.get("name") or not data.get("image"):
            raise ValidationError("Template needs at least a name and an image")

        def items(key):
            return [{_ALIASES.get(k, k): v for k, v in entry.items()}
                    for entry in data.get(key) or [] if isinstance(entry, dict)]

        return cls(
            id=str(data.get("id") or ""),
            name=str(data["name"]),
            image=str(data["image"]),
            description=str(data.get("description") or ""),
            ports=[PortBinding(str(p.get("container_port", "")), str(p.get("host_port", "")))
                   for p in items("ports")],
            volumes=[VolumeBinding(str(v.get("source", "")), str(v.get("target", "")),
                                   bool(v.get("readonly", False)))
                     for v in items("volumes")],
            env=[EnvVar(str(e.get("key", "")), str(e.get("value", ""))) for e in items("env")],
            network=str(data.get("network") or "bridge"),
            restart_policy=str(data.get("restart_policy") or "unless-stopped"),
            command=str(data.get("command") or ""),
            memory_limit=str(data.get("memory_limit") or ""),
            cpu_limit=str(data.get("cpu_limit") or ""),
            color=str(data.get("color") or ""),
            is_custom=bool(data.get("is_custom", False)),
        )


def _builtin(id: str, name: str, image: str, description: str, ports=(), volumes=(), env=(),
             command: str = "", memory: str = "512", cpus: str = "1", color: str = "") -> Template:
    return Template(
        id=id, name=name, image=image, description=description,
        ports=[PortBinding(c, h) for c, h in ports],
        volumes=[VolumeBinding(s, t, ro) for s, t, ro in volumes],
        env=[EnvVar(k, v) for k, v in env],
        command=command, memory_limit=memory, cpu_limit=cpus, color=color,
    )


BUILTIN_TEMPLATES: List[Template] = [
    # Databases
    _builtin("postgres", "PostgreSQL", "postgres:latest", "PostgreSQL relational database",
             ports=[("5432/tcp", "5432")],
             volumes=[("postgres-data", "/var/lib/postgresql/data", False)],
             env=[("POSTGRES_PASSWORD", "postgres"), ("POSTGRES_USER", "postgres"), ("POSTGRES_DB", "mydb")],
             color="#336791"),
    _builtin("mysql", "MySQL", "mysql:latest", "MySQL relational database",
             ports=[("3306/tcp", "3306")],
             volumes=[("mysql-data", "/var/lib/mysql", False)],
             env=[("MYSQL_ROOT_PASSWORD", "rootpassword"), ("MYSQL_DATABASE", "mydb"),
                  ("MYSQL_USER", "user"), ("MYSQL_PASSWORD", "password")],
             color="#00758F"),
    _builtin("mariadb", "MariaDB", "mariadb:latest", "Community-developed MySQL fork",
             ports=[("3306/tcp", "3307")],
             volumes=[("mariadb-data", "/var/lib/mysql", False)],
             env=[("MARIADB_ROOT_PASSWORD", "rootpassword"), ("MARIADB_DATABASE", "mydb")],
             color="#003545"),
    _builtin("mongodb", "MongoDB", "mongo:latest", "NoSQL document database",
             ports=[("27017/tcp", "27017")],
             volumes=[("mongo-data", "/data/db", False)],
             env=[("MONGO_INITDB_ROOT_USERNAME", "admin"), ("MONGO_INITDB_ROOT_PASSWORD", "password")],
             color="#47A248"),
    # Caching
    _builtin("redis", "Redis", "redis:latest", "In-memory data structure store",
             ports=[("6379/tcp", "6379")],
             volumes=[("redis-data", "/data", False)],
             command="redis-server --appendonly yes", memory="256", cpus="0.5", color="#DC382D"),
    _builtin("memcached", "Memcached", "memcached:latest", "Distributed memory caching",
             ports=[("11211/tcp", "11211")], memory="128", cpus="0.5", color="#00A3E0"),
    # Web servers
    _builtin("nginx", "Nginx", "nginx:latest", "Web server and reverse proxy",
             ports=[("80/tcp", "80"), ("443/tcp", "443")],
             volumes=[("nginx-html", "/usr/share/nginx/html", False),
                      ("nginx-conf", "/etc/nginx/conf.d", True)],
             memory="128", cpus="0.5", color="#009639"),
    _builtin("apache", "Apache HTTP", "httpd:latest", "Apache HTTP server",
             ports=[("80/tcp", "8081")],
             volumes=[("apache-html", "/usr/local/apache2/htdocs", False)],
             memory="256", cpus="0.5", color="#D22128"),
    _builtin("traefik", "Traefik", "traefik:latest", "Cloud-native edge router",
             ports=[("80/tcp", "8082"), ("8080/tcp", "8083")],
             volumes=[("/var/run/docker.sock", "/var/run/docker.sock", True)],
             command="--api.insecure=true --providers.docker", memory="256", cpus="0.5",
             color="#24A1C1"),
    # Runtimes
    _builtin("node", "Node.js", "node:20-alpine", "JavaScript runtime",
             ports=[("3000/tcp", "3000")], command="node", color="#339933"),
    _builtin("python", "Python", "python:3.11-slim", "Python runtime",
             ports=[("8000/tcp", "8000")], command="python3", color="#3776AB"),
    # Messaging
    _builtin("rabbitmq", "RabbitMQ", "rabbitmq:3-management", "Message broker with management UI",
             ports=[("5672/tcp", "5672"), ("15672/tcp", "15672")],
             volumes=[("rabbitmq-data", "/var/lib/rabbitmq", False)],
             env=[("RABBITMQ_DEFAULT_USER", "admin"), ("RABBITMQ_DEFAULT_PASS", "password")],
             color="#FF6600"),
    _builtin("nats", "NATS", "nats:latest", "Lightweight messaging system",
             ports=[("4222/tcp", "4222"), ("8222/tcp", "8222")],
             memory="128", cpus="0.5", color="#27AAE1"),
    # Monitoring
    _builtin("prometheus", "Prometheus", "prom/prometheus:latest", "Metrics and monitoring",
             ports=[("9090/tcp", "9090")],
             volumes=[("prometheus-data", "/prometheus", False)],
             color="#E6522C"),
    _builtin("grafana", "Grafana", "grafana/grafana:latest", "Analytics and monitoring UI",
             ports=[("3000/tcp", "3001")],
             volumes=[("grafana-data", "/var/lib/grafana", False)],
             env=[("GF_SECURITY_ADMIN_PASSWORD", "admin"), ("GF_SECURITY_ADMIN_USER", "admin")],
             memory="256", cpus="0.5", color="#F46800"),
    # Dev tools
    _builtin("jenkins", "Jenkins", "jenkins/jenkins:lts", "CI/CD automation server",
             ports=[("8080/tcp", "8080"), ("50000/tcp", "50000")],
             volumes=[("jenkins-data", "/var/jenkins_home", False)],
             memory="1024", color="#D24939"),
    _builtin("minio", "MinIO", "minio/minio:latest", "S3-compatible object storage",
             ports=[("9000/tcp", "9000"), ("9001/tcp", "9001")],
             volumes=[("minio-data", "/data", False)],
             env=[("MINIO_ROOT_USER", "minioadmin"), ("MINIO_ROOT_PASSWORD", "minioadmin")],
             command='server /data --console-address :9001', color="#C72E49"),
    # CMS
    _builtin("wordpress", "WordPress", "wordpress:latest", "Blogging and CMS platform",
             ports=[("80/tcp", "8084")],
             volumes=[("wordpress-data", "/var/www/html", False)],
             env=[("WORDPRESS_DB_HOST", "mysql"), ("WORDPRESS_DB_USER", "user"),
                  ("WORDPRESS_DB_PASSWORD", "password"), ("WORDPRESS_DB_NAME", "mydb")],
             color="#21759B"),
    # Utilities
    _builtin("registry", "Docker Registry", "registry:2", "Private image registry",
             ports=[("5000/tcp", "5000")],
             volumes=[("registry-data", "/var/lib/registry", False)],
             memory="256", cpus="0.5", color="#2496ED"),
    _builtin("adminer", "Adminer", "adminer:latest", "Database management in a single page",
             ports=[("8080/tcp", "8085")], memory="128", cpus="0.5", color="#34567C"),
]

CATEGORIES: Dict[str, List[str]] = {
    "database": ["postgres", "mysql", "mariadb", "mongodb"],
    "cache": ["redis", "memcached"],
    "web": ["nginx", "apache", "traefik"],
    "runtime": ["node", "python"],
    "messaging": ["rabbitmq", "nats"],
    "monitoring": ["prometheus", "grafana"],
    "devtools": ["jenkins", "minio"],
    "cms": ["wordpress"],
    "utilities": ["registry", "adminer"],
}


def new_template_id() -> str:
    return f"custom-{uuid.uuid4().hex[:12]}"


def export_filename(template: Template) -> str:
    return f"{template.id}-template.json"


class TemplateStore:
    """Built-in catalogue plus persisted user templates."""

    FILE_NAME = "templates.yaml"
    EXPORT_ALL_FILE_NAME = "custom-templates.json"

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else get_config_dir()
        self.path = self.config_dir / self.FILE_NAME
        self._custom: List[Template] = []
        self.load()

    @property
    def custom_templates(self) -> List[Template]:
        return list(self._custom)

    def load(self) -> None:
        """Read user templates. Invalid entries are skipped one by one.

        Whenever something in the file cannot be used, the file is first
        copied to templates.yaml.bak so the next save cannot lose it.
        """
        self._custom = []
        if not self.path.exists():
            return
        try:
            with open(self.path, 'r') as f:
                raw = yaml.safe_load(f) or []
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load templates: {e}, starting with none")
            self._backup()
            return
        if not isinstance(raw, list):
            logger.error(f"{self.path} does not hold a list of templates, starting with none")
            self._backup()
            return

        skipped = 0
        for index, item in enumerate(raw):
            try:
                self._custom.append(replace(Template.from_dict(item), is_custom=True))
            except (ValidationError, TypeError, AttributeError) as e:
                skipped += 1
                logger.warning(f"Skipping template #{index + 1} in {self.path}: {e}")
        if skipped:
            self._backup()
        logger.debug(f"Loaded {len(self._custom)} user templates from {self.path}")

    def _backup(self) -> None:
        backup = self.path.with_name(self.path.name + ".bak")
        try:
            shutil.copyfile(self.path, backup)
            logger.warning(f"Copied {self.path} to {backup}")
        except OSError as e:
            logger.error(f"Could not back up {self.path}: {e}")

    def save(self) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            yaml.safe_dump([t.to_dict() for t in self._custom], f, default_flow_style=False, sort_keys=False)
        logger.debug(f"Saved {len(self._custom)} user templates to {self.path}")

    def list(self, category: str = "all") -> List[Template]:
        if category == "all":
            return BUILTIN_TEMPLATES + self._custom
        if category == "custom":
            return list(self._custom)
        if category not in CATEGORIES:
            raise ValidationError(f"Unknown template category: {category}",
                                  hint=f"Use all, custom or one of {', '.join(CATEGORIES)}")
        wanted = CATEGORIES[category]
        return [t for t in BUILTIN_TEMPLATES if t.id in wanted]

    def get(self, template_id: str) -> Optional[Template]:
        for template in BUILTIN_TEMPLATES + self._custom:
            if template.id == template_id:
                return template
        return None

    def add(self, template: Template) -> Template:
        """Store a copy of template as a new user template."""
        stored = replace(template, id=new_template_id(), is_custom=True)
        self._custom.append(stored)
        self.save()
        logger.info(f"Added template {stored.id} ({stored.name})")
        return stored

    def delete(self, template_id: str) -> bool:
        if any(t.id == template_id for t in BUILTIN_TEMPLATES):
            raise ValidationError("Built-in templates cannot be deleted")
        before = len(self._custom)
        self._custom = [t for t in self._custom if t.id != template_id]
        if len(self._custom) == before:
            return False
        self.save()
        logger.info(f"Deleted template {template_id}")
        return True

    def export_template(self, template_id: str) -> str:
        template = self.get(template_id)
        if template is None:
            raise ValidationError(f"No such template: {template_id}")
        return json.dumps(template.to_dict(), indent=2)

    def export_all(self) -> str:
        return json.dumps([t.to_dict() for t in self._custom], indent=2)

    def import_templates(self, text: str) -> List[Template]:
        """Import one template object or a list of them. Nothing is stored if any entry is invalid."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid template file: {e}") from e
        entries = data if isinstance(data, list) else [data]
        parsed = [Template.from_dict(entry) for entry in entries]
        imported = [replace(t, id=new_template_id(), is_custom=True) for t in parsed]
        self._custom.extend(imported)
        self.save()
        logger.info(f"Imported {len(imported)} templates")
        return imported
