"""Cluster configuration loading for pg-deployer."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError, UnknownComponentError

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/postgres.yml")
DEFAULT_ENVIRONMENT = "development"
ENVIRONMENT_VARIABLE = "PG_DEPLOYER_ENVIRONMENT"

COMPONENT_NAMES: Tuple[str, ...] = (
    "core",
    "replication-manager",
    "pooler",
    "backup-agent",
    "monitoring",
    "tls",
    "extensions",
)

PRIMARY = "primary"
STANDBY = "standby"


@dataclass(frozen=True)
class Node:
    """One database host."""

    host: str
    private_ip: Optional[str] = None
    label: Optional[str] = None
    role: str = PRIMARY
    ordinal: int = 0

    @property
    def cluster_node_id(self) -> int:
        """Identity registered with the replication manager."""
        if self.role == PRIMARY:
            return 1
        return self.ordinal + 2

    @property
    def replication_address(self) -> str:
        return self.private_ip or self.host

    @property
    def name(self) -> str:
        return self.label or self.host

    @classmethod
    def from_payload(cls, payload: Any, *, role: str, ordinal: int = 0) -> "Node":
        if isinstance(payload, str):
            return cls(host=payload, role=role, ordinal=ordinal)
        if not isinstance(payload, Mapping) or not payload.get("host"):
            raise ConfigurationError(f"{role} node needs a 'host' entry")
        return cls(
            host=str(payload["host"]),
            private_ip=payload.get("private_ip"),
            label=payload.get("label"),
            role=role,
            ordinal=ordinal,
        )


@dataclass(frozen=True)
class ComponentSettings:
    enabled: bool = False
    settings: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "ComponentSettings":
        if isinstance(payload, bool):
            return cls(enabled=payload)
        if payload is None:
            return cls(enabled=False)
        if not isinstance(payload, Mapping):
            raise ConfigurationError(f"Component settings must be a mapping, got {payload!r}")
        settings = {k: v for k, v in payload.items() if k != "enabled"}
        # a settings block without an explicit flag enables the component
        return cls(enabled=bool(payload.get("enabled", True)), settings=settings)


@dataclass(frozen=True)
class ClusterConfig:
    """Immutable description of one environment's cluster."""

    environment: str = DEFAULT_ENVIRONMENT
    version: int = 16
    user: str = "ubuntu"
    ssh_key: str = "~/.ssh/id_rsa"
    ssh_port: int = 22
    primary: Optional[Node] = None
    standbys: Tuple[Node, ...] = ()
    components: Mapping[str, ComponentSettings] = field(default_factory=dict)
    secrets: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, environment: str, payload: Dict[str, Any]) -> "ClusterConfig":
        primary_payload = payload.get("primary")
        primary = Node.from_payload(primary_payload, role=PRIMARY) if primary_payload else None

        standby_payload = payload.get("standby") or []
        if isinstance(standby_payload, (Mapping, str)):
            standby_payload = [standby_payload]
        standbys = tuple(
            Node.from_payload(item, role=STANDBY, ordinal=index)
            for index, item in enumerate(standby_payload)
        )

        components: Dict[str, ComponentSettings] = {}
        for name, value in (payload.get("components") or {}).items():
            key = str(name).lower()
            if key not in COMPONENT_NAMES:
                raise UnknownComponentError(str(name))
            components[key] = ComponentSettings.from_payload(value)
        # core is always installed unless explicitly disabled
        components.setdefault("core", ComponentSettings(enabled=True))

        secrets = {str(k): str(v) for k, v in (payload.get("secrets") or {}).items()}

        try:
            version = int(payload.get("version", 16))
            port = int(payload.get("port", 22))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid numeric setting: {exc}") from exc

        return cls(
            environment=environment,
            version=version,
            user=str(payload.get("user", "ubuntu")),
            ssh_key=str(payload.get("ssh_key", "~/.ssh/id_rsa")),
            ssh_port=port,
            primary=primary,
            standbys=standbys,
            components=components,
            secrets=secrets,
        )

    @property
    def primary_host(self) -> Optional[str]:
        return self.primary.host if self.primary else None

    @property
    def standby_hosts(self) -> List[str]:
        return [node.host for node in self.standbys]

    @property
    def all_hosts(self) -> List[str]:
        hosts = [self.primary.host] if self.primary else []
        return hosts + self.standby_hosts

    @property
    def nodes(self) -> List[Node]:
        nodes = [self.primary] if self.primary else []
        return nodes + list(self.standbys)

    def node_for(self, host: str) -> Optional[Node]:
        for node in self.nodes:
            if node.host == host:
                return node
        return None

    def node_by_label(self, label: str) -> Optional[Node]:
        for node in self.nodes:
            if node.label == label:
                return node
        return None

    def replication_host_for(self, host: str) -> str:
        node = self.node_for(host)
        return node.replication_address if node else host

    @property
    def primary_replication_host(self) -> Optional[str]:
        return self.primary.replication_address if self.primary else None

    def component_enabled(self, name: str) -> bool:
        settings = self.components.get(name)
        return bool(settings and settings.enabled)

    def component_settings(self, name: str) -> Dict[str, Any]:
        settings = self.components.get(name)
        return dict(settings.settings) if settings else {}

    @property
    def enabled_components(self) -> List[str]:
        return [name for name in COMPONENT_NAMES if self.component_enabled(name)]

    @property
    def postgres_user(self) -> str:
        return str(self.component_settings("core").get("postgres_user", "postgres"))

    @property
    def repmgr_user(self) -> str:
        return str(self.component_settings("replication-manager").get("user", "repmgr"))

    @property
    def repmgr_database(self) -> str:
        return str(self.component_settings("replication-manager").get("database", "repmgr"))

    @property
    def app_user(self) -> Optional[str]:
        return self.component_settings("core").get("app_user")

    @property
    def app_database(self) -> Optional[str]:
        return self.component_settings("core").get("app_database")

    @property
    def data_directory(self) -> str:
        return f"/var/lib/postgresql/{self.version}/main"

    @property
    def config_directory(self) -> str:
        return f"/etc/postgresql/{self.version}/main"


def resolve_environment(environment: Optional[str] = None) -> str:
    return environment or os.getenv(ENVIRONMENT_VARIABLE) or DEFAULT_ENVIRONMENT


def load_cluster_config(
    path: Optional[str] = None,
    environment: Optional[str] = None,
) -> ClusterConfig:
    """Load one environment from a YAML cluster file.

    Environment variables (higher priority than the config file):
    - PG_DEPLOYER_ENVIRONMENT: environment to load when none is given
    - PG_DEPLOYER_SSH_USER: SSH login user
    - PG_DEPLOYER_SSH_KEY_PATH: path to the SSH private key
    - PG_DEPLOYER_SSH_PORT: SSH port
    """
    candidate = Path(path) if path else _DEFAULT_CONFIG_PATH
    if not candidate.is_file():
        raise ConfigurationError(f"Could not find configuration file: {candidate}")

    with candidate.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {candidate}: {exc}") from exc

    env_name = resolve_environment(environment)
    payload = data.get(env_name) if isinstance(data, dict) else None
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Environment '{env_name}' not found in {candidate}")

    payload = dict(payload)
    env_user = os.getenv("PG_DEPLOYER_SSH_USER")
    if env_user:
        payload["user"] = env_user
    env_key_path = os.getenv("PG_DEPLOYER_SSH_KEY_PATH")
    if env_key_path:
        payload["ssh_key"] = env_key_path
    env_port = os.getenv("PG_DEPLOYER_SSH_PORT")
    if env_port:
        payload["port"] = env_port

    return ClusterConfig.from_dict(env_name, payload)
