"""Name to component resolution."""

from __future__ import annotations

from typing import Dict, Type

from ..config import ClusterConfig
from ..errors import UnknownComponentError
from ..secrets import Secrets
from ..ssh.executor import RemoteExecutor
from .backup_agent import BackupAgentComponent
from .base import Component
from .core import CoreComponent
from .extensions import ExtensionsComponent
from .monitoring import MonitoringComponent
from .pooler import PoolerComponent
from .replication_manager import ReplicationManagerComponent
from .tls import TLSComponent

COMPONENT_CLASSES: Dict[str, Type[Component]] = {
    cls.name: cls
    for cls in (
        CoreComponent,
        ReplicationManagerComponent,
        PoolerComponent,
        BackupAgentComponent,
        MonitoringComponent,
        TLSComponent,
        ExtensionsComponent,
    )
}


def resolve_component(name: str) -> Type[Component]:
    """Map a case-insensitive component name to its class."""
    try:
        return COMPONENT_CLASSES[name.strip().lower()]
    except KeyError:
        raise UnknownComponentError(name) from None


def create_component(
    name: str,
    config: ClusterConfig,
    executor: RemoteExecutor,
    secrets: Secrets,
) -> Component:
    return resolve_component(name)(config, executor, secrets)
