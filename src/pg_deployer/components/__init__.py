"""Installable cluster subsystems."""

from .base import Component
from .backup_agent import BackupAgentComponent
from .core import CoreComponent
from .extensions import ExtensionsComponent
from .monitoring import MonitoringComponent
from .pooler import PoolerComponent
from .replication_manager import ReplicationManagerComponent
from .resolver import COMPONENT_CLASSES, create_component, resolve_component
from .tls import TLSComponent

__all__ = [
    "Component",
    "BackupAgentComponent",
    "CoreComponent",
    "ExtensionsComponent",
    "MonitoringComponent",
    "PoolerComponent",
    "ReplicationManagerComponent",
    "TLSComponent",
    "COMPONENT_CLASSES",
    "create_component",
    "resolve_component",
]
