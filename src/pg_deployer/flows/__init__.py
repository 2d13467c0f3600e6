"""Deployment flows."""

from .base import DeploymentContext, DeploymentFlow, FlowOutcome, FlowState
from .cluster import ClusterDeploymentFlow
from .standby import StandbyDeploymentFlow

__all__ = [
    "DeploymentContext",
    "DeploymentFlow",
    "FlowOutcome",
    "FlowState",
    "ClusterDeploymentFlow",
    "StandbyDeploymentFlow",
]
