"""Operator-confirmed standby promotion."""

from __future__ import annotations

from typing import Optional

from .config import ClusterConfig, Node
from .errors import ConfigurationError
from .interaction import UserInteractionHandler, confirm
from .ssh.executor import RemoteExecutor
from .utils.logging import get_logger

logger = get_logger(__name__)


class Failover:
    """Promotes one configured standby; never acts automatically."""

    def __init__(
        self,
        config: ClusterConfig,
        executor: RemoteExecutor,
        interaction: UserInteractionHandler,
        assume_yes: bool = False,
    ) -> None:
        self.config = config
        self.executor = executor
        self.interaction = interaction
        self.assume_yes = assume_yes

    def resolve(self, host_or_label: str) -> Node:
        node = self.config.node_for(host_or_label) or self.config.node_by_label(host_or_label)
        if node is None:
            raise ConfigurationError(f"Could not resolve host: {host_or_label}")
        if node.role != "standby":
            raise ConfigurationError(f"Host is not a standby: {node.host}")
        return node

    def promote(self, host_or_label: str) -> bool:
        """Promote the standby; return whether a promotion was issued."""
        node = self.resolve(host_or_label)
        self.interaction.notify(f"==> Promoting {node.host} to primary...")
        self.interaction.notify(
            "WARNING: promotion is irreversible. The old primary must be rebuilt as a standby, "
            "and applications must be pointed at the new primary.",
            "warning",
        )
        if not self.assume_yes and not confirm(self.interaction, f"Promote {node.host} to primary?"):
            self.interaction.notify("Cancelled.")
            return False

        self.executor.run_on_host(node.host, self.promotion_command())

        self.interaction.notify("Promotion complete!", "success")
        self.interaction.notify(
            "Next steps:\n"
            f"  1. Point applications at the new primary: {node.host}\n"
            "  2. Restart your application\n"
            "  3. Rebuild the old primary as a standby (pg-deployer setup-standby)"
        )
        return True

    def promotion_command(self) -> str:
        user = self.config.postgres_user
        if self.config.component_enabled("replication-manager"):
            return f"sudo -u {user} env HOME=/var/lib/postgresql repmgr -f /etc/repmgr.conf standby promote"
        return f"sudo pg_ctlcluster {self.config.version} main promote"

    def target_for(self, host: Optional[str], node_label: Optional[str]) -> str:
        target = host or node_label
        if not target:
            raise ConfigurationError("promote needs a HOST or --node NAME")
        return target
