"""Remote host probing utilities."""

from __future__ import annotations

import re
from typing import Optional

from ..tuning import HardwareProfile, parse_memtotal, parse_storage
from .executor import RemoteExecutor

_NODE_ID_PATTERN = re.compile(r"^\s*node_id\s*=\s*'?(\d+)'?", re.MULTILINE)


class RemoteProbe:
    """Collects read-only facts about a host by running simple commands."""

    def __init__(self, executor: RemoteExecutor) -> None:
        self.executor = executor

    def is_debian(self, host: str) -> bool:
        return self.executor.test(host, "[ -f /etc/debian_version ]")

    def free_disk_gb(self, host: str) -> Optional[int]:
        output = self._safe_run(host, "df -BG --output=avail / | tail -1")
        try:
            return int(output.strip().rstrip("G"))
        except ValueError:
            return None

    def has_account(self, host: str, user: str) -> bool:
        return self.executor.test(host, f"id {user} >/dev/null 2>&1")

    def postgres_running(self, host: str) -> bool:
        clusters = self._safe_run(host, "sudo pg_lsclusters -h 2>/dev/null || true")
        return "online" in clusters

    @staticmethod
    def ping_command(target: str) -> str:
        return f"ping -c 1 -W 2 {target}"

    def recorded_node_id(self, host: str) -> Optional[int]:
        """Return the node_id written in the host's repmgr.conf, if any."""
        content = self._safe_run(host, "sudo cat /etc/repmgr.conf 2>/dev/null || true")
        match = _NODE_ID_PATTERN.search(content)
        return int(match.group(1)) if match else None

    def hardware(self, host: str) -> Optional[HardwareProfile]:
        """Cores, RAM and disk type, or None when the host does not report them."""
        try:
            cores = int(self._safe_run(host, "nproc").strip())
        except ValueError:
            return None
        memory = parse_memtotal(self._safe_run(host, "cat /proc/meminfo"))
        if memory is None:
            return None
        disks = self._safe_run(host, "lsblk -d -o name,rota 2>/dev/null || true")
        return HardwareProfile(memory_bytes=memory, cpu_cores=cores, storage=parse_storage(disks))

    def _safe_run(self, host: str, command: str) -> str:
        result = self.executor.execute(host, command)
        return result.stdout if result.ok else ""
