"""Server settings derived from a host's memory, cores and storage."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional

KB = 1024
MB = 1024 * KB
GB = 1024 * MB

DEFAULT_WORKLOAD = "web"
HUGE_PAGES_THRESHOLD = 32 * GB

_MEMTOTAL_PATTERN = re.compile(r"^MemTotal:\s+(\d+)\s*kB", re.MULTILINE)
_NON_ROTATIONAL_PATTERN = re.compile(r"\s0\s*$", re.MULTILINE)


@dataclass(frozen=True)
class WorkloadProfile:
    shared_buffers_ratio: float
    effective_cache_ratio: float
    maintenance_ratio: float
    # connections assumed when splitting memory into work_mem
    work_mem_connections: int
    max_connections: int
    connections_per_core: int


WORKLOAD_PROFILES: Dict[str, WorkloadProfile] = {
    "web": WorkloadProfile(0.25, 0.75, 0.05, 200, 200, 25),
    "oltp": WorkloadProfile(0.25, 0.75, 0.05, 300, 300, 40),
    "dw": WorkloadProfile(0.4, 0.8, 0.1, 50, 50, 10),
    "desktop": WorkloadProfile(0.1, 0.25, 0.0, 0, 20, 0),
}


@dataclass(frozen=True)
class HardwareProfile:
    memory_bytes: int
    cpu_cores: int
    storage: str = "hdd"

    @property
    def ssd(self) -> bool:
        return self.storage == "ssd"


def format_memory(value: int) -> str:
    """Whole GB, MB or kB, rounding down, the way postgresql.conf expects them."""
    if value >= GB:
        return f"{value // GB}GB"
    if value >= MB:
        return f"{value // MB}MB"
    return f"{value // KB}kB"


def parse_memtotal(meminfo: str) -> Optional[int]:
    """Bytes of RAM from ``/proc/meminfo`` output."""
    match = _MEMTOTAL_PATTERN.search(meminfo)
    return int(match.group(1)) * KB if match else None


def parse_storage(lsblk_output: str) -> str:
    """``ssd`` when ``lsblk -d -o name,rota`` lists an NVMe or non-rotational disk."""
    if "nvme" in lsblk_output or _NON_ROTATIONAL_PATTERN.search(lsblk_output):
        return "ssd"
    return "hdd"


def shared_buffers(memory: int, ratio: float) -> int:
    return max(min(int(memory * ratio), int(memory * 0.4)), 128 * MB)


def maintenance_work_mem(memory: int, ratio: float) -> int:
    return max(min(int(memory * ratio), 2 * GB), 64 * MB)


def work_mem(memory: int, connections: int) -> int:
    """(RAM - a quarter for shared buffers) split over three sorts per connection."""
    available = memory - memory * 0.25
    value = int(available / (connections * 3))
    return max(4 * MB, min(value, 256 * MB))


def wal_buffers(shared_buffers_bytes: int) -> int:
    return min(int(shared_buffers_bytes * 0.03), 16 * MB)


def tuned_settings(hardware: HardwareProfile, workload: str = DEFAULT_WORKLOAD) -> Dict[str, object]:
    """postgresql.conf settings sized for ``hardware`` running ``workload``.

    Workloads are ``web`` (the default), ``oltp``, ``dw`` and ``desktop``.
    Unknown workloads raise :class:`KeyError`.
    """
    profile = WORKLOAD_PROFILES[workload]
    memory = hardware.memory_bytes
    cores = max(hardware.cpu_cores, 1)

    buffers = shared_buffers(memory, profile.shared_buffers_ratio)
    settings: Dict[str, object] = {
        "shared_buffers": format_memory(buffers),
        "effective_cache_size": format_memory(int(memory * profile.effective_cache_ratio)),
    }
    if workload == "desktop":
        settings["maintenance_work_mem"] = "64MB"
        settings["work_mem"] = "4MB"
        settings["max_connections"] = profile.max_connections
    else:
        settings["maintenance_work_mem"] = format_memory(maintenance_work_mem(memory, profile.maintenance_ratio))
        settings["work_mem"] = format_memory(work_mem(memory, profile.work_mem_connections))
        settings["max_connections"] = min(profile.max_connections, cores * profile.connections_per_core)

    parallel = min(cores // 2, 4)
    settings.update(
        {
            "checkpoint_completion_target": 0.9,
            "wal_buffers": format_memory(wal_buffers(buffers)),
            "default_statistics_target": 100,
            "random_page_cost": 1.1 if hardware.ssd else 4,
            "effective_io_concurrency": 200 if hardware.ssd else 2,
            "max_worker_processes": cores,
            "max_parallel_workers_per_gather": parallel,
            "max_parallel_workers": cores,
            "max_parallel_maintenance_workers": parallel,
        }
    )
    if memory > HUGE_PAGES_THRESHOLD:
        settings["huge_pages"] = "try"
    return settings
