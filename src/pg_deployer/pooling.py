"""Connection pool sizing for the pooler."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

DEFAULT_MAX_CONNECTIONS = 100
ASSUMED_DATABASES = 4
POOL_SIZE_FLOOR = 20
POOL_SIZE_CEILING = 100


def default_pool_size(max_connections: int) -> int:
    """80% of the server's connections split across the expected databases."""
    pool_per_db = int(max_connections * 0.8 / ASSUMED_DATABASES)
    return max(POOL_SIZE_FLOOR, min(pool_per_db, POOL_SIZE_CEILING))


def calculate_pool_sizes(max_connections: int) -> Dict[str, int]:
    server_limit = max(max_connections - 10, 10)
    return {
        "default_pool_size": default_pool_size(max_connections),
        "min_pool_size": 5,
        "reserve_pool_size": 5,
        "max_client_conn": max_connections * 10,
        "max_db_connections": server_limit,
        "max_user_connections": server_limit,
    }


def pooler_settings(
    max_connections: Optional[int],
    overrides: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Calculated sizes with operator overrides applied on top."""
    settings: Dict[str, Any] = {
        "pool_mode": "transaction",
        "listen_port": 6432,
        "listen_addr": "*",
        "auth_type": "scram-sha-256",
        "auth_file": "/etc/pgbouncer/userlist.txt",
        "server_reset_query": "DISCARD ALL",
        "ignore_startup_parameters": "extra_float_digits,options",
    }
    settings.update(calculate_pool_sizes(max_connections or DEFAULT_MAX_CONNECTIONS))
    settings.update(overrides or {})
    return settings


def render_pgbouncer_ini(settings: Mapping[str, Any], databases: Mapping[str, str]) -> str:
    lines = ["[databases]"]
    for name, conninfo in databases.items():
        lines.append(f"{name} = {conninfo}")
    lines.append("")
    lines.append("[pgbouncer]")
    for key, value in settings.items():
        lines.append(f"{key} = {value}")
    return "\n".join(lines) + "\n"
