"""Error taxonomy for pg-deployer."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .validator import ValidationResult


class DeployerError(Exception):
    """Base class for every error raised by pg-deployer."""


class ConfigurationError(DeployerError):
    """The cluster definition is structurally invalid."""


class UnknownComponentError(ConfigurationError):
    """A component name outside the supported set was requested."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown component: {name}")
        self.name = name


class ValidationFailure(DeployerError):
    """Preflight validation reported at least one error."""

    def __init__(self, result: "ValidationResult") -> None:
        count = len(result.errors)
        super().__init__(
            f"Validation failed with {count} error(s). Fix errors before proceeding, "
            "or use --skip-validation to bypass."
        )
        self.result = result


class ExecutionError(DeployerError):
    """A remote operation failed."""

    def __init__(
        self,
        message: str,
        *,
        host: Optional[str] = None,
        command: Optional[str] = None,
        exit_status: Optional[int] = None,
        stderr: str = "",
        failures: Optional[List["ExecutionError"]] = None,
    ) -> None:
        super().__init__(message)
        self.host = host
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr
        self.failures = failures or []


class CompensationFailure(DeployerError):
    """A rollback action raised while compensating a failed deployment."""

    def __init__(self, description: str, host: Optional[str], cause: BaseException) -> None:
        where = f" on {host}" if host else ""
        super().__init__(f"Rollback '{description}'{where} failed: {cause}")
        self.description = description
        self.host = host
        self.cause = cause


class RetryExhausted(DeployerError):
    """Every retry attempt failed; wraps the last error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class OperationTimeoutError(DeployerError, TimeoutError):
    """An operation exceeded its deadline."""

    def __init__(self, description: str, timeout: float) -> None:
        super().__init__(f"{description} timed out after {timeout}s")
        self.description = description
        self.timeout = timeout


class OperationCancelled(DeployerError):
    """Raised inside a body whose deadline already fired."""


class SecretResolutionError(DeployerError):
    """A secret reference could not be resolved."""


# Troubleshooting guides shown by the CLI error report.
ERROR_GUIDES = {
    "ssh_connection": (
        "SSH Connection Failed",
        [
            "Ensure SSH keys are properly configured for the target host",
            "Verify the host is reachable: ping <hostname>",
            "Check SSH config in ~/.ssh/config",
            "Try manual SSH connection: ssh <user>@<host>",
        ],
    ),
    "private_network": (
        "Private Network Connectivity Failed",
        [
            "Ensure the private/VPC network is configured on all nodes",
            "Check firewall/security-group rules for the replication subnet",
            "Test connectivity: ping <private_ip>",
        ],
    ),
    "postgresql_not_starting": (
        "PostgreSQL Failed to Start",
        [
            "Check PostgreSQL logs: sudo tail -100 /var/log/postgresql/postgresql-*-main.log",
            "Verify cluster state: sudo pg_lsclusters",
            "Check if port 5432 is already in use: sudo lsof -i :5432",
        ],
    ),
    "repmgr_clone_failed": (
        "Standby Clone Failed",
        [
            "Verify the primary is running and reachable over the replication address",
            "Check pg_hba.conf allows replication from the standby address",
            "Ensure sufficient disk space on the standby",
        ],
    ),
    "repmgr_register_failed": (
        "Replication Manager Registration Failed",
        [
            "Ensure the primary is registered first: repmgr cluster show",
            "Verify the standby can connect to the primary",
            "Check that the recorded node_id matches the standby order in the config",
        ],
    ),
    "ssl_certificate_error": (
        "TLS Certificate Error",
        [
            "Check certificate file permissions (600 for the key)",
            "Ensure the certificate is valid: openssl x509 -in <cert> -text -noout",
        ],
    ),
    "disk_space_error": (
        "Insufficient Disk Space",
        [
            "Check available disk space: df -h /var/lib/postgresql",
            "Consider increasing the volume size",
        ],
    ),
    "authentication_failed": (
        "PostgreSQL Authentication Failed",
        [
            "Verify pg_hba.conf has the expected authentication methods",
            "Ensure the password secret resolves to the expected value",
            "Reload PostgreSQL after pg_hba.conf changes",
        ],
    ),
}

_GUIDE_KEYWORDS = [
    ("ssh_connection", ("ssh", "connection refused", "network unreachable")),
    ("private_network", ("private network", "replication address", "cannot reach the primary")),
    ("postgresql_not_starting", ("failed to start", "not running")),
    ("repmgr_clone_failed", ("clone", "data directory")),
    ("repmgr_register_failed", ("register", "node_id")),
    ("ssl_certificate_error", ("ssl", "certificate", "tls")),
    ("disk_space_error", ("no space", "disk full")),
    ("authentication_failed", ("authentication", "password", "pg_hba")),
]


def classify_error(message: str) -> Optional[str]:
    """Map an error message onto a troubleshooting guide key."""
    lowered = message.lower()
    for key, keywords in _GUIDE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return key
    return None


def troubleshooting_hints(error: BaseException) -> tuple[str, List[str]]:
    key = classify_error(str(error))
    if key is None:
        return (
            "Troubleshooting Steps",
            [
                "Check the error message above",
                "Verify all hosts are accessible via SSH",
                "Check PostgreSQL logs on affected hosts",
                "Run with --verbose for more detailed output",
            ],
        )
    return ERROR_GUIDES[key]
