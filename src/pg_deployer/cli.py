"""Command-line interface for pg-deployer."""

from __future__ import annotations

import argparse
from typing import Optional

from rich.console import Console

from . import __version__
from .components import COMPONENT_CLASSES
from .config import ClusterConfig, load_cluster_config
from .errors import DeployerError, ValidationFailure, troubleshooting_hints
from .failover import Failover
from .flows import ClusterDeploymentFlow, DeploymentContext, StandbyDeploymentFlow
from .health import HealthChecker
from .installer import ComponentInstaller
from .utils.logging import configure_logging
from .utils.sanitizer import sanitize

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pg-deployer",
        description="Deploy and operate a highly available PostgreSQL cluster over SSH.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to the cluster YAML file (default: config/postgres.yml).",
    )
    parser.add_argument(
        "--environment",
        "-e",
        type=str,
        default=None,
        help="Environment to load (default: $PG_DEPLOYER_ENVIRONMENT or development).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    parser.add_argument(
        "--yes", "-y", action="store_true", help="Answer yes to every confirmation prompt"
    )
    parser.add_argument(
        "--skip-validation", action="store_true", help="Skip the remote pre-flight checks"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Abort and roll back a deployment that runs longer than this",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    setup_parser = subparsers.add_parser("setup", help="Deploy the whole cluster")
    setup_parser.add_argument(
        "--dry-run", action="store_true", help="Validate and print the plan without changing anything"
    )
    setup_parser.add_argument(
        "--only", metavar="COMPONENT", default=None, help="Deploy a single component"
    )

    standby_parser = subparsers.add_parser(
        "setup-standby", help="Clone and register one standby without touching the primary"
    )
    standby_parser.add_argument("host", help="Configured standby host")

    subparsers.add_parser("status", help="Show the cluster status table")
    subparsers.add_parser("health", help="Run health checks (exit 1 when unhealthy)")

    promote_parser = subparsers.add_parser("promote", help="Promote a standby to primary")
    promote_parser.add_argument("host", nargs="?", default=None, help="Standby host")
    promote_parser.add_argument("--node", default=None, metavar="NAME", help="Standby label")

    backup_parser = subparsers.add_parser("backup", help="Run a pgBackRest backup on the primary")
    backup_parser.add_argument(
        "--type",
        dest="backup_type",
        choices=["full", "incremental", "diff"],
        default="full",
        help="Backup type (default: full)",
    )

    restore_parser = subparsers.add_parser("restore", help="Restore the primary from a backup")
    restore_parser.add_argument("backup_id", help="Backup set identifier")

    subparsers.add_parser("list-backups", help="List available backups")

    for command, summary in (
        ("install", "Install one component"),
        ("uninstall", "Uninstall one component"),
        ("restart", "Restart one component"),
    ):
        component_parser = subparsers.add_parser(command, help=summary)
        component_parser.add_argument(
            "component", help=f"One of: {', '.join(COMPONENT_CLASSES)}"
        )

    cache_parser = subparsers.add_parser(
        "cache-secrets", help="Resolve secrets and write them to local files"
    )
    cache_parser.add_argument(
        "--directory", default=".secrets", help="Target directory (default: .secrets)"
    )

    subparsers.add_parser("version", help="Show version")

    return parser


def create_context(args: argparse.Namespace, config: ClusterConfig) -> DeploymentContext:
    return DeploymentContext.create(
        config,
        skip_validation=args.skip_validation,
        assume_yes=args.yes,
        timeout=args.timeout,
    )


def handle_context_command(args: argparse.Namespace, context: DeploymentContext) -> int:
    command = args.command
    config = context.config

    if command == "setup":
        flow = ClusterDeploymentFlow(context, only=args.only)
        flow.execute(dry_run=args.dry_run)
        return 0

    if command == "setup-standby":
        flow = StandbyDeploymentFlow(context, args.host)
        flow.execute()
        return 0

    if command == "status":
        HealthChecker(config, context.executor, console=console).show_status()
        return 0

    if command == "health":
        healthy = HealthChecker(config, context.executor, console=console).run_health_checks()
        return 0 if healthy else 1

    if command == "promote":
        failover = Failover(config, context.executor, context.interaction, assume_yes=args.yes)
        failover.promote(failover.target_for(args.host, args.node))
        return 0

    installer = ComponentInstaller(context)
    if command == "backup":
        output = installer.backup(args.backup_type)
        if output:
            console.print(output)
        return 0
    if command == "restore":
        installer.restore(args.backup_id)
        console.print(f"[green]✓ Restored backup {args.backup_id}[/green]")
        return 0
    if command == "list-backups":
        console.print(installer.list_backups())
        return 0
    if command == "install":
        hosts = installer.install(args.component)
        console.print(f"[green]✓ Installed {args.component} on {', '.join(hosts)}[/green]")
        return 0
    if command == "uninstall":
        hosts = installer.uninstall(args.component)
        console.print(f"[green]✓ Uninstalled {args.component} from {', '.join(hosts)}[/green]")
        return 0
    if command == "restart":
        hosts = installer.restart(args.component)
        console.print(f"[green]✓ Restarted {args.component} on {', '.join(hosts)}[/green]")
        return 0
    if command == "cache-secrets":
        written = installer.cache_secrets(args.directory)
        for name, path in written.items():
            console.print(f"  {name} -> {path}")
        return 0

    raise ValueError(f"Unsupported command: {command}")


def print_error_report(error: BaseException) -> None:
    console.print()
    console.print(f"[bold red]✗ {type(error).__name__}[/bold red]")
    console.print(f"  {sanitize(str(error))}", markup=False)
    if isinstance(error, ValidationFailure):
        for message in error.result.errors:
            console.print(f"  - {sanitize(message)}", markup=False)
    title, hints = troubleshooting_hints(error)
    console.print(f"\n[bold]{title}:[/bold]")
    for hint in hints:
        console.print(f"  • {hint}", markup=False)


def dispatch_command(args: argparse.Namespace) -> int:
    if args.command == "version":
        console.print(f"pg-deployer {__version__}")
        return 0

    configure_logging(args.verbose)
    try:
        config = load_cluster_config(args.config, args.environment)
        with create_context(args, config) as context:
            return handle_context_command(args, context)
    except DeployerError as exc:
        print_error_report(exc)
        return 1


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)
