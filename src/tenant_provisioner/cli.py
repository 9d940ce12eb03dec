"""Command line entry point.

Usage:
    tenant-provisioner add app3                  # auto-detect port and Redis DB
    tenant-provisioner add admin 8085 5          # explicit port and Redis DB
    tenant-provisioner add app3 --dry-run        # show what would be written
    tenant-provisioner add app3 --sequential     # write documents one at a time (no staging)
    tenant-provisioner list                      # show provisioned tenants
"""

import argparse
from collections.abc import Sequence
import logging
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tenant_provisioner.config import Settings
from tenant_provisioner.domain.model import ProvisioningReport
from tenant_provisioner.exceptions import ProvisioningError
from tenant_provisioner.observability import configure_logging, init_tracing
from tenant_provisioner.registry import RegistryReader
from tenant_provisioner.service_layer.workflow import ProvisioningWorkflow


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenant-provisioner",
        description="Add Laravel applications to the multi-app Docker setup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--root", type=Path, help="Project root holding docker-compose.yml (default: cwd)")
    parser.add_argument("--log-level", help="Logging level (default: info)")
    parser.add_argument("--json-logs", action="store_true", default=None, help="Emit JSON log lines on stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Provision a new tenant application")
    add.add_argument("name", help="Tenant name: lowercase alphanumeric, '_' and '-' allowed")
    add.add_argument("port", nargs="?", type=int, help="Host port (default: next free port)")
    add.add_argument("redis_db", nargs="?", type=int, help="Redis database index (default: next free index)")
    add.add_argument("--dry-run", action="store_true", help="Validate and allocate without writing anything")
    add.add_argument(
        "--sequential",
        action="store_true",
        help="Write each document in place as soon as it is ready instead of staging all writes",
    )
    add.set_defaults(func=_cmd_add)

    list_cmd = sub.add_parser("list", help="List tenants found in the configuration documents")
    list_cmd.set_defaults(func=_cmd_list)
    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {}
    if args.root is not None:
        overrides["project_root"] = args.root
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.json_logs:
        overrides["json_logs"] = True
    if getattr(args, "sequential", False):
        overrides["transactional"] = False
    return Settings(**overrides)


def _print_configuration(console: Console, report: ProvisioningReport, apps_path: Path) -> None:
    tenant = report.tenant
    if tenant is None:
        return
    table = Table(title=f"Tenant {tenant.name}", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Port", str(tenant.port))
    table.add_row("Redis DB", str(tenant.cache_namespace))
    table.add_row("Database", tenant.database_name)
    table.add_row("Queue", tenant.queue_name)
    table.add_row("Cache prefix", tenant.cache_prefix)
    table.add_row("Directory", f"{apps_path / tenant.name}/")
    console.print(table)


def _print_success(console: Console, report: ProvisioningReport, apps_path: Path) -> None:
    _print_configuration(console, report, apps_path)
    if report.dry_run:
        console.print("\n[yellow]Dry run[/yellow]: no files were written.")
        for label, text in report.rendered.items():
            console.print(f"\n[bold]{label}[/bold]")
            console.print(text, markup=False, highlight=False)
        return

    console.print(f"\n[bold green]Added new application: {report.name}[/bold green]")
    for backup in report.backups:
        console.print(f"   • Backup: {backup}")
    console.print("\n[bold]Next steps[/bold]")
    for number, step in enumerate(report.next_steps, start=1):
        console.print(f"  {number}. {step}", markup=False, highlight=False)


def _print_failure(console: Console, report: ProvisioningReport) -> None:
    error = report.error
    failed_at = report.failed_at.value if report.failed_at else "start"
    code = getattr(error, "code", "error")
    console.print(f"[bold red][ERROR][/bold red] {escape(str(error))}  [dim]({code} after {failed_at})[/dim]")

    if report.modified_documents or report.created_paths:
        console.print("\n[yellow]Partial provisioning - these files were already written:[/yellow]")
        for path in report.modified_documents + report.created_paths:
            console.print(f"   • {path}")
    elif report.failed_at is not None and report.failed_at.value not in ("start", "validated"):
        console.print("\nNo configuration document was modified.")

    if report.backups:
        console.print("\nBackups available for manual recovery:")
        for backup in report.backups:
            console.print(f"   • {backup}")


def _cmd_add(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    report = ProvisioningWorkflow(settings).run(args.name, args.port, args.redis_db, dry_run=args.dry_run)
    if report.succeeded:
        _print_success(console, report, settings.apps_path)
        return 0
    _print_failure(console, report)
    return 1


def _cmd_list(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    try:
        index = RegistryReader(settings).load()
    except ProvisioningError as exc:
        console.print(f"[bold red][ERROR][/bold red] {escape(str(exc))}")
        return 1

    table = Table(title="Tenants")
    table.add_column("Name", style="cyan")
    table.add_column("Port")
    table.add_column("Redis DB")
    table.add_column("Database")
    table.add_column("Worker")
    table.add_column("Route")
    table.add_column("Directory")
    for entry in index.entries.values():
        table.add_row(
            entry.name,
            str(entry.port) if entry.port is not None else "-",
            str(entry.cache_namespace) if entry.cache_namespace is not None else "-",
            entry.database_name or "-",
            "yes" if entry.has_worker else "no",
            "yes" if entry.has_route else "no",
            "yes" if entry.name in index.directories else "no",
        )
    console.print(table)
    return 0


def main(argv: Sequence[str] | None = None, *, console: Console | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    console = console or Console()

    try:
        settings = _settings_from_args(args)
    except ValidationError as exc:
        console.print(f"[bold red][ERROR][/bold red] Invalid configuration:\n{exc}")
        return 1

    configure_logging(settings.log_level, settings.json_logs)
    init_tracing()
    return args.func(args, settings, console)
