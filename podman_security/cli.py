"""
Command Line Interface for the Podman Security Baseline tool.

Provides the apply, verify, backup and rollback commands against a WSL
distribution running Podman.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .core.config import build_run_configuration
from .core.errors import PodmanSecurityError, PreconditionError
from .core.models import (
    ApplyResult, RollbackResult, RollbackScope, RunConfiguration, StepStatus, VerificationReport
)
from .core.orchestrator import PodmanSecurityTool
from .version_info import __version__


console = Console()

LOG_FILE = "podman-security.log"

STATUS_STYLES = {
    StepStatus.SUCCESS: "[green]success[/green]",
    StepStatus.FAILED: "[red]failed[/red]",
    StepStatus.WARNING: "[yellow]warning[/yellow]",
    StepStatus.SKIPPED: "[dim]skipped[/dim]",
    StepStatus.PLANNED: "[cyan]planned[/cyan]",
}


def setup_logging(verbose: bool, log_dir: Optional[Path] = None) -> None:
    """Console logging through rich, plus a log file under the backup root."""
    root = logging.getLogger("podman_security")
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console_handler = RichHandler(console=console, show_path=False, markup=False)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.addHandler(console_handler)

    if log_dir is not None:
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(Path(log_dir) / LOG_FILE, encoding="utf-8")
        except OSError as e:
            console.print(f"[yellow]Warning: cannot write log file in {log_dir}: {e}[/yellow]")
            return
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        root.addHandler(file_handler)


def target_options(func):
    """Options shared by every command that talks to a target."""
    options = [
        click.option('--distro', '-d', help="Target WSL distribution name"),
        click.option('--mirror-url', help="Internal package mirror URL"),
        click.option('--registry', help="Internal container registry (host[:port])"),
        click.option('--dns-server', help="Internal DNS server address"),
        click.option('--proxy-url', help="Internal HTTP(S) proxy URL"),
        click.option('--backup-root', type=click.Path(file_okay=False, path_type=Path),
                     help="Directory holding backup bundles"),
        click.option('--templates-dir', type=click.Path(file_okay=False, path_type=Path),
                     help="Directory overriding the bundled templates"),
        click.option('--include-host-artifacts', is_flag=True,
                     help="Also back up host artifacts (.wslconfig, firewall export)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_tool(ctx, **overrides) -> PodmanSecurityTool:
    """Validate the configuration once and wire the tool."""
    # An unset flag must not override a value from the configuration file
    overrides = {k: (None if v is False else v) for k, v in overrides.items()}
    try:
        config = build_run_configuration(ctx.obj.get('config'), **overrides)
        factory = ctx.obj.get('tool_factory', PodmanSecurityTool)
        return factory(config)
    except PodmanSecurityError as e:
        _print_error(e)
        sys.exit(1)


def _print_error(error: Exception) -> None:
    if isinstance(error, PreconditionError):
        console.print("[red]Precondition check failed:[/red]")
        for failure in error.failures:
            console.print(f"  [red]✗[/red] {failure}")
    else:
        console.print(f"[red]Error: {error}[/red]")


@click.group()
@click.version_option(version=__version__)
@click.option('--config', '-c', type=click.Path(dir_okay=False), help="Path to configuration file")
@click.option('--verbose', '-v', is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """
    Podman Security Baseline

    Applies, verifies, backs up and rolls back a hardened Podman
    configuration inside a WSL distribution.
    """
    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)


@cli.command()
@target_options
@click.option('--dry-run', '-n', is_flag=True, help="Show what would be done without applying")
@click.option('--skip-precondition-check', is_flag=True,
              help="Downgrade precondition failures to warnings")
@click.option('--force', is_flag=True, help="Skip safety confirmations")
@click.option('--output', '-o', type=click.Path(dir_okay=False), help="Write a report file")
@click.option('--format', 'report_format', type=click.Choice(['json', 'html']), default='json',
              help="Report format for --output")
@click.pass_context
def apply(ctx, force: bool, output: Optional[str], report_format: str, **options):
    """
    Apply the hardened baseline.

    Backs up the current configuration first, then configures the host
    firewall and the target environment and verifies the result.
    """
    tool = build_tool(ctx, **options)
    config: RunConfiguration = tool.config

    if not config.dry_run:
        setup_logging(ctx.obj['verbose'], config.backup_root)

    console.print(Panel(
        f"[bold]Applying Podman Security Baseline[/bold]\n"
        f"Distribution: {config.distro}\n"
        f"Mode: {'Dry Run' if config.dry_run else 'Live Application'}\n"
        f"Backup root: {config.backup_root}",
        title="Baseline Application"
    ))

    if not force and not config.dry_run:
        console.print(
            "[yellow]Warning: This will change the host firewall and the configuration "
            f"of {config.distro}![/yellow]\n"
            "A backup bundle is created first; rollback is a separate command.\n"
        )
        if not click.confirm("Do you want to continue?"):
            console.print("Operation cancelled.")
            return

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console
        ) as progress:
            progress.add_task("Applying baseline...", total=None)
            result = tool.apply()
    except PodmanSecurityError as e:
        _print_error(e)
        sys.exit(1)

    _display_apply_results(result)

    if output:
        report_path = tool.generate_report(result, format=report_format, output_path=output)
        console.print(f"\n[green]Report saved to: {report_path}[/green]")

    sys.exit(result.exit_code)


@cli.command()
@target_options
@click.option('--output', '-o', type=click.Path(dir_okay=False), help="Write a report file")
@click.option('--format', 'report_format', type=click.Choice(['json', 'html']), default='json',
              help="Report format for --output")
@click.pass_context
def verify(ctx, output: Optional[str], report_format: str, **options):
    """
    Verify the baseline against live state.

    Read-only. The exit status is the number of failed checks.
    """
    tool = build_tool(ctx, **options)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console
        ) as progress:
            progress.add_task("Running checks...", total=None)
            report = tool.verify()
    except PodmanSecurityError as e:
        _print_error(e)
        sys.exit(1)

    _display_verification(report)

    if output:
        report_path = tool.generate_report(report, format=report_format, output_path=output)
        console.print(f"\n[green]Report saved to: {report_path}[/green]")

    sys.exit(report.failed)


@cli.command()
@target_options
@click.pass_context
def backup(ctx, **options):
    """Create a backup bundle without changing anything."""
    tool = build_tool(ctx, **options)
    setup_logging(ctx.obj['verbose'], tool.config.backup_root)

    try:
        bundle = tool.backup()
    except PodmanSecurityError as e:
        _print_error(e)
        sys.exit(1)

    table = Table(title=f"Backup bundle {bundle.bundle_id}")
    table.add_column("Artifact", style="cyan")
    table.add_column("Status")
    table.add_column("Path")
    for capture in bundle.metadata.artifacts.values():
        table.add_row(capture.name, capture.status.value, capture.path)
    console.print(table)
    console.print(f"\n[green]Bundle written to: {bundle.path}[/green]")


@cli.command()
@target_options
@click.option('--bundle', '-b', 'bundle_path', type=click.Path(file_okay=False, path_type=Path),
              help="Bundle directory to restore")
@click.option('--latest', is_flag=True, help="Restore the most recent bundle")
@click.option('--list-bundles', is_flag=True, help="List available bundles")
@click.option('--scope', type=click.Choice([s.value for s in RollbackScope]), default=RollbackScope.ALL.value,
              help="Which side to restore")
@click.option('--force', is_flag=True, help="Skip confirmation prompts")
@click.pass_context
def rollback(ctx, bundle_path: Optional[Path], latest: bool, list_bundles: bool, scope: str,
             force: bool, **options):
    """
    Restore the configuration captured in a backup bundle.
    """
    tool = build_tool(ctx, **options)

    if list_bundles:
        _list_bundles(tool)
        return

    try:
        if latest:
            bundle_path = tool.get_latest_bundle().path
    except PodmanSecurityError as e:
        _print_error(e)
        sys.exit(1)

    if not bundle_path:
        console.print("[red]Error: --bundle or --latest required (use --list-bundles to see available options)[/red]")
        sys.exit(1)

    setup_logging(ctx.obj['verbose'], tool.config.backup_root)

    if not force:
        console.print(f"[yellow]Warning: This will restore {scope} configuration from {bundle_path}[/yellow]")
        if not click.confirm("Do you want to continue?"):
            console.print("Rollback cancelled.")
            return

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console
        ) as progress:
            progress.add_task(f"Rolling back from {bundle_path}...", total=None)
            result = tool.rollback(bundle_path, RollbackScope(scope))
    except PodmanSecurityError as e:
        _print_error(e)
        sys.exit(1)

    _display_rollback_results(result)
    sys.exit(result.exit_code)


def _display_steps(title: str, steps) -> None:
    table = Table(title=title)
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Details")
    for step in steps:
        table.add_row(step.title, STATUS_STYLES.get(step.status, step.status.value), step.message or "")
    console.print(table)


def _display_apply_results(result: ApplyResult) -> None:
    _display_steps("Dry Run Plan" if result.dry_run else "Apply Results", result.steps)

    if result.verification:
        _display_verification(result.verification)
    if result.bundle_path:
        console.print(f"\nBackup bundle: {result.bundle_path}")

    if result.dry_run:
        console.print("\n[cyan]Dry run complete; nothing was changed.[/cyan]")
    elif result.exit_code == 0:
        console.print("\n[green]Baseline applied and verified.[/green]")
    else:
        console.print(f"\n[red]{len(result.failed_steps)} step(s) failed, "
                      f"{result.verification.failed if result.verification else 0} check(s) failed.[/red]")
        if result.bundle_path:
            console.print(f"Roll back with: podman-security rollback --bundle {result.bundle_path}")


def _display_verification(report: VerificationReport) -> None:
    table = Table(title=f"Verification - {report.distro}")
    table.add_column("Check", style="cyan")
    table.add_column("Result")
    table.add_column("Details")
    for check in report.results:
        status = "[green]PASS[/green]" if check.passed else "[red]FAIL[/red]"
        table.add_row(check.title, status, check.detail or "")
    console.print(table)

    color = "green" if report.compliant else "red"
    console.print(f"[{color}]{report.passed} passed, {report.failed} failed[/{color}]")


def _display_rollback_results(result: RollbackResult) -> None:
    if result.metadata_missing:
        console.print(f"[yellow]Bundle metadata missing; assumed distribution {result.distro}[/yellow]")
    _display_steps(f"Rollback ({result.scope.value}) from {result.bundle_path.name}", result.steps)
    if result.success:
        console.print("\n[green]Rollback complete.[/green]")
    else:
        console.print(f"\n[red]{len(result.failed_steps)} rollback step(s) failed.[/red]")


def _list_bundles(tool: PodmanSecurityTool) -> None:
    bundles = tool.get_bundles()
    if not bundles:
        console.print(f"No backup bundles found under {tool.config.backup_root}")
        return

    table = Table(title="Backup Bundles")
    table.add_column("Bundle", style="cyan")
    table.add_column("Created")
    table.add_column("Distribution")
    table.add_column("Host artifacts")
    table.add_column("Created by")
    for bundle in bundles:
        if bundle.metadata is None:
            table.add_row(bundle.bundle_id, "[yellow]incomplete[/yellow]", "", "", "")
            continue
        metadata = bundle.metadata
        table.add_row(
            bundle.bundle_id,
            metadata.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            metadata.distro,
            "yes" if metadata.includes_host_artifacts else "no",
            metadata.created_by,
        )
    console.print(table)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == '__main__':
    main()
