"""
CCanywhere CLI — Main Entry Point

Usage:
    ccanywhere run --base origin/main
    ccanywhere run --dry-run --json
    ccanywhere lock status
    ccanywhere notify test
    ccanywhere deploy status <deployment-id>
    ccanywhere cleanup --days 7
"""

import asyncio
import json as json_lib
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from ccanywhere import __version__
from ccanywhere.cli import wiring
from ccanywhere.cli.deploy_cli import deploy_app
from ccanywhere.cli.lock_cli import lock_app
from ccanywhere.cli.notify_cli import notify_app
from ccanywhere.core.cleanup import remove_old_entries
from ccanywhere.core.pipeline import ARTIFACTS_DIR_NAME
from ccanywhere.errors import ConfigurationError
from ccanywhere.types import BuildResult
from ccanywhere.utils.logging_setup import setup_logging

# Create main app
app = typer.Typer(
    name="ccanywhere",
    help="Build, diff, deploy, test and notify for a shared working directory",
    no_args_is_help=True,
)

# Register subcommands
app.add_typer(lock_app, name="lock", help="Inspect and manage the build lock")
app.add_typer(notify_app, name="notify", help="Send and test notifications")
app.add_typer(deploy_app, name="deploy", help="Query deployments")

# Console for output
console = Console()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """CCanywhere: build orchestration for a shared working directory."""
    setup_logging(logging.DEBUG if verbose else logging.INFO)


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold]CCanywhere[/bold] v{__version__}")


# =============================================================================
# Run Command
# =============================================================================

def _print_result(result: BuildResult) -> None:
    if result.success:
        lines = [
            f"[bold]Revision:[/bold] {result.revision} ({result.branch})",
            f"[bold]Duration:[/bold] {result.duration / 1000:.1f}s",
        ]
        for artifact in result.artifacts:
            lines.append(f"[bold]{artifact.type.title()}:[/bold] {artifact.url}")
        if result.deployment_url:
            lines.append(f"[bold]Deployment:[/bold] {result.deployment_url}")
        if result.test_results:
            t = result.test_results
            lines.append(f"[bold]Tests:[/bold] {t.status} ({t.passed} passed, {t.failed} failed)")
        if result.message:
            lines.append(f"[dim]{result.message}[/dim]")
        console.print(Panel("\n".join(lines), title="✅ Build Success", border_style="green"))
    else:
        lines = [
            f"[bold]Revision:[/bold] {result.revision} ({result.branch})",
            f"[bold]Failed Step:[/bold] {result.failed_step or 'unknown'}",
            f"[bold]Error:[/bold] {result.error}",
        ]
        console.print(Panel("\n".join(lines), title="❌ Build Failed", border_style="red"))


@app.command()
def run(
    base: Optional[str] = typer.Option(None, "--base", "-b", help="Base ref (default: build.base)"),
    head: Optional[str] = typer.Option(None, "--head", help="Head ref (default: HEAD)"),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Skip lock, fetch, deployment and notifications",
    ),
    json: bool = typer.Option(False, "--json", help="Output BuildResult as JSON"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
    work_dir: Path = typer.Option(Path("."), "--work-dir", help="Repository working directory"),
):
    """Run the build pipeline. Exits 1 when the build fails."""
    try:
        config = wiring.get_config(config_path)
        pipeline = wiring.get_pipeline(config, work_dir=work_dir, dry_run=dry_run)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    result = asyncio.run(pipeline.run(base=base, head=head))

    if json:
        print(json_lib.dumps(result.model_dump(), indent=2, default=str))
    else:
        _print_result(result)

    if not result.success:
        raise typer.Exit(1)


# =============================================================================
# Cleanup Command
# =============================================================================

@app.command()
def cleanup(
    days: Optional[int] = typer.Option(
        None,
        "--days", "-d",
        min=0,
        help="Keep entries newer than this many days (default: build.cleanupDays)",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
    work_dir: Path = typer.Option(Path("."), "--work-dir", help="Repository working directory"),
):
    """Delete old artifacts and logs."""
    try:
        config = wiring.get_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    keep_days = days if days is not None else config.build.cleanup_days
    root = work_dir.resolve()
    targets = [root / ARTIFACTS_DIR_NAME, root.parent / "logs"]

    console.print(f"[blue]🧹 Removing entries older than {keep_days} days[/blue]")
    if not force:
        typer.confirm("Continue with cleanup?", abort=True)

    total = 0
    for directory in targets:
        if not directory.is_dir():
            console.print(f"[dim]Not found: {directory}[/dim]")
            continue
        removed = remove_old_entries(directory, keep_days)
        total += len(removed)
        console.print(f"  {directory}: removed {len(removed)}")

    console.print(f"[green]✓ Cleanup completed ({total} removed)[/green]")


if __name__ == "__main__":
    app()
