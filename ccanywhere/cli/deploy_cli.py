"""
Deploy CLI Subcommands

Out-of-band deployment status queries.
"""

import asyncio
import json as json_lib
from typing import Optional

import typer
from rich.console import Console

from ccanywhere.cli import wiring
from ccanywhere.errors import ConfigurationError
from ccanywhere.types import DeploymentStatus

deploy_app = typer.Typer(
    name="deploy",
    help="Query deployments",
    no_args_is_help=True,
)

console = Console()

STATUS_STYLES = {
    DeploymentStatus.SUCCESS: "green",
    DeploymentStatus.FAILED: "red",
    DeploymentStatus.CANCELLED: "yellow",
    DeploymentStatus.RUNNING: "blue",
    DeploymentStatus.PENDING: "dim",
}


@deploy_app.command("status")
def deploy_status(
    deployment_id: str = typer.Argument(..., help="Deployment ID to query"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
    json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the status of a deployment."""
    try:
        config = wiring.get_config(config_path)
        trigger = wiring.get_deployment_trigger(config)
        record = asyncio.run(trigger.get_status(deployment_id))
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    if json:
        print(json_lib.dumps(record.to_dict(), indent=2))
    else:
        style = STATUS_STYLES.get(record.status, "white")
        console.print(f"Deployment {deployment_id}: [{style}]{record.status.value}[/{style}]")
        if record.url:
            console.print(f"  URL: {record.url}")
        if record.error:
            console.print(f"  Error: {record.error}")

    if record.status == DeploymentStatus.FAILED:
        raise typer.Exit(1)
