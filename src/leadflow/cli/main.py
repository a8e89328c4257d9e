"""Main CLI entry point for the leadflow command."""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..core.config import LeadflowConfig, load_config, validate_whatsapp_env
from ..core.services import build_services
from ..messaging.client import WhatsAppClient
from ..messaging.errors import GatewayConfigError, GatewayError
from ..storage.database import LeadDatabase
from ..storage.models import Lead
from ..workflows.errors import EngineError
from ..workflows.models import WorkflowDefinition

console = Console()

STATUS_COLORS = {
    "completed": "green",
    "failed": "red",
    "running": "yellow",
    "pending": "dim",
    "cancelled": "dim red",
}


def get_config(config_path: Optional[str], db_path: Optional[str] = None) -> LeadflowConfig:
    """Load configuration, applying a database override."""
    config = load_config(Path(config_path) if config_path else None)
    if db_path:
        config.db_path = db_path
    return config


def read_definitions(path: str) -> list:
    with open(path, 'r') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("workflows", [data])
    return data


@click.group()
@click.version_option(version="0.1.0", prog_name="leadflow")
def cli():
    """Leadflow - workflow automation for lead outreach.

    \b
    Quick Start:
      leadflow workflows validate flows.json            # Check definitions
      leadflow leads add --name "Jo Smith" --phone 5551234567
      leadflow run flows.json --lead 1                  # Run a workflow once
      leadflow serve --workflows flows.json             # API + WhatsApp webhook
    """
    pass


# ============================================================================
# SERVER
# ============================================================================

@cli.command()
@click.option("--host", default="0.0.0.0", help="Host to bind to")
@click.option("--port", default=5000, type=int, help="Port to listen on")
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.option("--workflows", "workflows_path", type=click.Path(exists=True), help="Workflow definitions to load")
@click.option("--config", "config_path", help="Custom config path")
@click.option("--db", "db_path", help="Custom database path")
def serve(host: str, port: int, debug: bool, workflows_path: Optional[str],
          config_path: Optional[str], db_path: Optional[str]):
    """Run the REST API and WhatsApp webhook server."""
    from ..api.app import run_api_server

    logging.basicConfig(level=logging.INFO)

    services = build_services(get_config(config_path, db_path))
    if workflows_path:
        loaded = services.engine.load_workflows(workflows_path)
        console.print(f"[green]Loaded {len(loaded)} workflow(s)[/green]")

    console.print(Panel.fit(
        f"API:      http://{host}:{port}/api/health\n"
        f"Webhook:  http://{host}:{port}/webhook/whatsapp\n"
        f"Channels: {', '.join(services.providers.channels())}",
        title="Leadflow"
    ))
    run_api_server(host, port, debug, services=services)


# ============================================================================
# WORKFLOWS
# ============================================================================

@cli.group()
def workflows():
    """Inspect workflow definition files."""
    pass


@workflows.command("validate")
@click.argument("path", type=click.Path(exists=True))
def validate_workflows(path: str):
    """Parse every definition in a JSON file and report problems."""
    try:
        items = read_definitions(path)
    except ValueError as e:
        console.print(f"[red]Invalid JSON:[/red] {e}")
        sys.exit(1)

    table = Table(title=f"Workflows in {Path(path).name}")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Trigger")
    table.add_column("Actions", justify="right")
    table.add_column("Result")

    failures = 0
    for index, item in enumerate(items):
        try:
            definition = WorkflowDefinition.from_dict(item)
        except EngineError as e:
            failures += 1
            item_id = item.get("id", f"#{index + 1}") if isinstance(item, dict) else f"#{index + 1}"
            table.add_row(str(item_id), "", "", "", "", f"[red]{e.message}[/red]")
            continue

        table.add_row(
            definition.id,
            definition.name[:30],
            definition.status.value,
            definition.trigger.type.value,
            str(len(definition.actions)),
            "[green]ok[/green]"
        )

    console.print(table)
    if failures:
        console.print(f"[red]{failures} invalid definition(s)[/red]")
        sys.exit(1)
    console.print(f"[green]✓ {len(items)} definition(s) valid[/green]")


@cli.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--lead", "lead_id", required=True, help="Lead to run the workflow for")
@click.option("--workflow", "workflow_id", help="Workflow ID (required when the file has several)")
@click.option("--data", "trigger_data", default="{}", help="Trigger payload as JSON")
@click.option("--timeout", default=60.0, type=float, help="Seconds to wait for completion")
@click.option("--config", "config_path", help="Custom config path")
@click.option("--db", "db_path", help="Custom database path")
def run(path: str, lead_id: str, workflow_id: Optional[str], trigger_data: str, timeout: float,
        config_path: Optional[str], db_path: Optional[str]):
    """Register the workflows in PATH, run one for a lead and wait for it."""
    services = build_services(get_config(config_path, db_path))
    engine = services.engine

    try:
        loaded = engine.load_workflows(path)
        payload = json.loads(trigger_data)
    except (EngineError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if workflow_id is None:
        if len(loaded) != 1:
            console.print("[red]--workflow is required when the file defines several workflows[/red]")
            sys.exit(1)
        workflow_id = loaded[0].id

    try:
        execution = engine.trigger_workflow(workflow_id, lead_id, payload)
    except EngineError as e:
        console.print(f"[red]{e.code.value}:[/red] {e.message}")
        sys.exit(1)

    execution = engine.wait_for_execution(execution.id, timeout)

    color = STATUS_COLORS.get(execution.status.value, "")
    table = Table(title=f"Execution {execution.id}")
    table.add_column("Action", style="cyan")
    table.add_column("Output")

    for action_id, output in execution.context.get("outputs", {}).items():
        table.add_row(action_id, json.dumps(output, default=str)[:80])

    console.print(table)
    console.print(
        f"Status: [{color}]{execution.status.value}[/{color}]  "
        f"Step {execution.current_step}/{execution.total_steps}"
    )
    if execution.error:
        console.print(f"[red]Error:[/red] {execution.error}")
        sys.exit(1)


# ============================================================================
# LEADS
# ============================================================================

@cli.group()
def leads():
    """Manage leads in the local database."""
    pass


@leads.command("add")
@click.option("--name", help="Full name")
@click.option("--email", help="Email address")
@click.option("--phone", help="Phone number")
@click.option("--source", default="manual", help="Lead source")
@click.option("--db", "db_path", help="Custom database path")
def add_lead(name: Optional[str], email: Optional[str], phone: Optional[str], source: str, db_path: Optional[str]):
    """Add a lead."""
    if not any([name, email, phone]):
        console.print("[red]Provide at least one of --name, --email, --phone[/red]")
        sys.exit(1)

    config = get_config(None, db_path)
    db = LeadDatabase(Path(config.db_path) if config.db_path else None)
    lead = db.create_lead(Lead(source=source, name=name, email=email, phone=phone))
    console.print(f"[green]✓ Lead #{lead.id} created: {lead.display_name}[/green]")


# ============================================================================
# WHATSAPP
# ============================================================================

@cli.group()
def whatsapp():
    """WhatsApp gateway diagnostics."""
    pass


@whatsapp.command("check")
@click.option("--ping", is_flag=True, help="Call the gateway to confirm the credentials work")
@click.option("--test-to", help="Send a test message to this number")
@click.option("--config", "config_path", help="Custom config path")
def whatsapp_check(ping: bool, test_to: Optional[str], config_path: Optional[str]):
    """Validate WhatsApp environment variables and, optionally, connectivity."""
    result = validate_whatsapp_env()

    if result["valid"]:
        console.print("[green]✓ All WhatsApp environment variables are set[/green]")
    else:
        table = Table(title="Missing WhatsApp configuration")
        table.add_column("Variable", style="red")
        for name in result["missing"]:
            table.add_row(name)
        console.print(table)

    if not (ping or test_to):
        if not result["valid"]:
            sys.exit(1)
        return

    config = get_config(config_path)
    try:
        client = WhatsAppClient(config.whatsapp, config.gateway)
    except GatewayConfigError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    try:
        if ping:
            info = client.get_phone_number_info()
            console.print(Panel.fit(
                f"Number: {info.get('display_phone_number', '-')}\n"
                f"Name: {info.get('verified_name', '-')}\n"
                f"Quality: {info.get('quality_rating', '-')}",
                title="WhatsApp connection OK"
            ))
        if test_to:
            response = client.send_text_message(test_to, "Leadflow test message")
            message = (response.get("messages") or [{}])[0]
            console.print(f"[green]✓ Test message sent: {message.get('id', '-')}[/green]")
    except GatewayError as e:
        console.print(f"[red]WhatsApp API error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
