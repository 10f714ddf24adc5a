#!/usr/bin/env python3
"""
Credential Control CLI - Command Line Interface for the Credential Engine.

Provides commands for registering identities, managing credential types and
grants, driving onboarding/offboarding, and viewing audit logs and statistics.
"""

import logging
import os
import sys
from functools import wraps
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import CONFIG_ENV_VAR, EngineConfig, load_config
from ..errors import EngineError
from ..models import IdentityStatus, OperationResult, Role
from ..services import EngineServices

logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

STATUS_STYLES = {
    IdentityStatus.PENDING: "yellow",
    IdentityStatus.ONBOARDED: "green",
    IdentityStatus.OFFBOARDING_IN_PROGRESS: "magenta",
    IdentityStatus.OFFBOARDED: "red",
}


class CredentialController:
    """Main controller for CLI operations."""

    def __init__(self, config_path: Optional[str] = None):
        """Load configuration and build the engine services."""
        self.config: EngineConfig = load_config(config_path)
        # Commands are short-lived; the outbox is drained inline before exit.
        self.config.dispatch.background = False
        logging.getLogger().setLevel(getattr(logging, self.config.log_level.upper(), logging.INFO))

        self.services = EngineServices(self.config)
        self.engine = self.services.engine
        self.store = self.services.store

    def close(self):
        self.services.flush()


def engine_command(func):
    """Run a command with the controller, rendering engine errors and draining the outbox."""

    @click.pass_context
    @wraps(func)
    def wrapper(ctx, *args, **kwargs):
        controller = CredentialController(ctx.obj.get('config'))
        try:
            return func(controller, *args, **kwargs)
        except EngineError as e:
            console.print(f"[red]✗ {e.message}[/red]")
            sys.exit(1)
        finally:
            controller.close()

    return wrapper


def show_result(result: OperationResult, message: str):
    style = STATUS_STYLES.get(result.status, "white")
    console.print(f"[green]✓ {message}[/green]")
    console.print(f"Status: [{style}]{result.status.value}[/{style}]")
    if result.transition and result.transition.changed:
        console.print(
            f"Transition: {result.transition.previous_status.value} → {result.transition.new_status.value} "
            f"({result.transition.kind.value})"
        )


@click.group()
@click.option('--config', '-c', help='Path to configuration file (YAML or JSON)')
@click.pass_context
def cli(ctx, config):
    """Credential Engine Control CLI - credential grants and identity lifecycle"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--email', prompt='Email Address')
@click.option('--name', prompt='Full Name')
@click.option('--role', type=click.Choice([r.value for r in Role]), default=Role.MEMBER.value)
@engine_command
def register(controller, email, name, role):
    """Register a new identity."""
    identity = controller.engine.register_identity(email, name, Role(role))
    console.print(f"[green]✓ Registered {identity.email}[/green] (id: {identity.id})")


@cli.command('add-credential')
@click.argument('name')
@click.option('--description', default=None, help='Credential description')
@engine_command
def add_credential(controller, name, description):
    """Create a credential type."""
    credential_type = controller.engine.create_credential_type(name, description)
    console.print(f'[green]✓ Credential "{credential_type.name}" created[/green] (id: {credential_type.id})')


@cli.command('list-credentials')
@engine_command
def list_credentials(controller):
    """List credential types."""
    credential_types = controller.store.list_credential_types()
    if not credential_types:
        console.print("[yellow]No credentials found[/yellow]")
        return

    table = Table(title=f"Credentials ({len(credential_types)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Description", style="blue")
    table.add_column("Grants", style="magenta")

    for credential_type in credential_types:
        table.add_row(
            credential_type.id,
            credential_type.name,
            credential_type.description or "",
            str(len(controller.store.list_grants(credential_type_id=credential_type.id))),
        )

    console.print(table)


@cli.command()
@click.argument('identity_id')
@click.argument('credential_type_id')
@engine_command
def assign(controller, identity_id, credential_type_id):
    """Assign a credential type to an identity."""
    result = controller.engine.assign_credential(identity_id, credential_type_id)
    show_result(result, f"Assigned grant {result.grant.id}")


@cli.command()
@click.argument('identity_id')
@click.argument('grant_id')
@engine_command
def confirm(controller, identity_id, grant_id):
    """Confirm a grant on behalf of its holder."""
    result = controller.engine.confirm_grant(grant_id, identity_id)
    show_result(result, f"Confirmed grant {grant_id}")


@cli.command('report-problem')
@click.argument('identity_id')
@click.argument('grant_id')
@click.option('--note', default=None, help='Description of the problem')
@engine_command
def report_problem(controller, identity_id, grant_id, note):
    """Report a problem with a grant on behalf of its holder."""
    result = controller.engine.report_problem(grant_id, identity_id, note=note)
    show_result(result, f"Reported problem on grant {grant_id}")


@cli.command()
@click.argument('grant_id')
@engine_command
def revoke(controller, grant_id):
    """Mark a grant inactive."""
    result = controller.engine.revoke_grant(grant_id)
    show_result(result, f"Revoked grant {grant_id}")


@cli.command('delete-grant')
@click.argument('grant_id')
@engine_command
def delete_grant(controller, grant_id):
    """Delete a grant."""
    result = controller.engine.delete_grant(grant_id)
    show_result(result, f"Deleted grant {grant_id}")


@cli.command()
@click.argument('identity_id')
@engine_command
def onboard(controller, identity_id):
    """Mark an identity as onboarded."""
    result = controller.engine.onboard_identity(identity_id)
    show_result(result, "Identity onboarded")


@cli.command('initiate-offboarding')
@click.argument('identity_id')
@engine_command
def initiate_offboarding(controller, identity_id):
    """Start offboarding an identity."""
    result = controller.engine.initiate_offboarding(identity_id)
    show_result(result, "Offboarding initiated")


@cli.command('complete-offboarding')
@click.argument('identity_id')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@engine_command
def complete_offboarding(controller, identity_id, yes):
    """Revoke all grants of an identity and mark it offboarded."""
    if not yes and not click.confirm(f"Revoke every grant of {identity_id} and mark it offboarded?"):
        console.print("[yellow]Aborted[/yellow]")
        return
    result = controller.engine.complete_offboarding(identity_id)
    show_result(result, "Offboarding completed")


@cli.command('show-identity')
@click.argument('identity_id')
@engine_command
def show_identity(controller, identity_id):
    """Show an identity and its grants."""
    details = controller.engine.get_identity_details(identity_id)
    identity = details.identity
    style = STATUS_STYLES.get(identity.status, "white")

    console.print(Panel.fit(f"[bold blue]{identity.name}[/bold blue]\n{identity.email}"))
    console.print(f"Role: {identity.role.value}")
    console.print(f"Status: [{style}]{identity.status.value}[/{style}]")
    console.print(f"Created: {identity.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
    if identity.onboarded_at:
        console.print(f"Onboarded: {identity.onboarded_at.strftime('%Y-%m-%d %H:%M:%S')}")
    if identity.offboarded_at:
        console.print(f"Offboarded: {identity.offboarded_at.strftime('%Y-%m-%d %H:%M:%S')}")

    if not details.grants:
        console.print("[yellow]No grants found[/yellow]")
        return

    table = Table(title=f"Grants ({len(details.grants)})")
    table.add_column("Grant ID", style="cyan")
    table.add_column("Credential", style="green")
    table.add_column("Status", style="magenta")
    table.add_column("Flags", style="yellow")

    for view in details.grants:
        flags = [name for name in ("confirmed", "problematic", "inactive") if getattr(view.grant, name)]
        table.add_row(
            view.grant.id,
            view.credential_type.name if view.credential_type else view.grant.credential_type_id,
            view.display_status.value,
            ", ".join(flags) or "-",
        )

    console.print(table)


@cli.command('list-identities')
@click.option('--status', type=click.Choice([s.value for s in IdentityStatus]), help='Filter by status')
@click.option('--limit', default=50, help='Maximum number of identities to show')
@engine_command
def list_identities(controller, status, limit):
    """List identities."""
    identities = controller.store.list_identities(IdentityStatus(status) if status else None)[:limit]

    if not identities:
        console.print("[yellow]No identities found[/yellow]")
        return

    table = Table(title=f"Identities ({len(identities)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Email", style="blue")
    table.add_column("Role", style="yellow")
    table.add_column("Status", style="magenta")

    for identity in identities:
        table.add_row(identity.id, identity.name, identity.email, identity.role.value, identity.status.value)

    console.print(table)


@cli.command('audit-log')
@click.option('--actor', help='Filter by actor email')
@click.option('--action', help='Filter by action')
@click.option('--limit', default=50, help='Maximum number of entries')
@engine_command
def audit_log(controller, actor, action, limit):
    """Show recent audit entries."""
    controller.services.flush()
    entries = controller.services.reports.activity_logs(actor_email=actor, action=action, limit=limit)

    if not entries:
        console.print("[yellow]No audit entries found[/yellow]")
        return

    table = Table(title="Audit Log")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Actor", style="blue")
    table.add_column("Action", style="green")
    table.add_column("Category", style="yellow")
    table.add_column("Severity", style="red")

    for entry in entries:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.actor_email or "system",
            entry.action,
            entry.category.value,
            entry.severity.value,
        )

    console.print(table)


@cli.command()
@engine_command
def stats(controller):
    """Show dashboard statistics."""
    data = controller.services.reports.dashboard_stats()

    console.print("[bold blue]Identity Statistics[/bold blue]")
    console.print(f"Total Identities: {data['total']}")
    console.print(f"Pending: {data['pending']}")
    console.print(f"Onboarded: {data['onboarded']}")
    console.print(f"Offboarding In Progress: {data['offboarding']}")
    console.print(f"Offboarded: {data['offboarded']}")
    console.print(f"\n[bold blue]Grant Statistics[/bold blue]")
    console.print(f"Total Grants: {data['total_grants']}")
    console.print(f"Open Issues: {data['issues']}")


@cli.command()
@click.option('--port', default=8000, help='Port to run the API server on')
@click.option('--host', default='127.0.0.1', help='Host to bind the API server to')
@click.pass_context
def serve(ctx, port, host):
    """Start the Credential Engine API server."""
    from ..api.server import start_server

    if ctx.obj.get('config'):
        os.environ[CONFIG_ENV_VAR] = ctx.obj['config']

    console.print(f"[green]Starting Credential Engine API server on {host}:{port}[/green]")
    console.print("[blue]Press Ctrl+C to stop[/blue]")

    try:
        start_server(host=host, port=port, reload=False)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped[/yellow]")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
