"""mappings commands — GitHub handle → payment account overrides."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.group("mappings")
def mappings_cmd():
    """Manage which payment account each GitHub handle is paid into."""


@mappings_cmd.command("add")
@click.argument("handle")
@click.argument("account_id")
@click.pass_context
def add_mapping(ctx, handle: str, account_id: str):
    from prbounty_cli.cli import require_persistent_store

    prefix = ctx.obj["config"].get("payment_account_prefix", "cus_")
    if not account_id.startswith(prefix):
        raise click.BadParameter(f"must start with '{prefix}'", param_hint="ACCOUNT_ID")

    require_persistent_store(ctx).set_mapping(handle, account_id)
    console.print(f"[green]Mapped {handle} → {account_id}[/green]")


@mappings_cmd.command("list")
@click.pass_context
def list_mappings(ctx):
    from prbounty_cli.cli import require_persistent_store

    mappings = require_persistent_store(ctx).list_mappings()
    if not mappings:
        console.print("[yellow]No mappings configured.[/yellow]")
        return

    table = Table(title="Account mappings", show_header=True, header_style="bold cyan")
    table.add_column("GitHub handle", style="bold")
    table.add_column("Payment account")
    for m in mappings:
        table.add_row(m.handle, m.payment_account_id)
    console.print(table)


@mappings_cmd.command("remove")
@click.argument("handle")
@click.pass_context
def remove_mapping(ctx, handle: str):
    from prbounty_cli.cli import require_persistent_store

    store = require_persistent_store(ctx)
    if store.get_mapping(handle) is None:
        raise click.ClickException(f"No mapping for {handle}.")
    store.delete_mapping(handle)
    console.print(f"Removed mapping for {handle}.")
