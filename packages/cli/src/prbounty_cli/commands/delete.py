"""delete command — stop tracking a PR."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("delete")
@click.argument("key")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def delete_cmd(ctx, key: str, yes: bool):
    """Remove KEY (owner/repo#number) from the store, including its credit history."""
    from prbounty_cli.cli import require_persistent_store

    store = require_persistent_store(ctx)
    record = store.get(key)
    if record is None:
        raise click.ClickException(f"PR {key} not found.")
    if not yes:
        click.confirm(f"Delete {key} (status: {record.status})?", abort=True)
    store.delete(key)
    console.print(f"Deleted {key}.")
