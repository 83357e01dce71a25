"""credit command — manually pay out a passing PR."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("credit")
@click.argument("key")
@click.option("--cents", type=int, default=None, help="Amount in minor units. Defaults to credit_amount.")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def credit_cmd(ctx, key: str, cents: int | None, yes: bool):
    """Credit the author of KEY (owner/repo#number). The PR must have status 'pass'."""
    from prbounty_cli.cli import require_persistent_store
    from prbounty_core.crediting import format_amount
    from prbounty_core.errors import PRBountyError
    from prbounty_core.gateway import build_gateway

    config = ctx.obj["config"]
    store = require_persistent_store(ctx)
    amount = cents if cents is not None else config.get("credit_amount", 500)
    if not yes:
        click.confirm(f"Credit {format_amount(amount)} for {key}?", abort=True)

    gateway = build_gateway(config, store)
    ctx.call_on_close(gateway.close)
    try:
        result = gateway.credit(key, amount)
    except PRBountyError as e:
        raise click.ClickException(e.message) from e

    console.print(f"[green]{result['message']}[/green] (transaction {result['transaction_id']})")
