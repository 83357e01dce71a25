"""poll command — fetch the review bot's verdict for a PR on demand."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("poll")
@click.argument("key")
@click.pass_context
def poll_cmd(ctx, key: str):
    """Re-check KEY (owner/repo#number) for the bot's review."""
    from prbounty_cli.cli import require_persistent_store
    from prbounty_core.crediting import format_amount
    from prbounty_core.errors import PRBountyError
    from prbounty_core.gateway import build_gateway

    store = require_persistent_store(ctx)
    gateway = build_gateway(ctx.obj["config"], store)
    ctx.call_on_close(gateway.close)
    try:
        result = gateway.poll(key)
    except PRBountyError as e:
        raise click.ClickException(e.message) from e

    if result.get("pending"):
        console.print(f"[yellow]{key}: {result['message']}[/yellow]")
        return

    console.print(f"[bold]{key}[/bold] → [cyan]{result['status']}[/cyan]")
    review = result.get("review")
    if review:
        console.print(f"  Score: {review['score']}/100, {review['issues']} issue(s)")
        console.print(f"  {review['summary']}")
    credit = result.get("credit")
    if credit:
        console.print(f"  [green]Credited {format_amount(credit['amount'])} to {credit['payment_account_id']}[/green]")
    elif result.get("message"):
        console.print(f"  {result['message']}")
