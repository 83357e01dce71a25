"""list command — show tracked PRs from the store."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()

_STATUS_STYLE = {
    "reviewing": "yellow",
    "pass": "green",
    "fail": "red",
    "credited": "bold green",
    "error": "magenta",
}


@click.command("list")
@click.option("--status", type=click.Choice(sorted(_STATUS_STYLE)), default=None, help="Only show this status.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.pass_context
def list_cmd(ctx, status: str | None, limit: int):
    """Show tracked PRs, most recently updated first."""
    from prbounty_cli.cli import require_persistent_store
    from prbounty_core.crediting import format_amount

    records = require_persistent_store(ctx).list_records()
    if status:
        records = [r for r in records if r.status == status]
    if not records:
        console.print("[yellow]No tracked PRs found.[/yellow]")
        return

    table = Table(title="Tracked PRs", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", no_wrap=True)
    table.add_column("Title", max_width=40)
    table.add_column("Author")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    table.add_column("Credited", justify="right")
    table.add_column("Updated", width=20)

    for r in records[:limit]:
        style = _STATUS_STYLE.get(r.status, "white")
        table.add_row(
            r.key,
            (r.title or "")[:40],
            r.author,
            f"[{style}]{r.status}[/{style}]",
            str(r.review.score) if r.review else "-",
            format_amount(r.credited_amount) if r.credited_amount else "-",
            r.updated_at.strftime("%Y-%m-%d %H:%M:%S") if r.updated_at else "",
        )

    console.print(table)
