"""CLI entry point for prbounty.

Commands:
  serve     — run the webhook/HTTP server
  list      — show tracked PRs and their status
  poll      — re-check a PR for the review bot's verdict
  credit    — manually credit a passing PR
  mappings  — manage GitHub handle → payment account mappings
  delete    — stop tracking a PR
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prbounty_cli.commands.credit import credit_cmd
from prbounty_cli.commands.delete import delete_cmd
from prbounty_cli.commands.list import list_cmd
from prbounty_cli.commands.mappings import mappings_cmd
from prbounty_cli.commands.poll import poll_cmd
from prbounty_cli.commands.serve import serve_cmd

console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _build_store(config: dict):
    """Instantiate the configured store.

      store: sqlite → SQLiteStore (store_path, default .prbounty.db)
      (default)     → InMemoryStore (state is lost when the process exits)
    """
    if config.get("store") == "sqlite":
        from prbounty_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config.get("store_path", ".prbounty.db"))

    from prbounty_store.memory import InMemoryStore

    return InMemoryStore()


def require_persistent_store(ctx: click.Context):
    """Return the context store, refusing the in-memory one for one-shot commands."""
    from prbounty_store.memory import InMemoryStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, InMemoryStore):
        raise click.UsageError(
            "This command needs a persistent store. Add 'store: sqlite' to .prbounty.yml "
            "so it shares state with `prbounty serve`."
        )
    return store


@click.group()
@click.version_option(
    version=importlib.metadata.version("prbounty"),
    prog_name="prbounty",
)
@click.option(
    "--config",
    "config_path",
    default=".prbounty.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRBOUNTY_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    show_default=True,
)
@click.pass_context
def main(ctx: click.Context, config_path: str, log_level: str):
    """Track review-bot verdicts on pull requests and pay out bonuses for passing ones."""
    from prbounty_cli.auth import resolve_github_token
    from prbounty_core.config import load_config

    _setup_logging(log_level)
    ctx.ensure_object(dict)

    config = load_config(config_path)
    if not config.get("github_token"):
        config["github_token"] = resolve_github_token()

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(serve_cmd)
main.add_command(list_cmd)
main.add_command(poll_cmd)
main.add_command(credit_cmd)
main.add_command(mappings_cmd)
main.add_command(delete_cmd)
