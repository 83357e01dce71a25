"""serve command — run the webhook and HTTP API server."""

from __future__ import annotations

import logging

import click

logger = logging.getLogger(__name__)


@click.command("serve")
@click.option("--host", default=None, help="Bind address. Overrides config file.")
@click.option("--port", type=int, default=None, help="Bind port. Overrides config file.")
@click.pass_context
def serve_cmd(ctx, host: str | None, port: int | None):
    """Receive GitHub webhooks and serve the PR/credit API."""
    from prbounty_core.config import is_production
    from prbounty_core.gateway import build_gateway
    from prbounty_server.app import create_app

    config = ctx.obj["config"]
    store = ctx.obj["store"]
    host = host or config.get("host", "127.0.0.1")
    port = port or config.get("port", 8787)

    if is_production(config) and not config.get("webhook_secret"):
        raise click.UsageError("GITHUB_WEBHOOK_SECRET must be set when environment is 'production'.")

    gateway = build_gateway(config, store)
    ctx.call_on_close(gateway.close)
    app = create_app(gateway, config)
    logger.info("Listening on http://%s:%d (store: %s)", host, port, config.get("store", "memory"))
    app.run(host=host, port=port, threaded=True)
