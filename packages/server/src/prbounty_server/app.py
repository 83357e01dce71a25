from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from prbounty_core.errors import InternalError, PRBountyError
from prbounty_server.api import register_blueprints

if TYPE_CHECKING:
    from prbounty_core.gateway import EventGateway

logger = logging.getLogger(__name__)


def create_app(gateway: EventGateway, config: dict | None = None) -> Flask:
    """Build the HTTP app around an already-wired gateway."""
    app = Flask(__name__)
    app.extensions["prbounty.gateway"] = gateway
    app.extensions["prbounty.config"] = config if config is not None else gateway.config
    register_blueprints(app)

    @app.errorhandler(PRBountyError)
    def handle_domain_error(e: PRBountyError):
        if e.http_status >= 500:
            logger.error("%s: %s", e.kind, e.message)
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": "http_error", "message": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        logger.exception("Unhandled error while serving request")
        err = InternalError("Internal server error")
        return jsonify(err.to_dict()), err.http_status

    return app
