"""
prbounty - API Blueprints
"""
from flask import Blueprint, current_app, request

from prbounty_core.errors import ValidationError

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/api/webhooks')
prs_bp = Blueprint('prs', __name__, url_prefix='/api/prs')
credit_bp = Blueprint('credit', __name__, url_prefix='/api/credit')
settings_bp = Blueprint('settings', __name__, url_prefix='/api/settings')
health_bp = Blueprint('health', __name__, url_prefix='/api/health')


def register_blueprints(app):
    """Register every API blueprint on the app."""
    from . import credit, health, prs, settings, webhooks  # noqa: F401

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(prs_bp)
    app.register_blueprint(credit_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(health_bp)


def get_gateway():
    return current_app.extensions["prbounty.gateway"]


def get_config() -> dict:
    return current_app.extensions["prbounty.config"]


def json_body() -> dict:
    """Parsed JSON object body; anything else is a ValidationError."""
    data = request.get_json(silent=True)
    if data is None and not request.get_data():
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data
