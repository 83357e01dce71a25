"""
Inbound GitHub webhooks
"""
from flask import jsonify, request

from . import get_gateway, webhooks_bp


@webhooks_bp.route('/github', methods=['POST'])
def github_webhook():
    # Raw bytes: the signature covers the body exactly as delivered.
    result = get_gateway().handle_event(
        request.get_data(),
        request.headers.get('X-Hub-Signature-256'),
        request.headers.get('X-GitHub-Event'),
    )
    return jsonify(result)
