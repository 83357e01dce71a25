"""
Tracked PRs: listing and on-demand polling
"""
from flask import jsonify

from prbounty_store.models import record_to_dict

from . import get_gateway, json_body, prs_bp


@prs_bp.route('', methods=['GET'])
def list_prs():
    records = get_gateway().list_records()
    return jsonify({"success": True, "prs": [record_to_dict(r) for r in records]})


@prs_bp.route('/poll', methods=['POST'])
def poll_pr():
    """Re-check a PR for the bot's review when the webhook was missed."""
    data = json_body()
    return jsonify(get_gateway().poll(data.get('id')))
