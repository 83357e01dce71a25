"""
Operator settings: GitHub handle -> payment account mappings
"""
from flask import jsonify, request

from prbounty_core.errors import NotFoundError, ValidationError

from . import get_config, get_gateway, json_body, settings_bp


@settings_bp.route('/users', methods=['GET'])
def list_users():
    mappings = get_gateway().store.list_mappings()
    users = [{"githubUsername": m.handle, "paymentAccountId": m.payment_account_id} for m in mappings]
    return jsonify({"success": True, "users": users})


@settings_bp.route('/users', methods=['POST'])
def add_user():
    data = json_body()
    handle = str(data.get('githubUsername') or '').strip()
    account_id = str(data.get('paymentAccountId') or '').strip()
    if not handle or not account_id:
        raise ValidationError("githubUsername and paymentAccountId are required")

    prefix = get_config().get('payment_account_prefix', 'cus_')
    if not account_id.startswith(prefix):
        raise ValidationError(f"paymentAccountId must start with '{prefix}'")

    get_gateway().store.set_mapping(handle, account_id)
    return jsonify({"success": True, "user": {"githubUsername": handle.lower(), "paymentAccountId": account_id}})


@settings_bp.route('/users', methods=['DELETE'])
def remove_user():
    handle = (request.args.get('githubUsername') or str(json_body().get('githubUsername') or '')).strip()
    if not handle:
        raise ValidationError("githubUsername is required")
    store = get_gateway().store
    if store.get_mapping(handle) is None:
        raise NotFoundError(f"No mapping for {handle}")
    store.delete_mapping(handle)
    return jsonify({"success": True})
