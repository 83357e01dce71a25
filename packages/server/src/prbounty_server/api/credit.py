"""
Manual crediting
"""
from flask import jsonify

from prbounty_core.errors import ValidationError

from . import credit_bp, get_gateway, json_body


@credit_bp.route('', methods=['POST'])
def credit_pr():
    data = json_body()
    cents = data.get('cents')
    if cents is not None and (isinstance(cents, bool) or not isinstance(cents, int)):
        raise ValidationError("cents must be an integer")
    return jsonify(get_gateway().credit(data.get('id'), cents))
