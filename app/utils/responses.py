"""JSON response helpers shared by the API blueprints."""
from flask import jsonify, request

from app.exceptions import ValidationError
from app.utils.formatters import json_ready


def success(data=None, message=None, status=200):
    """`{"success": true, "message": ..., "data": ...}` with JSON-safe amounts."""
    body = {'success': True, 'message': message, 'data': json_ready(data)}
    return jsonify(body), status


def get_json_body(required=True):
    """Parsed JSON object of the request; ValidationError when absent or not an object."""
    data = request.get_json(silent=True)
    if data is None:
        if required:
            raise ValidationError('Body JSON tidak valid')
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Body JSON tidak valid')
    return data
