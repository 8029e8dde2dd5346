"""
Helper utility functions shared by the route blueprints
"""
from flask import current_app, jsonify, request

from qistmarket.error_handler import ValidationError


def success_response(data=None, message=None, status=200, **extra):
    """Render a successful result in the uniform envelope"""
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status


def get_json_body():
    """Request JSON as a dict, empty when the body is absent or not an object"""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def get_int_arg(name, default=None, minimum=None):
    """Read an integer query parameter, rejecting garbage with a 400"""
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be at least {minimum}")
    return value


def get_page_args():
    """(page, limit) from the query string, limit clamped to MAX_PAGE_SIZE"""
    page = get_int_arg('page', 1, minimum=1)
    limit = get_int_arg('limit', current_app.config.get('DEFAULT_PAGE_SIZE', 10), minimum=1)
    return page, min(limit, current_app.config.get('MAX_PAGE_SIZE', 100))


def parse_bool(value):
    """
    Interpret a JSON/form boolean

    Returns True/False, or None when the value is missing or unrecognised.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return {1: True, 0: False}.get(value)
    if isinstance(value, str):
        return {'true': True, '1': True, 'false': False, '0': False}.get(value.strip().lower())
    return None
