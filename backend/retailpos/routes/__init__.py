# Overview: Shared JSON response helpers for the API blueprints.

from flask import jsonify

from ..errors import ServiceError


def success(data=None, message: str = "OK", status: int = 200, **extra):
    body = {"success": True, "message": message, "data": data}
    body.update(extra)
    return jsonify(body), status


def error_response(exc: ServiceError):
    return jsonify(exc.to_dict()), exc.status_code


def internal_error(message: str = "Internal server error"):
    return jsonify({"success": False, "message": message}), 500
