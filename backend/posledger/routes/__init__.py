# Overview: Shared helpers for API route modules.

from flask import jsonify, current_app

from ..errors import LedgerError


def error_response(exc: LedgerError):
    return jsonify(exc.to_dict()), exc.status_code


def internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "kind": "InternalError", "details": {}}), 500
