# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


def _header_int(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    if not raw.isdigit():
        raise ValueError(name)
    return int(raw)


def require_tenant_context(f):
    """
    Require tenant context established by the upstream gateway.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.org_id: The organization ID (tenant context) - REQUIRED (X-Org-Id)
    - g.user_id: The acting user ID - REQUIRED (X-User-Id)
    - g.store_id: The user's store ID, may be None (X-Store-Id)

    Returns 401 if the tenant or actor header is missing, 400 if malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            org_id = _header_int("X-Org-Id")
            user_id = _header_int("X-User-Id")
            store_id = _header_int("X-Store-Id")
        except ValueError as exc:
            return jsonify({
                "error": f"Malformed {exc} header",
                "kind": "ValidationFailed",
                "details": {"header": str(exc)},
            }), 400

        if org_id is None or user_id is None:
            return jsonify({
                "error": "Tenant context required",
                "kind": "Unauthorized",
                "details": {},
            }), 401

        g.org_id = org_id
        g.user_id = user_id
        g.store_id = store_id

        return f(*args, **kwargs)

    return decorated_function
