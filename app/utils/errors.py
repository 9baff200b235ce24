"""Uniform JSON error bodies: ``{"error": ..., "code": "ERR_...", "details": {...}}``.

    from app.utils.errors import api_error, E

    return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    return api_error(E.INVALID_TRANSITION, str(exc), details={"current_state": "draft"})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Machine-readable error codes, grouped by their default HTTP status."""

    # 400: the request itself is malformed
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    # 422: well-formed but breaks a business rule
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"
    # 404
    NOT_FOUND = "ERR_NOT_FOUND"
    # 409: the entity is not in a state that allows this
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    CONCURRENT_MODIFICATION = "ERR_CONCURRENT_MODIFICATION"
    # 403
    FORBIDDEN = "ERR_FORBIDDEN"
    # 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


_STATUS_BY_CODE = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.INVALID_TRANSITION: 409,
    E.CONCURRENT_MODIFICATION: 409,
    E.FORBIDDEN: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None):
    """Return ``(response, status)`` for a Flask view or error handler."""
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)
