"""
QA Tracking Dashboard
Uniform JSON error bodies.

    {"error": "<message>", "code": "ERR_…", "details": {...}}

``details`` is omitted when empty. The app-level handlers in
``app/__init__.py`` turn domain exceptions into these; views call
``api_error`` directly only for failures that have no exception type
(an upstream model call that blew up, a commit that failed).
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes. The HTTP status follows from the code unless overridden."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # a required selection is missing
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # value outside its allowed set
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    DATABASE = "ERR_DATABASE"
    AI_CONFIG = "ERR_AI_CONFIG"                       # provider key missing: deployment fault
    AI_PARSE = "ERR_AI_PARSE"                         # model answered, but not in shape
    AI_UPSTREAM = "ERR_AI_UPSTREAM"                   # model call itself failed


STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.DATABASE: 500,
    E.AI_CONFIG: 500,
    E.AI_PARSE: 502,
    E.AI_UPSTREAM: 502,
}


def error_body(code: str, message: str, details: dict | None = None, **extra) -> dict:
    body = {"error": message, "code": code, **extra}
    if details:
        body["details"] = details
    return body


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None, **extra):
    """``(jsonify(body), status)`` ready to return from a view.

    Keyword ``extra`` values land at the top level of the body, next to
    ``error``; result saves use this for ``previous_status``.
    """
    return (
        jsonify(error_body(code, message, details, **extra)),
        status or STATUS_BY_CODE.get(code, 400),
    )
