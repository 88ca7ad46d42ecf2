"""Shared route utilities."""
from __future__ import annotations

from typing import Any, Dict, Optional

from flask import jsonify, request

from attendance_service.services.errors import (
    ErrorKind,
    InvalidRequestError,
    InvalidTokenError,
    ServiceError,
    TokenExpiredError,
)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UPSTREAM_FAILURE: 502,
    ErrorKind.INTERNAL: 500,
}

# Well-formed requests carrying a bad or stale check-in token.
UNPROCESSABLE_ERRORS = (InvalidTokenError, TokenExpiredError)


def error_response(
    status: int,
    message: str,
    details: Optional[Any] = None,
    *,
    code: Optional[str] = None,
):
    payload: Dict[str, Any] = {"error": {"code": code or status, "message": message}}
    if details:
        payload["error"]["details"] = details
    return jsonify(payload), status


def service_error_response(exc: ServiceError):
    status = 422 if isinstance(exc, UNPROCESSABLE_ERRORS) else STATUS_BY_KIND[exc.kind]
    return error_response(status, exc.message, exc.details, code=exc.code)


def json_body() -> Dict[str, Any]:
    """Return the JSON object of the request; an empty body counts as ``{}``."""
    if not request.get_data():
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequestError(
            "Payload JSON invalide: un objet JSON (type dict) est requis."
        )
    return data
