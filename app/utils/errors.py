"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, register_error_handlers, E

    return api_error(E.VALIDATION_REQUIRED, "title is required")

    register_error_handlers(proposal_bp)   # maps app.core.exceptions → JSON
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateConsistencyError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.  All carry the ERR_ prefix."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    ACHIEVEMENTS_TOO_LONG = "ERR_ACHIEVEMENTS_TOO_LONG"

    # Identity / authorization – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    ROLE_MISMATCH = "ERR_ROLE_MISMATCH"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Stale caller state / concurrency – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    STAGE_ALREADY_DECIDED = "ERR_STAGE_ALREADY_DECIDED"
    PROPOSAL_NOT_AT_STAGE = "ERR_PROPOSAL_NOT_AT_STAGE"
    NOT_YET_IMPLEMENTING = "ERR_NOT_YET_IMPLEMENTING"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.ACHIEVEMENTS_TOO_LONG: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.ROLE_MISMATCH: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.STAGE_ALREADY_DECIDED: 409,
    E.PROPOSAL_NOT_AT_STAGE: 409,
    E.NOT_YET_IMPLEMENTING: 409,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    current_progress: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Field-level breakdown of a validation failure.
    current_progress : dict, optional
        Authoritative derived progress, sent with state-consistency errors.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details
    if current_progress is not None:
        body["current_progress"] = current_progress

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Attach the workflow exception → HTTP mapping to a blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(error.code, str(error), status=404)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(error.code, str(error), status=400, details=error.details)

    @bp.errorhandler(AuthorizationError)
    def _handle_forbidden(error: AuthorizationError):
        return api_error(error.code, str(error), status=403)

    @bp.errorhandler(StateConsistencyError)
    def _handle_stale_state(error: StateConsistencyError):
        return api_error(
            error.code, str(error), status=409, current_progress=error.current_progress,
        )

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(error.code, str(error), status=409)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error", status=500)
