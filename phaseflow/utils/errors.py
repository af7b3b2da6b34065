"""Standardised API error responses.

Usage
-----
    from phaseflow.utils.errors import api_error, register_error_handlers, E

    return api_error(E.NOT_FOUND, "Proof not found")
    register_error_handlers(proof_bp)
"""

from __future__ import annotations

import logging

from flask import jsonify

from phaseflow.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    InvalidStateError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Identity – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Workflow precondition – HTTP 409
    INVALID_STATE = "ERR_INVALID_STATE"

    # Server – HTTP 500 / 503
    TRANSIENT_STORE = "ERR_TRANSIENT_STORE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.INVALID_STATE: 409,
    E.TRANSIENT_STORE: 503,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
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
        Extra structured payload (field errors, current workflow state).

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

    return jsonify(body), http_status


# ── Blueprint-level exception mapping ─────────────────────────────────

def register_error_handlers(bp) -> None:
    """Attach the service exception → HTTP mapping to a blueprint."""

    @bp.errorhandler(AuthenticationError)
    def _handle_unauthenticated(exc):
        return api_error(E.UNAUTHORIZED, str(exc))

    @bp.errorhandler(AccessDeniedError)
    def _handle_access_denied(exc):
        return api_error(E.FORBIDDEN, str(exc))

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @bp.errorhandler(ValidationError)
    def _handle_validation(exc):
        code = E.VALIDATION_REQUIRED if "required" in str(exc) else E.VALIDATION_INVALID
        return api_error(code, str(exc), details=exc.details)

    @bp.errorhandler(InvalidStateError)
    def _handle_invalid_state(exc):
        details = {"current_state": exc.current_state} if exc.current_state else None
        return api_error(E.INVALID_STATE, str(exc), details=details)

    @bp.errorhandler(TransientStoreError)
    def _handle_transient(exc):
        logger.warning("Transient store failure: %s", exc)
        return api_error(E.TRANSIENT_STORE, str(exc), details={"retryable": True})
