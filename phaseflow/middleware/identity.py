"""
Identity middleware: Bearer JWT → ``g.actor``.

Tokens are issued elsewhere; this only decodes them (PyJWT, HS256 by
default).  Claims used:

    sub   user id (int or numeric string)
    role  "admin" | "client"

A missing, expired or malformed token leaves ``g.actor`` unset.  Views
that need a caller call ``current_actor()``, which raises
``AuthenticationError`` (→ 401) in that case.
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from phaseflow.core.exceptions import AuthenticationError
from phaseflow.services.access import Actor

logger = logging.getLogger(__name__)

# Paths that never carry an identity
IDENTITY_SKIP_PREFIXES = (
    "/api/v1/health",
)


def decode_actor(token: str) -> Actor:
    """Decode a Bearer token into an Actor.

    Raises jwt.InvalidTokenError (or a subclass) for bad signatures, expired
    tokens and payloads without a usable ``sub``/``role``.
    """
    payload = pyjwt.decode(
        token,
        current_app.config["JWT_SECRET_KEY"],
        algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
    )
    try:
        return Actor(id=int(payload["sub"]), role=payload["role"])
    except (KeyError, TypeError, ValueError) as exc:
        raise pyjwt.InvalidTokenError(f"Unusable identity claims: {exc}") from exc


def init_identity(app):
    """Register identity resolution as a before_request hook."""

    @app.before_request
    def _resolve_identity():
        g.actor = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in IDENTITY_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        try:
            g.actor = decode_actor(auth_header[7:])
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired token on %s", path)
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Rejected token on %s: %s", path, exc)


def current_actor() -> Actor:
    actor = g.get("actor")
    if actor is None:
        raise AuthenticationError()
    return actor
