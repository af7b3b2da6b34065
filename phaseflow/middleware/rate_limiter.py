"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in phaseflow/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from phaseflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"
VALIDATION_LIMIT = "10/minute"


def actor_rate_limit_key():
    """Rate limit key: the authenticated user if known, else remote IP."""
    actor = getattr(g, "actor", None)
    if actor is not None:
        return f"user:{actor.id}"
    return flask_request.remote_addr or "unknown"


def _writes_only():
    return flask_request.method in ("GET", "HEAD", "OPTIONS")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per user, falling back to remote IP):
        - File validation:  10/minute  (decodes every project image)
        - Write endpoints:  60/minute  (POST/PUT/DELETE)
        - Read endpoints:   200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    # Mutation routes: writes limited, reads share the generous limit
    for bp_name in ("phase", "proof", "notification"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=actor_rate_limit_key, exempt_when=_writes_only)(bp)
            limiter.limit(READ_LIMIT, key_func=actor_rate_limit_key)(bp)

    # File validation decodes every project image: strict limit
    view = app.view_functions.get("proof.validate_files")
    if view:
        app.view_functions["proof.validate_files"] = limiter.limit(
            VALIDATION_LIMIT, key_func=actor_rate_limit_key,
        )(view)

    bp = app.blueprints.get("audit")
    if bp:
        limiter.limit(READ_LIMIT, key_func=actor_rate_limit_key)(bp)

    # Health check: exempt from rate limiting
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: write %s, read %s, validation %s",
        WRITE_LIMIT, READ_LIMIT, VALIDATION_LIMIT,
    )
