"""Shared helpers for services and blueprints.

commit_or_raise:  commit the unit of work, mapping store failures to TransientStoreError
client_ip:        caller IP, honouring X-Forwarded-For
json_body:        request JSON as a dict (empty dict when absent)
parse_bool:       strict boolean coercion for request fields
transaction:      commit-or-rollback scope for a service operation
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from flask import request
from sqlalchemy.exc import IntegrityError, OperationalError

from phaseflow.core.exceptions import TransientStoreError, ValidationError
from phaseflow.models import db

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_raise():
    """Commit the current SQLAlchemy session or raise ``TransientStoreError``.

    The session is rolled back first, so no partial state survives a failed
    commit and the caller can re-run the whole operation.

    IntegrityError   → concurrent insert of the same unique key (retry sees it)
    OperationalError → connection / lock timeout
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise TransientStoreError("Concurrent update collided; retry the request") from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        raise TransientStoreError() from exc


# ── Request helpers ──────────────────────────────────────────────────────────

def client_ip() -> str | None:
    """Return real client IP, honouring X-Forwarded-For from load balancers.

    request.remote_addr alone is the proxy address behind a load balancer;
    the first X-Forwarded-For entry is the originating client.
    """
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.remote_addr


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_bool(value, field: str) -> bool:
    """Coerce a JSON field into a bool, rejecting anything ambiguous."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value in (0, 1):
        return bool(value)
    raise ValidationError(f"{field} must be a boolean", details={field: "expected true or false"})


@contextmanager
def transaction():
    """Run the enclosed block as one unit of work: commit on success, roll back on any error."""
    try:
        yield
        commit_or_raise()
    except Exception:
        db.session.rollback()
        raise
