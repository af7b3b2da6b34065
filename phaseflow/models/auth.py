"""
PhaseFlow
Identity model.

Models:
    - User: studio staff (admin) and client accounts.  Credentials and token
      issuance live with the identity provider; only the fields the workflow
      reads are kept here.
"""

from datetime import datetime, timezone

from phaseflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ROLE_ADMIN = "admin"
ROLE_CLIENT = "client"
VALID_ROLES = frozenset({ROLE_ADMIN, ROLE_CLIENT})


class User(db.Model):
    """Portal account; ``role`` decides whether project ownership is checked."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    first_name = db.Column(db.String(100), default="")
    last_name = db.Column(db.String(100), default="")
    role = db.Column(
        db.String(20), nullable=False, default=ROLE_CLIENT,
        comment="admin | client",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def full_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
