"""
PhaseFlow
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from phaseflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {"proof_approved", "proof_ready", "phase_advanced", "system"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient user per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    recipient_role = db.Column(db.String(20), default="", comment="Role the fan-out targeted")
    notification_type = db.Column(db.String(30), nullable=False, default="system")
    title = db.Column(db.String(300), nullable=False)
    content = db.Column(db.Text, default="")
    action_ref = db.Column(db.String(300), default="", comment="Portal path the notification links to")

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "recipient_role": self.recipient_role,
            "type": self.notification_type,
            "title": self.title,
            "content": self.content,
            "action_ref": self.action_ref,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
