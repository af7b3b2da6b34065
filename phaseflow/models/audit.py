"""
PhaseFlow
Audit domain model.

Models:
    - AuditLog: immutable, append-only activity trail for workflow events.
"""

import json
from datetime import UTC, datetime

from phaseflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "requirement", "project", "proof", "override", "approval",
}

AUDIT_ACTIONS = {
    # Requirement gate
    "requirement_completed",
    "requirement_uncompleted",
    # Phase transitions
    "phase_advanced",
    # Proof sessions
    "proof_created",
    "proof_updated",
    "proof_submitted",
    "proof_validated",
    # Overrides
    "override_requested",
    "override_approved",
    "override_rejected",
    # Approvals
    "approval_submitted",
    "approval_rejected",
}


class AuditLog(db.Model):
    """
    Immutable audit trail; one row per workflow event.

    ``metadata_json`` carries the event payload (requirement id, from/to
    phase, override reason...).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Null for system entries",
    )

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="requirement | project | proof | override | approval",
    )
    entity_id = db.Column(db.String(36), nullable=False)

    # What happened
    action = db.Column(db.String(60), nullable=False)
    description = db.Column(db.Text, default="")
    metadata_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def event_metadata(self) -> dict:
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "actor_id": self.actor_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "description": self.description,
            "metadata": self.event_metadata,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_id: int | None = None,
    project_id: int | None = None,
    description: str = "",
    metadata: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        project_id=project_id,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        description=description,
        metadata_json=json.dumps(metadata or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
