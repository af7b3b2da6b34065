"""
PhaseFlow
Proof workflow models.

Models:
    - ProofSession: one review round of deliverables (checklist + validations).
    - ProofHistory: append-only event trail for a proof session.
    - OverrideRequest: request to bypass a blocking checklist item.
    - ProofApproval: immutable digital sign-off on a proof session.

Session lifecycle:
    created → ready → approved | rejected

Business rules:
    - Sessions are never deleted; the most recent one per project is current.
    - ProofApproval rows are append-only and carry request provenance.
    - An approved OverrideRequest implies its checklist item is checked with
      an override annotation in the owning session's ``checklist_state``.
"""

from datetime import datetime, timezone

from phaseflow.models import db
from phaseflow.models.phase import get_phase

# ── Constants ────────────────────────────────────────────────────────────────

PROOF_STATUSES = frozenset({"created", "ready", "approved", "rejected"})
FINAL_PROOF_STATUSES = frozenset({"approved", "rejected"})

OVERRIDE_STATUSES = frozenset({"pending", "approved", "rejected"})
APPROVAL_DECISIONS = frozenset({"approved", "rejected"})

PROOF_HISTORY_ACTIONS = frozenset({
    "created",
    "updated",
    "item_checked",
    "submitted",
    "validated",
    "override_requested",
    "override_approved",
    "override_rejected",
    "approved",
    "rejected",
})


def _iso(value):
    return value.isoformat() if value else None


class ProofSession(db.Model):
    """
    Checklist-backed proof round for one project phase.

    ``checklist_state``:   {item_id: {"checked": bool, "notes": str, ...}}
    ``validation_results``: {file_id: {service_code: {"passed", "issues", "warnings"}}}
    """

    __tablename__ = "proof_sessions"
    __table_args__ = (
        db.Index("idx_proof_project_created", "project_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    phase_key = db.Column(db.String(10), nullable=False)
    proof_number = db.Column(db.Integer, nullable=False, default=1, comment="Sequential per project + phase")
    services = db.Column(db.JSON, nullable=False, default=list, comment="Service codes, e.g. ['LFP', 'GD']")
    checklist_state = db.Column(db.JSON, nullable=False, default=dict)
    validation_results = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(
        db.String(20), nullable=False, default="created",
        comment="created | ready | approved | rejected",
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project")
    approvals = db.relationship(
        "ProofApproval", back_populates="proof", order_by="ProofApproval.id",
    )

    def to_dict(self, include_approvals: bool = False) -> dict:
        phase = get_phase(self.phase_key)
        data = {
            "id": self.id,
            "project_id": self.project_id,
            "phase_key": self.phase_key,
            "phase_name": phase.name if phase else None,
            "proof_number": self.proof_number,
            "services": list(self.services or []),
            "checklist_state": self.checklist_state or {},
            "validation_results": self.validation_results or {},
            "status": self.status,
            "created_by": self.created_by,
            "submitted_by": self.submitted_by,
            "submitted_at": _iso(self.submitted_at),
            "finalized_at": _iso(self.finalized_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_approvals:
            data["approvals"] = [a.to_dict() for a in self.approvals]
        return data

    def __repr__(self):
        return f"<ProofSession {self.id}: project={self.project_id} #{self.proof_number} {self.status}>"


class ProofHistory(db.Model):
    """Append-only event for a proof session."""

    __tablename__ = "proof_history"

    id = db.Column(db.Integer, primary_key=True)
    proof_id = db.Column(
        db.Integer, db.ForeignKey("proof_sessions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    action = db.Column(db.String(30), nullable=False)
    item_id = db.Column(db.String(100), nullable=True)
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, default="")
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "proof_id": self.proof_id,
            "action": self.action,
            "item_id": self.item_id,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "notes": self.notes,
            "actor_id": self.actor_id,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ProofHistory {self.id}: proof={self.proof_id} {self.action}>"


class OverrideRequest(db.Model):
    """Request to bypass one checklist item; admins approve or reject it."""

    __tablename__ = "proof_override_requests"

    id = db.Column(db.Integer, primary_key=True)
    proof_id = db.Column(
        db.Integer, db.ForeignKey("proof_sessions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    item_id = db.Column(db.String(100), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | approved | rejected",
    )
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    review_notes = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "proof_id": self.proof_id,
            "item_id": self.item_id,
            "reason": self.reason,
            "status": self.status,
            "requested_by": self.requested_by,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _iso(self.reviewed_at),
            "review_notes": self.review_notes,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<OverrideRequest {self.id}: proof={self.proof_id} {self.item_id} {self.status}>"


class ProofApproval(db.Model):
    """
    Immutable digital sign-off on a proof session.

    Name and email are snapshotted at signing time so the record stays
    readable if the user row changes later.
    """

    __tablename__ = "proof_approvals"

    id = db.Column(db.Integer, primary_key=True)
    proof_id = db.Column(
        db.Integer, db.ForeignKey("proof_sessions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approver_name = db.Column(db.String(255), nullable=False)
    approver_email = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, comment="approved | rejected")
    notes = db.Column(db.Text, default="")
    signature_data = db.Column(db.Text, nullable=True, comment="Opaque signature reference")
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    proof = db.relationship("ProofSession", back_populates="approvals")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "proof_id": self.proof_id,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "approver_email": self.approver_email,
            "status": self.status,
            "notes": self.notes,
            "has_signature": bool(self.signature_data),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ProofApproval {self.id}: proof={self.proof_id} {self.status} by {self.approver_email}>"
