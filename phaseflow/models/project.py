"""
PhaseFlow
Project domain model.

Models:
    - Project: a client engagement and its position in the phase sequence.
    - ProjectPhase: per-phase tracking row (not_started → in_progress → completed).
    - PhaseTransition: append-only record of every phase advance.
    - ProjectFile: uploaded deliverable file; bytes live with the storage backend.
"""

from datetime import datetime, timezone

from phaseflow.models import db
from phaseflow.models.phase import FIRST_PHASE, get_phase

# ── Constants ────────────────────────────────────────────────────────────────

PHASE_TRACKING_STATUSES = frozenset({"not_started", "in_progress", "completed"})


class Project(db.Model):
    """
    Creative-services engagement.

    ``current_phase_index`` always equals the order index of
    ``current_phase_key``; both are written together by the transition engine.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    client_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="Owning client user",
    )
    current_phase_key = db.Column(db.String(10), nullable=False, default=FIRST_PHASE.key)
    current_phase_index = db.Column(db.Integer, nullable=False, default=FIRST_PHASE.order_index)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    client = db.relationship("User", foreign_keys=[client_id])

    def to_dict(self) -> dict:
        phase = get_phase(self.current_phase_key)
        return {
            "id": self.id,
            "name": self.name,
            "client_id": self.client_id,
            "current_phase_key": self.current_phase_key,
            "current_phase_index": self.current_phase_index,
            "current_phase_name": phase.name if phase else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name} @ {self.current_phase_key}>"


class ProjectPhase(db.Model):
    """Tracking row for one phase of one project."""

    __tablename__ = "project_phases"
    __table_args__ = (
        db.UniqueConstraint("project_id", "phase_key", name="uq_project_phase"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    phase_key = db.Column(db.String(10), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="not_started",
        comment="not_started | in_progress | completed",
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        phase = get_phase(self.phase_key)
        return {
            "phase_key": self.phase_key,
            "phase_name": phase.name if phase else None,
            "order_index": phase.order_index if phase else None,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<ProjectPhase p={self.project_id} {self.phase_key}: {self.status}>"


class PhaseTransition(db.Model):
    """Append-only history row written by every successful advance."""

    __tablename__ = "phase_transitions"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    from_phase_key = db.Column(db.String(10), nullable=False)
    to_phase_key = db.Column(db.String(10), nullable=False)
    from_index = db.Column(db.Integer, nullable=False)
    to_index = db.Column(db.Integer, nullable=False)
    auto_advanced = db.Column(db.Boolean, nullable=False, default=False)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reason = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "from_phase": self.from_phase_key,
            "to_phase": self.to_phase_key,
            "from_index": self.from_index,
            "to_index": self.to_index,
            "auto_advanced": self.auto_advanced,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<PhaseTransition p={self.project_id} {self.from_phase_key}->{self.to_phase_key}>"


class ProjectFile(db.Model):
    """Deliverable file attached to a project.  Inactive files are skipped by validation."""

    __tablename__ = "project_files"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    original_name = db.Column(db.String(255), nullable=False)
    file_path = db.Column(db.String(500), nullable=False, comment="Absolute, or relative to UPLOAD_FOLDER")
    file_size = db.Column(db.BigInteger, nullable=False, default=0, comment="Bytes")
    mime_type = db.Column(db.String(100), default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def extension(self) -> str:
        _, dot, ext = self.original_name.rpartition(".")
        return ext.upper() if dot else ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "original_name": self.original_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ProjectFile {self.id}: {self.original_name}>"
