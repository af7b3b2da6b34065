"""
PhaseFlow
Phase catalog and requirement models.

The delivery sequence is a single ordered table (``PHASES``).  The
requirement gate, the transition engine, the API and the report all read
from it; nothing else defines phase order or names.

Models:
    - Requirement: a condition attached to one phase (admin-managed).
    - ProjectRequirementStatus: per-project completion of a requirement.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from phaseflow.models import db


@dataclass(frozen=True)
class Phase:
    key: str
    name: str
    order_index: int


# ── Phase catalog ────────────────────────────────────────────────────────────

PHASES: tuple[Phase, ...] = (
    Phase("ONB", "Onboarding", 0),
    Phase("IDEA", "Ideation", 1),
    Phase("DSGN", "Design", 2),
    Phase("REV", "Review & Feedback", 3),
    Phase("PROD", "Production/Build", 4),
    Phase("PAY", "Payment", 5),
    Phase("SIGN", "Sign-off & Docs", 6),
    Phase("LAUNCH", "Launch", 7),
)

_PHASES_BY_KEY = {p.key: p for p in PHASES}

FIRST_PHASE = PHASES[0]
TERMINAL_PHASE = PHASES[-1]


def get_phase(key: str) -> Phase | None:
    return _PHASES_BY_KEY.get(key)


def phase_at(index: int) -> Phase | None:
    if 0 <= index < len(PHASES):
        return PHASES[index]
    return None


def next_phase(key: str) -> Phase | None:
    """Return the phase after ``key``, or None at the terminal phase."""
    phase = _PHASES_BY_KEY[key]
    return phase_at(phase.order_index + 1)


def is_terminal(key: str) -> bool:
    return key == TERMINAL_PHASE.key


# ── Requirement catalog ──────────────────────────────────────────────────────

REQUIREMENT_TYPES = frozenset({
    "form", "agreement", "payment", "review", "approval", "feedback",
    "monitor", "check", "confirm", "download", "launch",
})

# (phase_key, type, text, is_mandatory) in display order per phase
DEFAULT_REQUIREMENTS = (
    ("ONB", "form", "Complete intake form", True),
    ("ONB", "agreement", "Sign service agreement", True),
    ("ONB", "payment", "Pay deposit invoice", True),
    ("IDEA", "review", "Review creative brief", True),
    ("IDEA", "approval", "Approve project direction", True),
    ("IDEA", "feedback", "Provide initial feedback", False),
    ("DSGN", "review", "Review initial designs", False),
    ("DSGN", "feedback", "Provide design feedback", False),
    ("REV", "approval", "Approve all deliverables", True),
    ("REV", "approval", "Complete proof approval (if print)", False),
    ("REV", "feedback", "Request changes (if needed)", False),
    ("PROD", "monitor", "Monitor production progress", False),
    ("PROD", "check", "Approve press check (if applicable)", False),
    ("PAY", "payment", "Pay final invoice", True),
    ("SIGN", "agreement", "Sign completion agreement", True),
    ("SIGN", "download", "Download final assets", False),
    ("SIGN", "review", "Review documentation", False),
    ("LAUNCH", "confirm", "Confirm receipt of deliverables", False),
    ("LAUNCH", "feedback", "Provide testimonial", False),
    ("LAUNCH", "launch", "Launch/deploy project", False),
)


class Requirement(db.Model):
    """A discrete condition within a phase; mandatory ones block advancement."""

    __tablename__ = "phase_requirements"
    __table_args__ = (
        db.Index("idx_requirement_phase", "phase_key", "sort_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    phase_key = db.Column(db.String(10), nullable=False, comment="ONB | IDEA | DSGN | ...")
    requirement_type = db.Column(
        db.String(20), nullable=False,
        comment="form | agreement | payment | review | approval | feedback | ...",
    )
    text = db.Column(db.String(500), nullable=False)
    is_mandatory = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        phase = get_phase(self.phase_key)
        return {
            "id": self.id,
            "phase_key": self.phase_key,
            "phase_name": phase.name if phase else None,
            "type": self.requirement_type,
            "text": self.text,
            "is_mandatory": self.is_mandatory,
            "sort_order": self.sort_order,
        }

    def __repr__(self):
        return f"<Requirement {self.id}: {self.phase_key} {self.text[:30]}>"


class ProjectRequirementStatus(db.Model):
    """
    Completion state of one requirement for one project.

    Rows are created on first toggle and updated afterwards, never deleted.
    ``completed=True`` always carries ``completed_at`` and ``completed_by``.
    """

    __tablename__ = "project_requirement_status"
    __table_args__ = (
        db.UniqueConstraint("project_id", "requirement_id", name="uq_project_requirement"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    requirement_id = db.Column(
        db.Integer, db.ForeignKey("phase_requirements.id", ondelete="CASCADE"), nullable=False,
    )
    completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "requirement_id": self.requirement_id,
            "completed": self.completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
        }

    def __repr__(self):
        return f"<ProjectRequirementStatus p={self.project_id} r={self.requirement_id} {self.completed}>"
