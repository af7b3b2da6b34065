"""
Requirement Gate.

Answers one question: has a project completed every mandatory requirement
of a phase?  Also records requirement completion toggles.

The gate check is a per-requirement reduction: each mandatory requirement
must have its own completed status row.  A project/requirement pair can
only ever have one row (unique constraint), and the check does not depend
on row counts.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from phaseflow.models import db
from phaseflow.models.phase import ProjectRequirementStatus, Requirement
from phaseflow.models.project import Project
from phaseflow.services.access import Actor, authorize_project
from phaseflow.services.audit_trail import record_event
from phaseflow.services.lookups import get_project
from phaseflow.services.phase_registry import get_requirement
from phaseflow.utils.helpers import transaction, utcnow

logger = logging.getLogger(__name__)


# ── Gate ─────────────────────────────────────────────────────────────────────

def mandatory_requirements(phase_key: str) -> list[Requirement]:
    return db.session.execute(
        select(Requirement)
        .where(Requirement.phase_key == phase_key, Requirement.is_mandatory.is_(True))
        .order_by(Requirement.sort_order, Requirement.id)
    ).scalars().all()


def all_mandatory_complete(project_id: int, phase_key: str) -> bool:
    """True iff every mandatory requirement of ``phase_key`` is completed for the project.

    Requirements without a status row count as incomplete.  A phase with
    no mandatory requirements is trivially complete.  Reads only; run it
    inside the same transaction as the write that prompted it.
    """
    mandatory_ids = [r.id for r in mandatory_requirements(phase_key)]
    if not mandatory_ids:
        return True
    completed_ids = set(db.session.execute(
        select(ProjectRequirementStatus.requirement_id).where(
            ProjectRequirementStatus.project_id == project_id,
            ProjectRequirementStatus.requirement_id.in_(mandatory_ids),
            ProjectRequirementStatus.completed.is_(True),
        )
    ).scalars())
    return all(rid in completed_ids for rid in mandatory_ids)


# ── Toggle ───────────────────────────────────────────────────────────────────

def apply_requirement_status(
    project: Project,
    requirement: Requirement,
    completed: bool,
    actor: Actor,
) -> tuple[ProjectRequirementStatus, bool]:
    """Create or update the status row inside the caller's transaction.

    Re-applying the current value changes nothing (no timestamp bump, no
    audit event).  Returns ``(status_row, changed)``.
    """
    status = db.session.execute(
        select(ProjectRequirementStatus).where(
            ProjectRequirementStatus.project_id == project.id,
            ProjectRequirementStatus.requirement_id == requirement.id,
        )
    ).scalar_one_or_none()

    if status is None:
        status = ProjectRequirementStatus(
            project_id=project.id,
            requirement_id=requirement.id,
            completed=False,
        )
        db.session.add(status)
    elif status.completed == completed:
        return status, False

    status.completed = completed
    if completed:
        status.completed_at = utcnow()
        status.completed_by = actor.id
    else:
        status.completed_at = None
        status.completed_by = None

    record_event(
        action="requirement_completed" if completed else "requirement_uncompleted",
        entity_type="requirement",
        entity_id=requirement.id,
        actor_id=actor.id,
        project_id=project.id,
        description=f"Completed: {requirement.text}" if completed else f"Marked incomplete: {requirement.text}",
        metadata={
            "requirement_id": requirement.id,
            "requirement_text": requirement.text,
            "phase_key": requirement.phase_key,
        },
    )
    return status, True


def set_requirement_status(
    project_id: int,
    requirement_id: int,
    completed: bool,
    actor: Actor,
) -> tuple[ProjectRequirementStatus, bool]:
    """Record a completion toggle and return it with the current-phase gate result.

    Raises:
        NotFoundError: unknown project or requirement.
        AccessDeniedError: actor is neither admin nor the owning client.
    """
    with transaction():
        project = get_project(project_id, for_update=True)
        authorize_project(actor, project)
        requirement = get_requirement(requirement_id)
        status, _ = apply_requirement_status(project, requirement, completed, actor)
        gate = all_mandatory_complete(project.id, project.current_phase_key)
    return status, gate


# ── Views ────────────────────────────────────────────────────────────────────

def project_requirements(project_id: int, actor: Actor, phase_key: str | None = None) -> dict:
    """Requirements of a phase (default: current) with this project's completion state."""
    project = get_project(project_id)
    authorize_project(actor, project)
    phase_key = phase_key or project.current_phase_key

    requirements = db.session.execute(
        select(Requirement)
        .where(Requirement.phase_key == phase_key)
        .order_by(Requirement.sort_order, Requirement.id)
    ).scalars().all()
    statuses = {
        s.requirement_id: s
        for s in db.session.execute(
            select(ProjectRequirementStatus).where(ProjectRequirementStatus.project_id == project.id)
        ).scalars()
    }

    items = []
    for requirement in requirements:
        data = requirement.to_dict()
        status = statuses.get(requirement.id)
        data["completed"] = bool(status and status.completed)
        data["completed_at"] = status.completed_at.isoformat() if status and status.completed_at else None
        data["completed_by"] = status.completed_by if status else None
        items.append(data)

    mandatory = [i for i in items if i["is_mandatory"]]
    return {
        "project_id": project.id,
        "phase_key": phase_key,
        "requirements": items,
        "mandatory_total": len(mandatory),
        "mandatory_completed": sum(1 for i in mandatory if i["completed"]),
        "all_mandatory_complete": all_mandatory_complete(project.id, phase_key),
    }
