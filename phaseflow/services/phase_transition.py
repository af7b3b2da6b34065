"""
Phase Transition Engine.

Forward-only state machine over the phase catalog:

    ONB → IDEA → DSGN → REV → PROD → PAY → SIGN → LAUNCH (terminal)

Every advance, automatic or manual, goes through ``_advance_locked``:
it moves the project exactly one step, closes the old phase-tracking row,
opens the new one, appends a ``PhaseTransition`` row and emits a
``phase_advanced`` audit event, all in the caller's transaction.

Concurrency: the project row is locked (SELECT ... FOR UPDATE) and the
phase write is a guarded UPDATE keyed on the expected current index.  If
another request advanced the project first, the guarded UPDATE matches
no row and the attempt is a no-op.

Auto-advance is part of the engine's ``TransitionSettings``, fixed when
the engine is built by the application factory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select, update

from phaseflow.core.exceptions import InvalidStateError
from phaseflow.models import db
from phaseflow.models.phase import PHASES, get_phase, is_terminal, next_phase
from phaseflow.models.project import PhaseTransition, Project, ProjectPhase
from phaseflow.services.access import Actor, authorize_project, require_admin
from phaseflow.services.audit_trail import record_event
from phaseflow.services.lookups import get_project
from phaseflow.services.phase_registry import get_requirement
from phaseflow.services.requirement_gate import all_mandatory_complete, apply_requirement_status
from phaseflow.utils.helpers import transaction, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionSettings:
    auto_advance: bool = False


@dataclass(frozen=True)
class TransitionOutcome:
    advanced: bool
    from_phase: str
    to_phase: str | None = None

    def to_dict(self) -> dict:
        return {"advanced": self.advanced, "from_phase": self.from_phase, "to_phase": self.to_phase}


# ── Phase tracking rows ──────────────────────────────────────────────────────

def initialize_phase_tracking(project: Project) -> list[ProjectPhase]:
    """Create the tracking rows for a new project; its current phase starts in progress.

    Flushes only; the caller commits.
    """
    now = utcnow()
    rows = []
    for phase in PHASES:
        if phase.order_index < project.current_phase_index:
            status = "completed"
        elif phase.order_index == project.current_phase_index:
            status = "in_progress"
        else:
            status = "not_started"
        row = ProjectPhase(
            project_id=project.id,
            phase_key=phase.key,
            status=status,
            started_at=now if status != "not_started" else None,
            completed_at=now if status == "completed" else None,
        )
        db.session.add(row)
        rows.append(row)
    db.session.flush()
    return rows


def _tracking_row(project_id: int, phase_key: str) -> ProjectPhase:
    row = db.session.execute(
        select(ProjectPhase).where(
            ProjectPhase.project_id == project_id,
            ProjectPhase.phase_key == phase_key,
        )
    ).scalar_one_or_none()
    if row is None:
        row = ProjectPhase(project_id=project_id, phase_key=phase_key, status="not_started")
        db.session.add(row)
    return row


# ── Engine ───────────────────────────────────────────────────────────────────

class PhaseTransitionEngine:
    """Decides and executes phase advancement for projects."""

    def __init__(self, settings: TransitionSettings):
        self.settings = settings

    @classmethod
    def from_config(cls, config) -> PhaseTransitionEngine:
        return cls(TransitionSettings(auto_advance=bool(config.get("AUTO_ADVANCE_PHASES", False))))

    # ── Public operations ────────────────────────────────────────────────

    def maybe_advance(self, project_id: int, actor: Actor | None = None) -> TransitionOutcome:
        """Advance one phase if the gate is satisfied and auto-advance is on.

        Never raises for a terminal project or an incomplete gate; those
        come back as ``advanced=False``.
        """
        with transaction():
            project = get_project(project_id, for_update=True)
            if actor is not None:
                authorize_project(actor, project)
            if not self._can_auto_advance(project):
                return TransitionOutcome(advanced=False, from_phase=project.current_phase_key)
            return self._advance_locked(
                project, actor_id=actor.id if actor else None, auto_advanced=True,
            )

    def advance(self, project_id: int, actor: Actor, reason: str = "") -> TransitionOutcome:
        """Manual (admin) advance.  Runs regardless of the auto-advance setting.

        Raises:
            AccessDeniedError: actor is not an admin.
            InvalidStateError: project is at its final phase, or its gate is incomplete.
        """
        require_admin(actor)
        with transaction():
            project = get_project(project_id, for_update=True)
            if is_terminal(project.current_phase_key):
                raise InvalidStateError(
                    "Project is already in its final phase", current_state=project.current_phase_key,
                )
            if not all_mandatory_complete(project.id, project.current_phase_key):
                phase = get_phase(project.current_phase_key)
                raise InvalidStateError(
                    f"Mandatory requirements for {phase.name} are not complete",
                    current_state=project.current_phase_key,
                )
            return self._advance_locked(project, actor_id=actor.id, auto_advanced=False, reason=reason)

    def record_requirement(
        self,
        project_id: int,
        requirement_id: int,
        completed: bool,
        actor: Actor,
    ) -> dict:
        """Toggle a requirement, re-check the gate and auto-advance, as one unit of work."""
        with transaction():
            project = get_project(project_id, for_update=True)
            authorize_project(actor, project)
            requirement = get_requirement(requirement_id)
            status, _ = apply_requirement_status(project, requirement, completed, actor)
            gate = all_mandatory_complete(project.id, project.current_phase_key)

            outcome = TransitionOutcome(advanced=False, from_phase=project.current_phase_key)
            if gate and self._can_auto_advance(project):
                outcome = self._advance_locked(project, actor_id=actor.id, auto_advanced=True)

        upcoming = next_phase(outcome.from_phase)
        ready = gate and not outcome.advanced and upcoming is not None
        if outcome.advanced:
            message = f"Phase advanced to {get_phase(outcome.to_phase).name}!"
        elif ready:
            message = "All mandatory requirements complete. Phase can advance."
        else:
            message = "Requirement status updated"

        return {
            "success": True,
            "requirement": status.to_dict(),
            "all_mandatory_complete": gate,
            "auto_advanced": outcome.advanced,
            "ready_to_advance": ready,
            "next_phase_name": upcoming.name if upcoming else None,
            "transition": outcome.to_dict(),
            "message": message,
        }

    # ── Views ────────────────────────────────────────────────────────────

    def phase_status(self, project_id: int, actor: Actor) -> dict:
        project = get_project(project_id)
        authorize_project(actor, project)
        rows = {
            r.phase_key: r
            for r in ProjectPhase.query.filter_by(project_id=project.id).all()
        }
        phases = []
        for phase in PHASES:
            row = rows.get(phase.key)
            if row is not None:
                phases.append(row.to_dict())
            else:
                phases.append({
                    "phase_key": phase.key,
                    "phase_name": phase.name,
                    "order_index": phase.order_index,
                    "status": "not_started",
                    "started_at": None,
                    "completed_at": None,
                })
        gate = all_mandatory_complete(project.id, project.current_phase_key)
        upcoming = next_phase(project.current_phase_key)
        return {
            "project": project.to_dict(),
            "phases": phases,
            "all_mandatory_complete": gate,
            "ready_to_advance": gate and upcoming is not None,
            "next_phase_name": upcoming.name if upcoming else None,
            "auto_advance": self.settings.auto_advance,
        }

    def history(self, project_id: int, actor: Actor) -> list[PhaseTransition]:
        project = get_project(project_id)
        authorize_project(actor, project)
        return (
            PhaseTransition.query.filter_by(project_id=project.id)
            .order_by(PhaseTransition.id)
            .all()
        )

    # ── Internals ────────────────────────────────────────────────────────

    def _can_auto_advance(self, project: Project) -> bool:
        if not self.settings.auto_advance or is_terminal(project.current_phase_key):
            return False
        return all_mandatory_complete(project.id, project.current_phase_key)

    def _advance_locked(
        self,
        project: Project,
        *,
        actor_id: int | None,
        auto_advanced: bool,
        reason: str = "",
    ) -> TransitionOutcome:
        """Move a locked project one phase forward inside the caller's transaction."""
        from_phase = get_phase(project.current_phase_key)
        to_phase = next_phase(from_phase.key)
        if to_phase is None:
            raise InvalidStateError("Project is already in its final phase", current_state=from_phase.key)

        now = utcnow()
        result = db.session.execute(
            update(Project)
            .where(Project.id == project.id, Project.current_phase_index == from_phase.order_index)
            .values(
                current_phase_key=to_phase.key,
                current_phase_index=to_phase.order_index,
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            db.session.refresh(project)
            logger.info(
                "Project %s already moved past %s; advance skipped",
                project.id, from_phase.key,
                extra={"project_id": project.id},
            )
            return TransitionOutcome(advanced=False, from_phase=project.current_phase_key)

        old_row = _tracking_row(project.id, from_phase.key)
        old_row.status = "completed"
        old_row.completed_at = now
        if old_row.started_at is None:
            old_row.started_at = now
        new_row = _tracking_row(project.id, to_phase.key)
        new_row.status = "in_progress"
        new_row.started_at = now
        new_row.completed_at = None

        db.session.add(PhaseTransition(
            project_id=project.id,
            from_phase_key=from_phase.key,
            to_phase_key=to_phase.key,
            from_index=from_phase.order_index,
            to_index=to_phase.order_index,
            auto_advanced=auto_advanced,
            actor_id=actor_id,
            reason=reason or "",
        ))

        verb = "automatically advanced" if auto_advanced else "advanced"
        record_event(
            action="phase_advanced",
            entity_type="project",
            entity_id=project.id,
            actor_id=actor_id,
            project_id=project.id,
            description=f"Phase {verb} from {from_phase.name} to {to_phase.name}",
            metadata={
                "from_phase": from_phase.key,
                "to_phase": to_phase.key,
                "auto_advanced": auto_advanced,
            },
        )
        logger.info(
            "Project %s advanced %s -> %s (auto=%s)",
            project.id, from_phase.key, to_phase.key, auto_advanced,
            extra={"project_id": project.id, "event_type": "phase_advanced"},
        )
        return TransitionOutcome(advanced=True, from_phase=from_phase.key, to_phase=to_phase.key)
