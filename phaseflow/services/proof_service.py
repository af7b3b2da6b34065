"""
Proof Session Manager.

Owns the lifecycle of checklist-backed proof sessions:

    created ──submit──► ready ──approval──► approved | rejected

Design decisions:
    - Sessions are never deleted.  Starting a new one leaves earlier ones
      untouched; the most recent session of a project is its current one.
    - The manager stores whatever checklist state and validation results
      it is given.  Deciding when a proof is complete enough to submit
      belongs to the caller.
    - Overrides requested by an admin are approved in the same unit of
      work; client requests stay pending until an admin reviews them
      (``approval_ledger.review_override``).
    - An item covered by an approved override stays checked: unchecking it
      is refused and a replaced checklist gets it back.
    - Every mutation appends a ``ProofHistory`` row and emits an audit event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select, update

from phaseflow.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from phaseflow.core.partial import UNSET, Unset, supplied
from phaseflow.models import db
from phaseflow.models.phase import PHASES, get_phase
from phaseflow.models.proof import (
    FINAL_PROOF_STATUSES,
    OverrideRequest,
    ProofHistory,
    ProofSession,
)
from phaseflow.services.access import Actor, authorize_project
from phaseflow.services.audit_trail import record_event
from phaseflow.services.lookups import get_project, get_proof
from phaseflow.services.notification import NotificationService
from phaseflow.utils.helpers import transaction, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProofUpdate:
    """Replaceable proof fields; ``UNSET`` fields are left alone."""

    checklist_state: dict | Unset = UNSET
    validation_results: dict | Unset = UNSET

    @classmethod
    def from_payload(cls, data: dict) -> ProofUpdate:
        return cls(**{k: data[k] for k in ("checklist_state", "validation_results") if k in data})


# ── History ──────────────────────────────────────────────────────────────────

def append_history(
    proof_id: int,
    action: str,
    actor_id: int | None,
    *,
    item_id: str | None = None,
    old_value=None,
    new_value=None,
    notes: str = "",
) -> ProofHistory:
    entry = ProofHistory(
        proof_id=proof_id,
        action=action,
        item_id=item_id,
        old_value=old_value,
        new_value=new_value,
        notes=notes,
        actor_id=actor_id,
    )
    db.session.add(entry)
    return entry


def apply_override_to_checklist(proof: ProofSession, override: OverrideRequest, reviewer_id: int) -> dict:
    """Force the overridden checklist item to checked with the override annotation."""
    state = dict(proof.checklist_state or {})
    item = dict(state.get(override.item_id) or {})
    item.update({
        "checked": True,
        "notes": f"Override approved: {override.reason}",
        "override": True,
        "override_id": override.id,
        "checked_by": reviewer_id,
        "checked_at": utcnow().isoformat(),
    })
    state[override.item_id] = item
    proof.checklist_state = state
    return item


def _approved_overrides(proof_id: int) -> dict[str, OverrideRequest]:
    rows = (
        OverrideRequest.query.filter_by(proof_id=proof_id, status="approved")
        .order_by(OverrideRequest.id)
        .all()
    )
    return {row.item_id: row for row in rows}


def restore_overrides(proof: ProofSession) -> list[str]:
    """Re-check every item covered by an approved override; returns the restored item ids."""
    restored = []
    for item_id, override in _approved_overrides(proof.id).items():
        item = (proof.checklist_state or {}).get(item_id) or {}
        if item.get("checked") is not True:
            apply_override_to_checklist(proof, override, override.reviewed_by)
            restored.append(item_id)
    return restored


# ── Queries ──────────────────────────────────────────────────────────────────

def load_session(proof_id: int, actor: Actor) -> ProofSession:
    proof = get_proof(proof_id)
    authorize_project(actor, get_project(proof.project_id))
    return proof


def get_current(project_id: int, actor: Actor) -> ProofSession | None:
    """Most recently created session of the project, or None."""
    project = get_project(project_id)
    authorize_project(actor, project)
    return db.session.execute(
        select(ProofSession)
        .where(ProofSession.project_id == project.id)
        .order_by(ProofSession.created_at.desc(), ProofSession.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def list_sessions(project_id: int, actor: Actor) -> list[ProofSession]:
    project = get_project(project_id)
    authorize_project(actor, project)
    return db.session.execute(
        select(ProofSession)
        .where(ProofSession.project_id == project.id)
        .order_by(ProofSession.created_at.desc(), ProofSession.id.desc())
    ).scalars().all()


def list_history(proof_id: int, actor: Actor) -> list[ProofHistory]:
    proof = load_session(proof_id, actor)
    return ProofHistory.query.filter_by(proof_id=proof.id).order_by(ProofHistory.id).all()


def list_overrides(proof_id: int, actor: Actor) -> list[OverrideRequest]:
    proof = load_session(proof_id, actor)
    return OverrideRequest.query.filter_by(proof_id=proof.id).order_by(OverrideRequest.id).all()


# ── Validation ───────────────────────────────────────────────────────────────

def _clean_services(services) -> list[str]:
    if not isinstance(services, list) or not services:
        raise ValidationError("services required", details={"services": "non-empty list of service codes"})
    cleaned = []
    for code in services:
        if not isinstance(code, str) or not code.strip():
            raise ValidationError("Invalid service code", details={"services": repr(code)})
        code = code.strip().upper()
        if code not in cleaned:
            cleaned.append(code)
    return cleaned


def _require_mapping(value, field: str) -> dict:
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object", details={field: "expected a JSON object"})
    return value


# ── Mutations ────────────────────────────────────────────────────────────────

def create(
    project_id: int,
    phase_key: str | None,
    services,
    actor: Actor,
    checklist_state: dict | None = None,
) -> ProofSession:
    """Start a new proof session for a project phase (default: current phase)."""
    services = _clean_services(services)
    if checklist_state is not None:
        _require_mapping(checklist_state, "checklist_state")

    with transaction():
        project = get_project(project_id, for_update=True)
        authorize_project(actor, project)
        phase_key = phase_key or project.current_phase_key
        if get_phase(phase_key) is None:
            raise ValidationError(
                "Unknown phase",
                details={"phase_key": f"Must be one of: {', '.join(p.key for p in PHASES)}"},
            )

        last_number = db.session.execute(
            select(func.max(ProofSession.proof_number)).where(
                ProofSession.project_id == project.id,
                ProofSession.phase_key == phase_key,
            )
        ).scalar()
        proof = ProofSession(
            project_id=project.id,
            phase_key=phase_key,
            proof_number=(last_number or 0) + 1,
            services=services,
            checklist_state=dict(checklist_state or {}),
            validation_results={},
            status="created",
            created_by=actor.id,
        )
        db.session.add(proof)
        db.session.flush()

        append_history(proof.id, "created", actor.id, new_value={"services": services},
                       notes=f"Proof #{proof.proof_number} created")
        record_event(
            action="proof_created",
            entity_type="proof",
            entity_id=proof.id,
            actor_id=actor.id,
            project_id=project.id,
            description=f"Proof #{proof.proof_number} started for phase {phase_key}",
            metadata={"phase_key": phase_key, "services": services},
        )

    logger.info("Proof %s created for project %s", proof.id, project_id, extra={"project_id": project_id})
    return proof


def update_session(proof_id: int, changes: ProofUpdate, actor: Actor) -> ProofSession:
    """Replace whichever of checklist_state / validation_results is supplied."""
    values = supplied(changes)
    if not values:
        raise ValidationError("No fields to update")
    for field, value in values.items():
        _require_mapping(value, field)

    with transaction():
        proof = get_proof(proof_id, for_update=True)
        authorize_project(actor, get_project(proof.project_id))

        old = {field: getattr(proof, field) for field in values}
        for field, value in values.items():
            setattr(proof, field, dict(value))
        if "checklist_state" in values:
            restored = restore_overrides(proof)
            if restored:
                logger.info(
                    "Proof %s: overridden items kept checked: %s", proof.id, ", ".join(restored),
                    extra={"proof_id": proof.id},
                )
        proof.updated_at = utcnow()

        notes = (
            "Proof checklist state updated" if "checklist_state" in values
            else "Proof validation results updated"
        )
        new = {field: getattr(proof, field) for field in values}
        append_history(proof.id, "updated", actor.id, old_value=old, new_value=new, notes=notes)
        record_event(
            action="proof_updated",
            entity_type="proof",
            entity_id=proof.id,
            actor_id=actor.id,
            project_id=proof.project_id,
            description=notes,
            metadata={"fields": sorted(values)},
        )
    return proof


def set_checklist_item(
    proof_id: int,
    item_id: str,
    checked: bool,
    actor: Actor,
    notes: str = "",
) -> dict:
    """Check or uncheck a single checklist item; returns the stored item.

    Raises:
        InvalidStateError: unchecking an item covered by an approved override.
    """
    if not item_id:
        raise ValidationError("item_id required")

    with transaction():
        proof = get_proof(proof_id, for_update=True)
        authorize_project(actor, get_project(proof.project_id))
        if not checked and item_id in _approved_overrides(proof.id):
            raise InvalidStateError(
                f"Checklist item {item_id} is covered by an approved override",
                current_state="overridden",
            )

        state = dict(proof.checklist_state or {})
        old_item = state.get(item_id)
        item = dict(old_item or {})
        item.update({
            "checked": checked,
            "notes": notes or "",
            "checked_by": actor.id if checked else None,
            "checked_at": utcnow().isoformat() if checked else None,
        })
        state[item_id] = item
        proof.checklist_state = state
        proof.updated_at = utcnow()

        append_history(proof.id, "item_checked", actor.id, item_id=item_id,
                       old_value=old_item, new_value=item)
        record_event(
            action="proof_updated",
            entity_type="proof",
            entity_id=proof.id,
            actor_id=actor.id,
            project_id=proof.project_id,
            description=f"Checklist item {item_id} {'checked' if checked else 'unchecked'}",
            metadata={"item_id": item_id, "checked": checked},
        )
    return item


def submit_for_approval(proof_id: int, actor: Actor) -> ProofSession:
    """Mark a ``created`` session ``ready`` and tell the client it awaits approval.

    Raises:
        InvalidStateError: the session is not in ``created``.
    """
    with transaction():
        proof = get_proof(proof_id, for_update=True)
        project = get_project(proof.project_id)
        authorize_project(actor, project)
        if proof.status != "created":
            raise InvalidStateError("Only a newly created proof can be submitted", current_state=proof.status)

        now = utcnow()
        result = db.session.execute(
            update(ProofSession)
            .where(ProofSession.id == proof.id, ProofSession.status == "created")
            .values(status="ready", submitted_at=now, submitted_by=actor.id, updated_at=now)
        )
        if result.rowcount != 1:
            db.session.refresh(proof)
            raise InvalidStateError("Only a newly created proof can be submitted", current_state=proof.status)

        append_history(proof.id, "submitted", actor.id, old_value={"status": "created"},
                       new_value={"status": "ready"}, notes="Proof submitted for approval")
        record_event(
            action="proof_submitted",
            entity_type="proof",
            entity_id=proof.id,
            actor_id=actor.id,
            project_id=project.id,
            description=f"Proof #{proof.proof_number} submitted for approval",
        )
        client_id, project_name = project.client_id, project.name

    if client_id:
        try:
            NotificationService.create(
                user_id=client_id,
                recipient_role="client",
                notification_type="proof_ready",
                title="Proof Ready for Approval",
                content=f'A proof for project "{project_name}" is ready for your review and approval.',
                action_ref=f"/portal/projects/{proof.project_id}/phases",
            )
        except Exception:
            db.session.rollback()
            logger.exception("Proof-ready notification for proof %s failed", proof_id)
    return proof


def request_override(proof_id: int, item_id: str, reason: str, actor: Actor) -> OverrideRequest:
    """Ask to bypass a checklist item.  Admin requests are approved immediately."""
    reason = (reason or "").strip() if isinstance(reason, str) else ""
    errors = {}
    if not item_id or not isinstance(item_id, str):
        errors["item_id"] = "required"
    if not reason:
        errors["reason"] = "required"
    if errors:
        raise ValidationError(f"{', '.join(errors)} required", details=errors)

    with transaction():
        proof = get_proof(proof_id, for_update=True)
        authorize_project(actor, get_project(proof.project_id))
        if proof.status in FINAL_PROOF_STATUSES:
            raise InvalidStateError("Proof is already finalized", current_state=proof.status)

        override = OverrideRequest(
            proof_id=proof.id,
            item_id=item_id,
            reason=reason,
            status="pending",
            requested_by=actor.id,
        )
        db.session.add(override)
        db.session.flush()

        append_history(proof.id, "override_requested", actor.id, item_id=item_id,
                       new_value={"override_id": override.id, "reason": reason},
                       notes=f"Override requested for {item_id}: {reason}")
        record_event(
            action="override_requested",
            entity_type="override",
            entity_id=override.id,
            actor_id=actor.id,
            project_id=proof.project_id,
            description=f"Override requested for {item_id}: {reason}",
            metadata={"proof_id": proof.id, "item_id": item_id},
        )

        if actor.is_admin:
            override.status = "approved"
            override.reviewed_by = actor.id
            override.reviewed_at = utcnow()
            item = apply_override_to_checklist(proof, override, actor.id)
            append_history(proof.id, "override_approved", actor.id, item_id=item_id,
                           new_value=item, notes=f"Override auto-approved for {item_id}")
            record_event(
                action="override_approved",
                entity_type="override",
                entity_id=override.id,
                actor_id=actor.id,
                project_id=proof.project_id,
                description=f"Override approved for {item_id}: {reason}",
                metadata={"proof_id": proof.id, "item_id": item_id, "auto_approved": True},
            )
    return override


def get_override(override_id: int, *, for_update: bool = False) -> OverrideRequest:
    stmt = select(OverrideRequest).where(OverrideRequest.id == override_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    override = db.session.execute(stmt).scalar_one_or_none()
    if override is None:
        raise NotFoundError(resource="OverrideRequest", resource_id=override_id)
    return override
