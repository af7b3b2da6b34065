"""
Approval Ledger.

Records digital sign-offs against proof sessions and admin decisions on
override requests.

Design decisions:
    - ProofApproval is APPEND-ONLY.  The decision, notes, signature
      reference and request provenance (IP, user agent) are captured at
      signing time, together with a snapshot of the approver's name and email.
    - Only a ``ready`` session accepts an approval.  The readiness check and
      the status write happen in one transaction: the proof row is locked
      and the write is a guarded ``UPDATE ... WHERE status = 'ready'``.  Of
      two concurrent submissions exactly one finalizes; the other fails
      with ``InvalidStateError`` and leaves no approval row.
    - Approval (not rejection) notifies every admin after the commit.  A
      failed notification is logged and never fails the sign-off.
"""

from __future__ import annotations

import logging

from sqlalchemy import update

from phaseflow.core.exceptions import InvalidStateError, ValidationError
from phaseflow.models import db
from phaseflow.models.auth import ROLE_ADMIN, User
from phaseflow.models.proof import APPROVAL_DECISIONS, FINAL_PROOF_STATUSES, ProofApproval, ProofSession
from phaseflow.services.access import Actor, authorize_project, require_admin
from phaseflow.services.audit_trail import record_event
from phaseflow.services.lookups import get_project, get_proof
from phaseflow.services.notification import NotificationService
from phaseflow.services.proof_service import (
    append_history,
    apply_override_to_checklist,
    get_override,
    load_session,
)
from phaseflow.utils.helpers import transaction, utcnow

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _snapshot_approver(actor: Actor, approver_name: str | None, approver_email: str | None) -> tuple[str, str]:
    """Resolve the approver's display name and email at signing time.

    Explicit values from the request win; otherwise the User row supplies them.
    """
    user = db.session.get(User, actor.id)
    name = (approver_name or "").strip() or (user.full_name if user else "")
    email = (approver_email or "").strip() or (user.email if user else "")
    if not name or not email:
        raise ValidationError(
            "approver name and email required",
            details={"approver_name": "required", "approver_email": "required"},
        )
    return name, email


def _claim_ready(proof_id: int, new_status: str) -> bool:
    """Move a ``ready`` proof to its final status.  False if it was no longer ready."""
    now = utcnow()
    result = db.session.execute(
        update(ProofSession)
        .where(ProofSession.id == proof_id, ProofSession.status == "ready")
        .values(status=new_status, finalized_at=now, updated_at=now)
    )
    return result.rowcount == 1


# ── Public API ─────────────────────────────────────────────────────────────────


def submit_approval(
    proof_id: int,
    actor: Actor,
    status: str | None = None,
    notes: str = "",
    signature_data: str | None = None,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    approver_name: str | None = None,
    approver_email: str | None = None,
) -> ProofApproval:
    """Sign off (or reject) a ready proof session.

    Args:
        status: "approved" (default) or "rejected".
        signature_data: opaque signature reference, stored as given.
        ip_address / user_agent: request provenance for non-repudiation.

    Raises:
        NotFoundError: unknown proof.
        AccessDeniedError: actor is neither admin nor the owning client.
        InvalidStateError: the proof is not ``ready``.
    """
    decision = status or "approved"
    if decision not in APPROVAL_DECISIONS:
        raise ValidationError(
            f"Invalid status '{decision}'. Must be one of: {', '.join(sorted(APPROVAL_DECISIONS))}",
            details={"status": decision},
        )

    with transaction():
        proof = get_proof(proof_id, for_update=True)
        project = get_project(proof.project_id)
        authorize_project(actor, project)

        if proof.status != "ready":
            raise InvalidStateError("Proof is not ready for approval", current_state=proof.status)
        name, email = _snapshot_approver(actor, approver_name, approver_email)

        if not _claim_ready(proof.id, decision):
            db.session.refresh(proof)
            raise InvalidStateError("Proof is not ready for approval", current_state=proof.status)

        approval = ProofApproval(
            proof_id=proof.id,
            approver_id=actor.id,
            approver_name=name,
            approver_email=email,
            status=decision,
            notes=notes or "",
            signature_data=signature_data,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500] or None,
        )
        db.session.add(approval)
        db.session.flush()

        append_history(
            proof.id, decision, actor.id,
            old_value={"status": "ready"}, new_value={"status": decision},
            notes=f"Proof {decision} by {name}",
        )
        record_event(
            action="approval_submitted" if decision == "approved" else "approval_rejected",
            entity_type="approval",
            entity_id=approval.id,
            actor_id=actor.id,
            project_id=project.id,
            description=f"Proof #{proof.proof_number} {decision} by {name}",
            metadata={"proof_id": proof.id, "status": decision},
        )
        project_id, project_name = project.id, project.name

    logger.info(
        "Proof %s %s by user %s", proof_id, decision, actor.id,
        extra={"project_id": project_id, "event_type": f"proof_{decision}"},
    )

    if decision == "approved":
        try:
            NotificationService.notify_role(
                ROLE_ADMIN,
                notification_type="proof_approved",
                title="Proof Approved",
                content=f'The proof for project "{project_name}" has been approved.',
                action_ref=f"/admin/projects/{project_id}",
            )
        except Exception:
            db.session.rollback()
            logger.exception("Approval notification for proof %s failed", proof_id)

    return approval


def list_approvals(proof_id: int, actor: Actor) -> list[ProofApproval]:
    proof = load_session(proof_id, actor)
    return ProofApproval.query.filter_by(proof_id=proof.id).order_by(ProofApproval.id).all()


def review_override(override_id: int, actor: Actor, decision: str, notes: str = ""):
    """Admin decision on a pending override request.

    Approving forces the checklist item to checked with the override note.

    Raises:
        AccessDeniedError: actor is not an admin.
        InvalidStateError: the request was already reviewed, or approving it
            would change a finalized proof.
    """
    require_admin(actor)
    if decision not in ("approved", "rejected"):
        raise ValidationError(
            "decision must be 'approved' or 'rejected'", details={"decision": decision},
        )

    with transaction():
        override = get_override(override_id, for_update=True)
        proof = get_proof(override.proof_id, for_update=True)
        if override.status != "pending":
            raise InvalidStateError("Override request was already reviewed", current_state=override.status)
        # A finalized proof's checklist is frozen; rejecting still closes the request
        if decision == "approved" and proof.status in FINAL_PROOF_STATUSES:
            raise InvalidStateError("Proof is already finalized", current_state=proof.status)

        override.status = decision
        override.reviewed_by = actor.id
        override.reviewed_at = utcnow()
        override.review_notes = notes or ""

        item = None
        if decision == "approved":
            item = apply_override_to_checklist(proof, override, actor.id)
        append_history(
            proof.id, f"override_{decision}", actor.id, item_id=override.item_id,
            new_value=item, notes=f"Override {decision} for {override.item_id}",
        )
        record_event(
            action=f"override_{decision}",
            entity_type="override",
            entity_id=override.id,
            actor_id=actor.id,
            project_id=proof.project_id,
            description=f"Override {decision} for {override.item_id}: {override.reason}",
            metadata={"proof_id": proof.id, "item_id": override.item_id, "auto_approved": False},
        )
    logger.info("Override %s %s by admin %s", override_id, decision, actor.id)
    return override
