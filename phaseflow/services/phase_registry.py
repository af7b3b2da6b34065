"""
Phase Registry: phase catalog and requirement definitions.

The phase sequence itself is static (``phaseflow.models.phase.PHASES``);
requirements per phase are rows that admins may add, edit and remove.

Partial updates go through ``RequirementUpdate``: only fields that are set
(not ``UNSET``) change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select

from phaseflow.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from phaseflow.core.partial import UNSET, Unset, supplied
from phaseflow.models import db
from phaseflow.models.phase import (
    DEFAULT_REQUIREMENTS,
    PHASES,
    REQUIREMENT_TYPES,
    ProjectRequirementStatus,
    Requirement,
    get_phase,
)
from phaseflow.services.access import Actor, require_admin
from phaseflow.utils.helpers import transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequirementUpdate:
    """Mutable requirement fields; anything left ``UNSET`` is kept as-is."""

    phase_key: str | Unset = UNSET
    requirement_type: str | Unset = UNSET
    text: str | Unset = UNSET
    is_mandatory: bool | Unset = UNSET
    sort_order: int | Unset = UNSET

    @classmethod
    def from_payload(cls, data: dict) -> RequirementUpdate:
        mapping = {
            "phase_key": "phase_key",
            "type": "requirement_type",
            "requirement_type": "requirement_type",
            "text": "text",
            "is_mandatory": "is_mandatory",
            "sort_order": "sort_order",
        }
        values = {}
        for key, attr in mapping.items():
            if key in data:
                values[attr] = data[key]
        return cls(**values)

    def changes(self) -> dict:
        return supplied(self)


# ── Validation ───────────────────────────────────────────────────────────────

def _validate_fields(values: dict) -> None:
    errors = {}
    if "phase_key" in values and get_phase(values["phase_key"]) is None:
        errors["phase_key"] = f"Unknown phase. Must be one of: {', '.join(p.key for p in PHASES)}"
    if "requirement_type" in values and values["requirement_type"] not in REQUIREMENT_TYPES:
        errors["type"] = f"Must be one of: {', '.join(sorted(REQUIREMENT_TYPES))}"
    if "text" in values and (not isinstance(values["text"], str) or not values["text"].strip()):
        errors["text"] = "text is required"
    if "is_mandatory" in values and not isinstance(values["is_mandatory"], bool):
        errors["is_mandatory"] = "Must be a boolean"
    if "sort_order" in values and (
        isinstance(values["sort_order"], bool) or not isinstance(values["sort_order"], int)
    ):
        errors["sort_order"] = "Must be an integer"
    if errors:
        raise ValidationError("Invalid requirement fields", details=errors)


# ── Queries ──────────────────────────────────────────────────────────────────

def list_phases() -> list[dict]:
    return [{"key": p.key, "name": p.name, "order_index": p.order_index} for p in PHASES]


def list_requirements(phase_key: str | None = None) -> list[Requirement]:
    stmt = select(Requirement)
    if phase_key is not None:
        if get_phase(phase_key) is None:
            raise NotFoundError(resource="Phase", resource_id=phase_key)
        stmt = stmt.where(Requirement.phase_key == phase_key)
    rows = db.session.execute(stmt.order_by(Requirement.sort_order, Requirement.id)).scalars().all()
    if phase_key is None:
        order = {p.key: p.order_index for p in PHASES}
        rows.sort(key=lambda r: (order.get(r.phase_key, len(order)), r.sort_order, r.id))
    return rows


def get_requirement(requirement_id: int) -> Requirement:
    requirement = db.session.get(Requirement, requirement_id)
    if requirement is None:
        raise NotFoundError(resource="Requirement", resource_id=requirement_id)
    return requirement


# ── Admin mutations ──────────────────────────────────────────────────────────

def create_requirement(actor: Actor, data: dict) -> Requirement:
    require_admin(actor)
    values = RequirementUpdate.from_payload(data).changes()
    missing = [f for f in ("phase_key", "requirement_type", "text") if f not in values]
    if missing:
        raise ValidationError(
            f"{', '.join('type' if f == 'requirement_type' else f for f in missing)} required",
            details={f: "required" for f in missing},
        )
    _validate_fields(values)

    with transaction():
        if "sort_order" not in values:
            current_max = db.session.execute(
                select(func.max(Requirement.sort_order)).where(Requirement.phase_key == values["phase_key"])
            ).scalar()
            values["sort_order"] = (current_max or 0) + 1
        values["text"] = values["text"].strip()
        requirement = Requirement(
            is_mandatory=values.pop("is_mandatory", True),
            **values,
        )
        db.session.add(requirement)
    logger.info("Requirement %s created for phase %s", requirement.id, requirement.phase_key)
    return requirement


def update_requirement(actor: Actor, requirement_id: int, update: RequirementUpdate) -> Requirement:
    require_admin(actor)
    requirement = get_requirement(requirement_id)
    changes = update.changes()
    if not changes:
        raise ValidationError("No fields to update")
    _validate_fields(changes)
    if "text" in changes:
        changes["text"] = changes["text"].strip()

    with transaction():
        for attr, value in changes.items():
            setattr(requirement, attr, value)
    return requirement


def delete_requirement(actor: Actor, requirement_id: int) -> None:
    """Remove a requirement that no project has tracked yet.

    Tracked requirements keep their status rows (never deleted), so they
    cannot be removed.
    """
    require_admin(actor)
    requirement = get_requirement(requirement_id)
    tracked = db.session.execute(
        select(func.count(ProjectRequirementStatus.id))
        .where(ProjectRequirementStatus.requirement_id == requirement.id)
    ).scalar()
    if tracked:
        raise InvalidStateError(
            f"Requirement {requirement.id} is tracked by {tracked} project(s) and cannot be deleted",
            current_state="tracked",
        )
    with transaction():
        db.session.delete(requirement)


# ── Seeding ──────────────────────────────────────────────────────────────────

def seed_default_requirements() -> int:
    """Insert the default requirement catalog for phases that have none.

    Returns the number of rows added; the caller commits.
    """
    existing = set(db.session.execute(select(Requirement.phase_key).distinct()).scalars())
    added = 0
    order: dict[str, int] = {}
    for phase_key, req_type, text, mandatory in DEFAULT_REQUIREMENTS:
        if phase_key in existing:
            continue
        order[phase_key] = order.get(phase_key, 0) + 1
        db.session.add(Requirement(
            phase_key=phase_key,
            requirement_type=req_type,
            text=text,
            is_mandatory=mandatory,
            sort_order=order[phase_key],
        ))
        added += 1
    db.session.flush()
    return added
