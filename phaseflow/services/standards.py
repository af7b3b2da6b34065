"""
Standards Store: per-service validation standards.

Rows are read once per validation run into immutable ``StandardSpec``
snapshots that are safe to share across worker threads.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select

from phaseflow.models import db
from phaseflow.models.validation import DEFAULT_STANDARDS, ValidationStandard


@dataclass(frozen=True)
class StandardSpec:
    service_code: str
    allowed_formats: tuple[str, ...]
    max_file_size_mb: float | None
    min_dpi: int | None
    required_color_modes: tuple[str, ...]
    requires_bleed: bool
    min_bleed_inches: float
    preferred_formats: tuple[str, ...] = ()
    preferred_dpi: int | None = None

    @classmethod
    def from_model(cls, row: ValidationStandard) -> StandardSpec:
        return cls(
            service_code=row.service_code,
            allowed_formats=tuple(row.allowed_formats or ()),
            max_file_size_mb=row.max_file_size_mb,
            min_dpi=row.min_dpi,
            required_color_modes=tuple(row.required_color_modes or ()),
            requires_bleed=bool(row.requires_bleed),
            min_bleed_inches=row.min_bleed_inches or 0,
            preferred_formats=tuple(row.preferred_formats or ()),
            preferred_dpi=row.preferred_dpi,
        )


def get_standard(service_code: str) -> StandardSpec | None:
    row = db.session.execute(
        select(ValidationStandard).where(ValidationStandard.service_code == service_code)
    ).scalar_one_or_none()
    return StandardSpec.from_model(row) if row else None


def load_standards(service_codes) -> dict[str, StandardSpec | None]:
    """Snapshot the standards for ``service_codes``; unknown codes map to None."""
    codes = list(dict.fromkeys(service_codes))
    rows = db.session.execute(
        select(ValidationStandard).where(ValidationStandard.service_code.in_(codes))
    ).scalars().all() if codes else []
    found = {row.service_code: StandardSpec.from_model(row) for row in rows}
    return {code: found.get(code) for code in codes}


def seed_default_standards() -> int:
    """Insert default standards for service codes not yet configured.  Caller commits."""
    existing = set(db.session.execute(select(ValidationStandard.service_code)).scalars())
    added = 0
    for spec in DEFAULT_STANDARDS:
        if spec["service_code"] in existing:
            continue
        db.session.add(ValidationStandard(**spec))
        added += 1
    db.session.flush()
    return added
