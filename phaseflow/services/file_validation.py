"""
File Validation Engine.

Checks delivered files against the per-service ``ValidationStandard``:

    format  → extension must be allowed                    (issue)
    size    → must not exceed max_file_size_mb             (issue)
    raster files (JPG/JPEG/PNG/TIFF/TIF) only:
      dpi   → lower of horizontal/vertical ≥ min_dpi       (issue)
      color → channel-derived mode in required modes       (warning)
      bleed → required bleed must be detected              (issue)

Files that pass but miss the standard's preferred format or preferred DPI
get a recommendation; recommendations never affect ``passed``.

Lenient by default: a service without a standard passes with a warning,
and an image whose metadata cannot be read (for any reason) passes with a
warning.

``validate_session`` runs in three steps.  It snapshots files and
standards and ends the read transaction, then decodes images on a thread
pool with no database access, and finally writes every technical spec
and the session's ``validation_results`` in a single commit.  Abandoning
the call before that commit leaves nothing behind.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import select

from phaseflow.core.exceptions import NotFoundError
from phaseflow.models import db
from phaseflow.models.project import ProjectFile
from phaseflow.models.validation import RASTER_FORMATS, FileTechnicalSpec
from phaseflow.services.access import Actor, authorize_project
from phaseflow.services.audit_trail import record_event
from phaseflow.services.file_storage import FileRef, FileStorage
from phaseflow.services.image_inspector import ImageMetadata, UnreadableImageError, inspect_image
from phaseflow.services.lookups import get_project, get_proof
from phaseflow.services.proof_service import append_history
from phaseflow.services.standards import StandardSpec, get_standard, load_standards
from phaseflow.utils.helpers import transaction

logger = logging.getLogger(__name__)

UNREADABLE_WARNING = "Could not fully validate file technical specifications"

# Finished print sizes plus bleed, in inches (width, height)
_BLEED_SIZES = (
    (8.75, 11.25),   # Letter
    (9.25, 12.25),   # Tabloid
    (3.75, 2.25),    # Business card
    (4.25, 6.25),    # Postcard
)
_BLEED_TOLERANCE_IN = 0.1


@dataclass
class FileCheck:
    """Outcome of one file against one service standard."""

    passed: bool = True
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    metadata: ImageMetadata | None = None
    has_bleed: bool = False
    analysed: bool = False

    def fail(self, message: str) -> None:
        self.passed = False
        self.issues.append(message)

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class Extraction:
    metadata: ImageMetadata | None = None
    error: str | None = None


def _fmt(number) -> str:
    return f"{number:g}"


def detect_bleed(meta: ImageMetadata) -> bool:
    """Best-effort: the physical size matches a common print size plus bleed."""
    width_in = meta.width / meta.dpi_horizontal
    height_in = meta.height / meta.dpi_vertical
    for w, h in _BLEED_SIZES:
        for bw, bh in ((w, h), (h, w)):
            if abs(width_in - bw) < _BLEED_TOLERANCE_IN and abs(height_in - bh) < _BLEED_TOLERANCE_IN:
                return True
    return False


def is_raster(file: FileRef) -> bool:
    return file.extension in RASTER_FORMATS


def extract(file: FileRef, storage: FileStorage) -> Extraction:
    """Read and decode one file; failures are reported, not raised.

    Runs on the validation pool, so any decoder error becomes an
    ``Extraction`` with ``error`` set instead of escaping ``pool.map``.
    """
    try:
        return Extraction(metadata=inspect_image(storage.read_bytes(file)))
    except (UnreadableImageError, OSError) as exc:
        logger.warning("Could not read image metadata for file %s: %s", file.id, exc)
        return Extraction(error=str(exc))
    except Exception as exc:
        logger.warning("Image decoder failed for file %s", file.id, exc_info=True)
        return Extraction(error=str(exc) or exc.__class__.__name__)


def evaluate(file: FileRef, service_code: str, standard: StandardSpec | None,
             extraction: Extraction | None) -> FileCheck:
    """Apply one standard to one file.  ``extraction`` is required for raster files."""
    check = FileCheck()
    if standard is None:
        check.warnings.append(f"No validation standards found for service {service_code}")
        return check

    allowed = [f.upper() for f in standard.allowed_formats]
    if file.extension not in allowed:
        check.fail(f"File format {file.extension} not allowed. Use: {', '.join(standard.allowed_formats)}")
    elif standard.preferred_formats and file.extension not in [f.upper() for f in standard.preferred_formats]:
        check.recommendations.append(
            f"Consider using preferred formats: {', '.join(standard.preferred_formats)}"
        )

    if standard.max_file_size_mb is not None and file.size_mb > standard.max_file_size_mb:
        check.fail(
            f"File size ({file.size_mb:.1f}MB) exceeds maximum ({_fmt(standard.max_file_size_mb)}MB)"
        )

    if not is_raster(file):
        return check

    check.analysed = True
    if extraction is None or extraction.metadata is None:
        check.warnings.append(UNREADABLE_WARNING)
        return check

    meta = extraction.metadata
    check.metadata = meta
    if standard.min_dpi and meta.dpi < standard.min_dpi:
        check.fail(f"Resolution {meta.dpi} DPI below minimum {standard.min_dpi} DPI")
    elif standard.preferred_dpi and meta.dpi < standard.preferred_dpi:
        check.recommendations.append(
            f"Resolution {meta.dpi} DPI meets the minimum; {standard.preferred_dpi} DPI is preferred"
        )

    if standard.required_color_modes and meta.color_mode not in standard.required_color_modes:
        check.warnings.append(
            f"Color mode {meta.color_mode} should be {' or '.join(standard.required_color_modes)}"
        )

    check.has_bleed = detect_bleed(meta)
    if standard.requires_bleed and not check.has_bleed:
        check.fail(f'Bleeds required ({_fmt(standard.min_bleed_inches)}") but not detected')

    return check


# ── Persistence ──────────────────────────────────────────────────────────────

def _store_technical_spec(file_id: int, checks: list[FileCheck]) -> FileTechnicalSpec | None:
    """Replace the file's technical spec with the merged verdict of ``checks``.

    Only raster files that were analysed against at least one standard get
    a row.  An unreadable image stores empty metadata with its warning.
    """
    analysed = [c for c in checks if c.analysed]
    if not analysed:
        return None

    meta = next((c.metadata for c in analysed if c.metadata is not None), None)
    errors: list[str] = []
    warnings: list[str] = []
    for check in analysed:
        errors.extend(i for i in check.issues if i not in errors)
        warnings.extend(w for w in check.warnings if w not in warnings)

    spec = db.session.execute(
        select(FileTechnicalSpec).where(FileTechnicalSpec.file_id == file_id)
    ).scalar_one_or_none()
    if spec is None:
        spec = FileTechnicalSpec(file_id=file_id)
        db.session.add(spec)

    spec.width_pixels = meta.width if meta else None
    spec.height_pixels = meta.height if meta else None
    spec.dpi_horizontal = meta.dpi_horizontal if meta else None
    spec.dpi_vertical = meta.dpi_vertical if meta else None
    spec.color_mode = meta.color_mode if meta else None
    spec.bit_depth = meta.bit_depth if meta else None
    spec.has_bleed = any(c.has_bleed for c in analysed)
    spec.is_print_ready = meta is not None and all(c.passed for c in analysed)
    spec.validation_errors = errors
    spec.validation_warnings = warnings
    return spec


# ── Public API ───────────────────────────────────────────────────────────────

def _get_file(file_id: int) -> ProjectFile:
    file = db.session.get(ProjectFile, file_id)
    if file is None:
        raise NotFoundError(resource="ProjectFile", resource_id=file_id)
    return file


def validate(file_id: int, service_code: str, actor: Actor, storage: FileStorage | None = None) -> dict:
    """Validate one file against one service and store its technical spec."""
    file = _get_file(file_id)
    authorize_project(actor, get_project(file.project_id))
    storage = storage or FileStorage.from_app()

    ref = FileRef.from_model(file)
    standard = get_standard(service_code)
    extraction = extract(ref, storage) if standard is not None and is_raster(ref) else None
    check = evaluate(ref, service_code, standard, extraction)

    with transaction():
        _store_technical_spec(ref.id, [check])
    return check.to_dict()


def validate_session(
    proof_id: int,
    actor: Actor,
    storage: FileStorage | None = None,
    max_workers: int | None = None,
) -> dict[str, dict[str, dict]]:
    """Validate every active project file against every service on the proof.

    Returns ``{file_id: {service_code: {passed, issues, warnings}}}`` (file
    ids as strings, matching the stored JSON).
    """
    proof = get_proof(proof_id)
    authorize_project(actor, get_project(proof.project_id))
    storage = storage or FileStorage.from_app()
    max_workers = max_workers or current_app.config.get("VALIDATION_MAX_WORKERS", 4)

    services = list(proof.services or [])
    files = [
        FileRef.from_model(f)
        for f in ProjectFile.query.filter_by(project_id=proof.project_id, is_active=True)
        .order_by(ProjectFile.id).all()
    ]
    standards = load_standards(services)
    # Release the read transaction before decoding images
    db.session.commit()

    to_decode = [
        f for f in files
        if is_raster(f) and any(standards.get(code) is not None for code in services)
    ]
    extractions: dict[int, Extraction] = {}
    if to_decode:
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="validate") as pool:
            for ref, extraction in zip(to_decode, pool.map(lambda f: extract(f, storage), to_decode)):
                extractions[ref.id] = extraction

    results: dict[str, dict[str, dict]] = {}
    checks_by_file: dict[int, list[FileCheck]] = {}
    for ref in files:
        per_service = {}
        for code in services:
            try:
                check = evaluate(ref, code, standards.get(code), extractions.get(ref.id))
            except Exception as exc:
                logger.exception("Validation of file %s for %s failed", ref.id, code)
                check = FileCheck(passed=False, issues=[f"Validation error: {exc}"])
            per_service[code] = check.to_dict()
            checks_by_file.setdefault(ref.id, []).append(check)
        results[str(ref.id)] = per_service

    with transaction():
        for file_id, checks in checks_by_file.items():
            _store_technical_spec(file_id, checks)
        proof = get_proof(proof_id, for_update=True)
        proof.validation_results = results
        failed = sum(1 for per in results.values() for r in per.values() if not r["passed"])
        append_history(
            proof.id, "validated", actor.id,
            new_value={"files": len(results), "failed_checks": failed},
            notes=f"Validated {len(files)} file(s) against {len(services)} service(s)",
        )
        record_event(
            action="proof_validated",
            entity_type="proof",
            entity_id=proof.id,
            actor_id=actor.id,
            project_id=proof.project_id,
            description=f"Validated {len(files)} file(s) for proof #{proof.proof_number}",
            metadata={"services": services, "failed_checks": failed},
        )

    logger.info(
        "Validated proof %s: %d file(s) x %d service(s)",
        proof_id, len(files), len(services),
        extra={"project_id": proof.project_id},
    )
    return results
