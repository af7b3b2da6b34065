"""
PhaseFlow
File validation models.

Models:
    - ValidationStandard: per-service technical acceptance criteria.
    - FileTechnicalSpec: latest extracted metadata + verdict for one file.
"""

from datetime import datetime, timezone

from phaseflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

RASTER_FORMATS = frozenset({"JPG", "JPEG", "PNG", "TIFF", "TIF"})

# Default standards per service line; seeded by ``flask seed-standards``
DEFAULT_STANDARDS = (
    {
        "service_code": "SP",
        "service_name": "Screen Printing",
        "allowed_formats": ["AI", "PDF", "SVG", "PNG", "PSD"],
        "preferred_formats": ["AI", "PDF"],
        "min_dpi": 150,
        "preferred_dpi": 300,
        "max_file_size_mb": 50,
        "required_color_modes": ["RGB", "CMYK"],
        "requires_bleed": False,
        "min_bleed_inches": 0,
    },
    {
        "service_code": "LFP",
        "service_name": "Large Format Print",
        "allowed_formats": ["AI", "PDF", "TIFF", "PSD", "PNG"],
        "preferred_formats": ["PDF", "TIFF"],
        "min_dpi": 100,
        "preferred_dpi": 150,
        "max_file_size_mb": 200,
        "required_color_modes": ["CMYK"],
        "requires_bleed": True,
        "min_bleed_inches": 0.125,
    },
    {
        "service_code": "GD",
        "service_name": "Graphic Design",
        "allowed_formats": ["AI", "PDF", "PSD", "SVG", "PNG"],
        "preferred_formats": ["AI", "PDF"],
        "min_dpi": 300,
        "preferred_dpi": 300,
        "max_file_size_mb": 100,
        "required_color_modes": ["CMYK", "RGB"],
        "requires_bleed": True,
        "min_bleed_inches": 0.125,
    },
    {
        "service_code": "BOOK",
        "service_name": "Book Cover",
        "allowed_formats": ["PDF", "AI", "PSD", "TIFF"],
        "preferred_formats": ["PDF"],
        "min_dpi": 300,
        "preferred_dpi": 300,
        "max_file_size_mb": 100,
        "required_color_modes": ["CMYK"],
        "requires_bleed": True,
        "min_bleed_inches": 0.125,
    },
    {
        "service_code": "WEB",
        "service_name": "Website Development",
        "allowed_formats": ["PNG", "JPG", "SVG", "WEBP", "PDF"],
        "preferred_formats": ["PNG", "SVG", "WEBP"],
        "min_dpi": 72,
        "preferred_dpi": 144,
        "max_file_size_mb": 25,
        "required_color_modes": ["RGB"],
        "requires_bleed": False,
        "min_bleed_inches": 0,
    },
)


class ValidationStandard(db.Model):
    """Technical acceptance criteria for files delivered under one service code."""

    __tablename__ = "validation_standards"

    id = db.Column(db.Integer, primary_key=True)
    service_code = db.Column(db.String(20), nullable=False, unique=True)
    service_name = db.Column(db.String(100), default="")
    allowed_formats = db.Column(db.JSON, nullable=False, default=list, comment="Upper-case extensions")
    preferred_formats = db.Column(db.JSON, nullable=False, default=list)
    min_dpi = db.Column(db.Integer, nullable=True)
    preferred_dpi = db.Column(db.Integer, nullable=True)
    max_file_size_mb = db.Column(db.Float, nullable=True)
    required_color_modes = db.Column(db.JSON, nullable=False, default=list)
    requires_bleed = db.Column(db.Boolean, nullable=False, default=False)
    min_bleed_inches = db.Column(db.Float, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "service_code": self.service_code,
            "service_name": self.service_name,
            "allowed_formats": list(self.allowed_formats or []),
            "preferred_formats": list(self.preferred_formats or []),
            "min_dpi": self.min_dpi,
            "preferred_dpi": self.preferred_dpi,
            "max_file_size_mb": self.max_file_size_mb,
            "required_color_modes": list(self.required_color_modes or []),
            "requires_bleed": self.requires_bleed,
            "min_bleed_inches": self.min_bleed_inches,
        }

    def __repr__(self):
        return f"<ValidationStandard {self.service_code}>"


class FileTechnicalSpec(db.Model):
    """
    Latest technical metadata for a file.

    One row per file, replaced on every validation run.
    """

    __tablename__ = "file_technical_specs"

    id = db.Column(db.Integer, primary_key=True)
    file_id = db.Column(
        db.Integer, db.ForeignKey("project_files.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    width_pixels = db.Column(db.Integer, nullable=True)
    height_pixels = db.Column(db.Integer, nullable=True)
    dpi_horizontal = db.Column(db.Integer, nullable=True)
    dpi_vertical = db.Column(db.Integer, nullable=True)
    color_mode = db.Column(db.String(20), nullable=True, comment="Grayscale | RGB | CMYK | Unknown")
    bit_depth = db.Column(db.Integer, nullable=True)
    has_bleed = db.Column(db.Boolean, nullable=False, default=False)
    is_print_ready = db.Column(db.Boolean, nullable=False, default=False)
    validation_errors = db.Column(db.JSON, nullable=False, default=list)
    validation_warnings = db.Column(db.JSON, nullable=False, default=list)
    analyzed_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                            onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "file_id": self.file_id,
            "width_pixels": self.width_pixels,
            "height_pixels": self.height_pixels,
            "dpi_horizontal": self.dpi_horizontal,
            "dpi_vertical": self.dpi_vertical,
            "color_mode": self.color_mode,
            "bit_depth": self.bit_depth,
            "has_bleed": self.has_bleed,
            "is_print_ready": self.is_print_ready,
            "validation_errors": list(self.validation_errors or []),
            "validation_warnings": list(self.validation_warnings or []),
            "analyzed_at": self.analyzed_at.isoformat() if self.analyzed_at else None,
        }

    def __repr__(self):
        return f"<FileTechnicalSpec file={self.file_id} ready={self.is_print_ready}>"
