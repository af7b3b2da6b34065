"""
Tests: File Validation Engine.

Covers:
  - Scenario: PNG at 150 DPI against a 300 DPI standard fails with the resolution issue
  - Scenario: valid PNG + corrupt JPEG; the corrupt file passes with a warning
    and gets no technical-spec metadata
  - lenient default when a service has no standard
  - format, size, colour-mode and bleed rules with their exact messages
  - preferred format / DPI recommendations (never affect passed)
  - Pillow introspection: channels → colour mode, default density
  - validate_session persistence, inactive files, per-pair error capture,
    decoder crashes on the worker pool
"""

import struct

import pytest

from phaseflow.core.exceptions import AccessDeniedError
from phaseflow.models import db
from phaseflow.models.proof import ProofHistory, ProofSession
from phaseflow.models.validation import FileTechnicalSpec
from phaseflow.services import file_validation, proof_service
from phaseflow.services.file_validation import UNREADABLE_WARNING, detect_bleed
from phaseflow.services.image_inspector import ImageMetadata, UnreadableImageError, inspect_image


def _spec_for(file_id):
    db.session.expire_all()
    return FileTechnicalSpec.query.filter_by(file_id=file_id).one_or_none()


class TestScenarios:
    def test_low_resolution_png_fails(self, project, client_user, actor_for, make_standard, make_file, image_bytes):
        make_standard("PRINT", min_dpi=300)
        logo = make_file(project, "logo.png", image_bytes(dpi=(150, 150)))

        result = file_validation.validate(logo.id, "PRINT", actor_for(client_user))

        assert result == {
            "passed": False,
            "issues": ["Resolution 150 DPI below minimum 300 DPI"],
            "warnings": [],
            "recommendations": [],
        }
        spec = _spec_for(logo.id)
        assert spec.dpi_horizontal == 150
        assert spec.is_print_ready is False
        assert spec.validation_errors == ["Resolution 150 DPI below minimum 300 DPI"]

    def test_corrupt_jpeg_downgrades_to_warning(
        self, project, client_user, actor_for, make_standard, make_file, image_bytes,
    ):
        make_standard("PRINT", min_dpi=300)
        good = make_file(project, "cover.png", image_bytes(dpi=(300, 300)))
        corrupt = make_file(project, "photo.jpg", b"\xff\xd8\xff\xe0 definitely not a jpeg")
        actor = actor_for(client_user)
        proof = proof_service.create(project.id, None, ["PRINT"], actor)

        results = file_validation.validate_session(proof.id, actor)

        assert results[str(good.id)]["PRINT"] == {
            "passed": True, "issues": [], "warnings": [], "recommendations": [],
        }
        assert results[str(corrupt.id)]["PRINT"] == {
            "passed": True,
            "issues": [],
            "warnings": [UNREADABLE_WARNING],
            "recommendations": ["Consider using preferred formats: PNG"],
        }
        spec = _spec_for(corrupt.id)
        assert spec.width_pixels is None
        assert spec.dpi_horizontal is None
        assert spec.color_mode is None
        assert spec.validation_warnings == [UNREADABLE_WARNING]
        assert _spec_for(good.id).width_pixels == 60


class TestRules:
    def test_missing_standard_is_lenient(self, project, client_user, actor_for, make_file):
        file = make_file(project, "logo.png", b"irrelevant")
        result = file_validation.validate(file.id, "NOPE", actor_for(client_user))
        assert result == {
            "passed": True,
            "issues": [],
            "warnings": ["No validation standards found for service NOPE"],
            "recommendations": [],
        }
        assert _spec_for(file.id) is None

    def test_format_not_allowed(self, project, client_user, actor_for, make_standard, make_file):
        make_standard("PRINT", allowed_formats=["PNG", "JPG", "PDF"])
        file = make_file(project, "art.gif", b"GIF89a")
        result = file_validation.validate(file.id, "PRINT", actor_for(client_user))
        assert result["passed"] is False
        assert result["issues"] == ["File format GIF not allowed. Use: PNG, JPG, PDF"]

    def test_format_check_is_case_insensitive(self, project, client_user, actor_for, make_standard, make_file):
        make_standard("PRINT", allowed_formats=["pdf"])
        file = make_file(project, "brochure.PDF", b"%PDF-1.7")
        result = file_validation.validate(file.id, "PRINT", actor_for(client_user))
        assert result["passed"] is True

    def test_size_limit(self, project, client_user, actor_for, make_standard, make_file):
        make_standard("PRINT", max_file_size_mb=50)
        file = make_file(project, "brochure.pdf", b"%PDF-1.7", size_bytes=60 * 1024 * 1024)
        result = file_validation.validate(file.id, "PRINT", actor_for(client_user))
        assert result["issues"] == ["File size (60.0MB) exceeds maximum (50MB)"]

    def test_color_mode_is_only_a_warning(self, project, client_user, actor_for, make_standard, make_file, image_bytes):
        make_standard("PRINT", required_color_modes=["RGB", "CMYK"])
        file = make_file(project, "mono.png", image_bytes(mode="L"))
        result = file_validation.validate(file.id, "PRINT", actor_for(client_user))
        assert result["passed"] is True
        assert result["warnings"] == ["Color mode Grayscale should be RGB or CMYK"]
        assert _spec_for(file.id).color_mode == "Grayscale"

    def test_bleed_required_but_not_detected(self, project, client_user, actor_for, make_standard, make_file, image_bytes):
        make_standard("BOOK", requires_bleed=True, min_bleed_inches=0.125)
        file = make_file(project, "cover.png", image_bytes())
        result = file_validation.validate(file.id, "BOOK", actor_for(client_user))
        assert result["passed"] is False
        assert result["issues"] == ['Bleeds required (0.125") but not detected']

    def test_bleed_detected_for_letter_plus_bleed(
        self, project, client_user, actor_for, make_standard, make_file, image_bytes,
    ):
        make_standard("BOOK", requires_bleed=True, min_bleed_inches=0.125, min_dpi=100)
        # 8.75" x 11.25" at 100 DPI
        file = make_file(project, "flyer.png", image_bytes(size=(875, 1125), dpi=(100, 100), mode="L"))
        result = file_validation.validate(file.id, "BOOK", actor_for(client_user))
        assert not any("Bleeds" in issue for issue in result["issues"])
        assert _spec_for(file.id).has_bleed is True

    def test_detect_bleed_either_orientation(self):
        portrait = ImageMetadata(width=425, height=625, dpi_horizontal=100, dpi_vertical=100,
                                 channels=3, bit_depth=8, format="PNG")
        landscape = ImageMetadata(width=625, height=425, dpi_horizontal=100, dpi_vertical=100,
                                  channels=3, bit_depth=8, format="PNG")
        plain = ImageMetadata(width=400, height=600, dpi_horizontal=100, dpi_vertical=100,
                              channels=3, bit_depth=8, format="PNG")
        assert detect_bleed(portrait) is True
        assert detect_bleed(landscape) is True
        assert detect_bleed(plain) is False

    def test_non_preferred_format_is_recommended_against(
        self, project, client_user, actor_for, make_standard, make_file, image_bytes,
    ):
        make_standard("PRINT", allowed_formats=["PNG", "JPG"], preferred_formats=["PNG", "TIFF"])
        file = make_file(project, "photo.jpg", image_bytes(fmt="JPEG"))
        result = file_validation.validate(file.id, "PRINT", actor_for(client_user))
        assert result["passed"] is True
        assert result["issues"] == []
        assert result["recommendations"] == ["Consider using preferred formats: PNG, TIFF"]

    def test_disallowed_format_gets_no_recommendation(self, project, client_user, actor_for, make_standard, make_file):
        make_standard("PRINT", allowed_formats=["PNG"], preferred_formats=["PNG"])
        file = make_file(project, "art.gif", b"GIF89a")
        result = file_validation.validate(file.id, "PRINT", actor_for(client_user))
        assert result["recommendations"] == []

    def test_below_preferred_dpi_is_recommendation_only(
        self, project, client_user, actor_for, make_standard, make_file, image_bytes,
    ):
        make_standard("SP", min_dpi=150, preferred_dpi=300)
        file = make_file(project, "shirt.png", image_bytes(dpi=(200, 200)))
        result = file_validation.validate(file.id, "SP", actor_for(client_user))
        assert result["passed"] is True
        assert result["recommendations"] == ["Resolution 200 DPI meets the minimum; 300 DPI is preferred"]
        assert _spec_for(file.id).is_print_ready is True

    def test_access_denied_for_other_client(self, project, make_user, actor_for, make_standard, make_file, image_bytes):
        make_standard("PRINT")
        file = make_file(project, "logo.png", image_bytes())
        with pytest.raises(AccessDeniedError):
            file_validation.validate(file.id, "PRINT", actor_for(make_user()))


class TestImageInspector:
    def test_rgb_png(self, image_bytes):
        meta = inspect_image(image_bytes(size=(30, 20), dpi=(300, 300)))
        assert (meta.width, meta.height) == (30, 20)
        assert meta.dpi == 300
        assert meta.color_mode == "RGB"
        assert meta.bit_depth == 8
        assert meta.format == "PNG"

    def test_cmyk_jpeg(self, image_bytes):
        meta = inspect_image(image_bytes(fmt="JPEG", mode="CMYK", dpi=(200, 200)))
        assert meta.channels == 4
        assert meta.color_mode == "CMYK"

    def test_missing_density_defaults_to_72(self, image_bytes):
        meta = inspect_image(image_bytes(dpi=None))
        assert (meta.dpi_horizontal, meta.dpi_vertical) == (72, 72)

    def test_corrupt_bytes_raise(self):
        with pytest.raises(UnreadableImageError):
            inspect_image(b"garbage")

    @pytest.mark.parametrize("error", [EOFError(), struct.error("bad header"), IndexError("tile")])
    def test_decoder_errors_become_unreadable(self, error, image_bytes, monkeypatch):
        from phaseflow.services import image_inspector

        def _open(*args, **kwargs):
            raise error

        monkeypatch.setattr(image_inspector.Image, "open", _open)
        with pytest.raises(UnreadableImageError):
            inspect_image(image_bytes())


class TestValidateSession:
    def test_results_persisted_with_history(
        self, project, client_user, actor_for, make_standard, make_file, image_bytes,
    ):
        make_standard("PRINT")
        make_standard("WEB", min_dpi=72, allowed_formats=["PNG"], required_color_modes=["RGB"])
        file = make_file(project, "hero.png", image_bytes(dpi=(150, 150)))
        make_file(project, "old.png", image_bytes(), is_active=False)
        actor = actor_for(client_user)
        proof = proof_service.create(project.id, None, ["PRINT", "WEB"], actor)

        results = file_validation.validate_session(proof.id, actor, max_workers=2)

        assert list(results) == [str(file.id)]
        assert results[str(file.id)]["PRINT"]["passed"] is False
        assert results[str(file.id)]["WEB"]["passed"] is True

        db.session.expire_all()
        stored = db.session.get(ProofSession, proof.id)
        assert stored.validation_results == results
        assert ProofHistory.query.filter_by(proof_id=proof.id, action="validated").count() == 1
        spec = _spec_for(file.id)
        assert spec.validation_errors == ["Resolution 150 DPI below minimum 300 DPI"]
        assert spec.is_print_ready is False

    def test_unexpected_error_is_captured_per_pair(
        self, project, client_user, actor_for, make_standard, make_file, image_bytes, monkeypatch,
    ):
        make_standard("PRINT")
        file = make_file(project, "hero.png", image_bytes())
        actor = actor_for(client_user)
        proof = proof_service.create(project.id, None, ["PRINT"], actor)

        def _broken(*args, **kwargs):
            raise RuntimeError("decoder exploded")

        monkeypatch.setattr(file_validation, "evaluate", _broken)
        results = file_validation.validate_session(proof.id, actor)

        assert results[str(file.id)]["PRINT"] == {
            "passed": False,
            "issues": ["Validation error: decoder exploded"],
            "warnings": [],
            "recommendations": [],
        }

    @pytest.mark.parametrize("error", [EOFError(), struct.error("unpack requires a buffer of 4 bytes")])
    def test_decoder_crash_downgrades_to_warning(
        self, error, project, client_user, actor_for, make_standard, make_file, image_bytes, monkeypatch,
    ):
        make_standard("PRINT", allowed_formats=["TIF", "PNG"], preferred_formats=["TIF"])
        file = make_file(project, "scan.tif", image_bytes(fmt="TIFF"))
        actor = actor_for(client_user)
        proof = proof_service.create(project.id, None, ["PRINT"], actor)

        def _truncated(data):
            raise error

        monkeypatch.setattr(file_validation, "inspect_image", _truncated)
        results = file_validation.validate_session(proof.id, actor)

        assert results[str(file.id)]["PRINT"] == {
            "passed": True, "issues": [], "warnings": [UNREADABLE_WARNING], "recommendations": [],
        }
        assert _spec_for(file.id).width_pixels is None
