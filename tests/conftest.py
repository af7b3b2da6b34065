"""
Shared pytest fixtures for the PhaseFlow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_project / make_file / make_standard: ORM factories
    - auth_headers: Bearer token headers for a user
    - requirements: default requirement catalog, seeded
"""

import io
import itertools

import jwt
import pytest
from PIL import Image

from phaseflow import create_app
from phaseflow.models import db as _db
from phaseflow.models.auth import User
from phaseflow.models.phase import get_phase
from phaseflow.models.project import Project, ProjectFile
from phaseflow.models.validation import ValidationStandard
from phaseflow.services.access import Actor
from phaseflow.services.phase_registry import seed_default_requirements
from phaseflow.services.phase_transition import initialize_phase_tracking

TEST_JWT_SECRET = "phaseflow-test-secret"

_seq = itertools.count(1)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db, tmp_path):
    """Per-test: open app context, rollback after test, recreate tables."""
    app.config["UPLOAD_FOLDER"] = str(tmp_path)
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


def _make_user(role="client", email=None, first_name="Test", last_name="User"):
    n = next(_seq)
    user = User(
        email=email or f"{role}{n}@example.com",
        first_name=first_name,
        last_name=f"{last_name} {n}",
        role=role,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


def _make_project(client=None, name="Brand Refresh", phase_key="ONB"):
    phase = get_phase(phase_key)
    project = Project(
        name=name,
        client_id=client.id if client else None,
        current_phase_key=phase.key,
        current_phase_index=phase.order_index,
    )
    _db.session.add(project)
    _db.session.flush()
    initialize_phase_tracking(project)
    _db.session.commit()
    return project


def _make_standard(service_code, **overrides):
    values = {
        "service_code": service_code,
        "service_name": service_code,
        "allowed_formats": ["PNG", "JPG", "PDF"],
        "preferred_formats": ["PNG"],
        "min_dpi": 300,
        "preferred_dpi": 300,
        "max_file_size_mb": 50,
        "required_color_modes": ["RGB", "CMYK"],
        "requires_bleed": False,
        "min_bleed_inches": 0,
    }
    values.update(overrides)
    standard = ValidationStandard(**values)
    _db.session.add(standard)
    _db.session.commit()
    return standard


def _image_bytes(fmt="PNG", size=(60, 40), dpi=(300, 300), mode="RGB"):
    """Render a tiny solid image in memory."""
    buf = io.BytesIO()
    Image.new(mode, size, color=0).save(buf, format=fmt, dpi=dpi)
    return buf.getvalue()


@pytest.fixture()
def make_user():
    return _make_user


@pytest.fixture()
def make_project():
    return _make_project


@pytest.fixture()
def make_standard():
    return _make_standard


@pytest.fixture()
def make_file(tmp_path):
    """Write bytes under the upload folder and register a ProjectFile for them."""

    def _make(project, name, data, size_bytes=None, is_active=True):
        rel = f"{next(_seq)}_{name}"
        (tmp_path / rel).write_bytes(data)
        file = ProjectFile(
            project_id=project.id,
            original_name=name,
            file_path=rel,
            file_size=len(data) if size_bytes is None else size_bytes,
            is_active=is_active,
        )
        _db.session.add(file)
        _db.session.commit()
        return file

    return _make


# ── Identity helpers ─────────────────────────────────────────────────────


def _actor_for(user) -> Actor:
    return Actor(id=user.id, role=user.role)


def _auth_headers(user, secret=TEST_JWT_SECRET):
    token = jwt.encode({"sub": str(user.id), "role": user.role}, secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def requirements():
    """Seed the default requirement catalog."""
    seed_default_requirements()
    _db.session.commit()


@pytest.fixture()
def admin():
    return _make_user(role="admin", first_name="Ada", last_name="Admin")


@pytest.fixture()
def client_user():
    return _make_user(role="client", first_name="Cleo", last_name="Client")


@pytest.fixture()
def project(client_user):
    return _make_project(client=client_user)


@pytest.fixture()
def actor_for():
    """Build the service-layer Actor for a User."""
    return _actor_for


@pytest.fixture()
def auth_headers():
    """Authorization headers carrying an HS256 token for a User."""
    return _auth_headers


@pytest.fixture()
def image_bytes():
    return _image_bytes
