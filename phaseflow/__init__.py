"""
PhaseFlow
Flask Application Factory.

Usage:
    from phaseflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from phaseflow.config import config
from phaseflow.models import db
from phaseflow.middleware.identity import init_identity
from phaseflow.middleware.logging_config import configure_logging
from phaseflow.middleware.rate_limiter import init_rate_limits
from phaseflow.middleware.timing import init_request_timing
from phaseflow.services.phase_transition import PhaseTransitionEngine

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    if not app.config.get("TESTING"):
        os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing, then caller identity ─────────────────────────────
    init_request_timing(app)
    init_identity(app)

    # ── Phase engine (auto-advance fixed at startup) ─────────────────────
    app.extensions["phase_engine"] = PhaseTransitionEngine.from_config(app.config)

    # ── Import all models so Alembic can detect them ─────────────────────
    from phaseflow.models import audit as _audit_models              # noqa: F401
    from phaseflow.models import auth as _auth_models                # noqa: F401
    from phaseflow.models import notification as _notification_models  # noqa: F401
    from phaseflow.models import phase as _phase_models              # noqa: F401
    from phaseflow.models import project as _project_models          # noqa: F401
    from phaseflow.models import proof as _proof_models              # noqa: F401
    from phaseflow.models import validation as _validation_models    # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from phaseflow.blueprints.audit_bp import audit_bp
    from phaseflow.blueprints.health_bp import health_bp
    from phaseflow.blueprints.notification_bp import notification_bp
    from phaseflow.blueprints.phase_bp import phase_bp
    from phaseflow.blueprints.proof_bp import proof_bp

    app.register_blueprint(phase_bp)
    app.register_blueprint(proof_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-requirements")
    def seed_requirements_cmd():
        """Seed the default per-phase requirement catalog."""
        from phaseflow.services.phase_registry import seed_default_requirements
        count = seed_default_requirements()
        db.session.commit()
        logger.info("Seeded %s new phase requirements.", count)

    @app.cli.command("seed-standards")
    def seed_standards_cmd():
        """Seed the default validation standards (SP, LFP, GD, BOOK, WEB)."""
        from phaseflow.services.standards import seed_default_standards
        count = seed_default_standards()
        db.session.commit()
        logger.info("Seeded %s new validation standards.", count)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
