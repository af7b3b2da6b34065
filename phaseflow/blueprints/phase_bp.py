"""
Phase blueprint.

Endpoints:
    GET    /api/v1/phases                                   - phase catalog
    GET    /api/v1/requirements[?phase=KEY]                 - requirement catalog
    POST   /api/v1/requirements                             - create (admin)
    PUT    /api/v1/requirements/<id>                        - partial update (admin)
    DELETE /api/v1/requirements/<id>                        - delete untracked (admin)
    GET    /api/v1/projects/<pid>/requirements              - current-phase checklist
    POST   /api/v1/projects/<pid>/requirements/<rid>        - toggle completion
    GET    /api/v1/projects/<pid>/phase                     - phase status
    POST   /api/v1/projects/<pid>/phase/advance             - manual advance (admin)
    GET    /api/v1/projects/<pid>/phase/history             - transition history
"""

from flask import Blueprint, current_app, jsonify, request

from phaseflow.core.exceptions import ValidationError
from phaseflow.middleware.identity import current_actor
from phaseflow.services import phase_registry
from phaseflow.services.phase_registry import RequirementUpdate
from phaseflow.services.requirement_gate import project_requirements
from phaseflow.utils.errors import register_error_handlers
from phaseflow.utils.helpers import json_body, parse_bool

phase_bp = Blueprint("phase", __name__, url_prefix="/api/v1")
register_error_handlers(phase_bp)


def _engine():
    return current_app.extensions["phase_engine"]


# ── Catalog ──────────────────────────────────────────────────────────────────

@phase_bp.route("/phases", methods=["GET"])
def list_phases():
    current_actor()
    return jsonify(phase_registry.list_phases())


@phase_bp.route("/requirements", methods=["GET"])
def list_requirements():
    current_actor()
    phase_key = request.args.get("phase") or None
    rows = phase_registry.list_requirements(phase_key)
    return jsonify([r.to_dict() for r in rows])


@phase_bp.route("/requirements", methods=["POST"])
def create_requirement():
    requirement = phase_registry.create_requirement(current_actor(), json_body())
    return jsonify(requirement.to_dict()), 201


@phase_bp.route("/requirements/<int:requirement_id>", methods=["PUT"])
def update_requirement(requirement_id):
    update = RequirementUpdate.from_payload(json_body())
    requirement = phase_registry.update_requirement(current_actor(), requirement_id, update)
    return jsonify(requirement.to_dict())


@phase_bp.route("/requirements/<int:requirement_id>", methods=["DELETE"])
def delete_requirement(requirement_id):
    phase_registry.delete_requirement(current_actor(), requirement_id)
    return jsonify({"deleted": True, "id": requirement_id})


# ── Project requirements ─────────────────────────────────────────────────────

@phase_bp.route("/projects/<int:project_id>/requirements", methods=["GET"])
def get_project_requirements(project_id):
    view = project_requirements(project_id, current_actor(), request.args.get("phase") or None)
    return jsonify(view)


@phase_bp.route("/projects/<int:project_id>/requirements/<int:requirement_id>", methods=["POST"])
def toggle_requirement(project_id, requirement_id):
    actor = current_actor()
    data = json_body()
    if "completed" not in data:
        raise ValidationError("completed required", details={"completed": "required"})
    completed = parse_bool(data["completed"], "completed")
    result = _engine().record_requirement(project_id, requirement_id, completed, actor)
    return jsonify(result)


# ── Phase state ──────────────────────────────────────────────────────────────

@phase_bp.route("/projects/<int:project_id>/phase", methods=["GET"])
def get_phase_status(project_id):
    return jsonify(_engine().phase_status(project_id, current_actor()))


@phase_bp.route("/projects/<int:project_id>/phase/advance", methods=["POST"])
def advance_phase(project_id):
    actor = current_actor()
    reason = json_body().get("reason") or ""
    outcome = _engine().advance(project_id, actor, reason=str(reason))
    return jsonify(outcome.to_dict())


@phase_bp.route("/projects/<int:project_id>/phase/history", methods=["GET"])
def phase_history(project_id):
    rows = _engine().history(project_id, current_actor())
    return jsonify([r.to_dict() for r in rows])
