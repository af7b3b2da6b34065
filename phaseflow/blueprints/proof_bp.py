"""
Proof blueprint: proof sessions, checklist overrides, file validation,
approvals and the downloadable proof report.

Endpoints:
    GET  /api/v1/projects/<pid>/proofs             - current proof with approvals
    GET  /api/v1/projects/<pid>/proofs/all         - every proof of the project
    POST /api/v1/projects/<pid>/proofs             - start a proof session
    GET  /api/v1/proofs/<id>                       - one proof
    PUT  /api/v1/proofs/<id>                       - replace checklist / validation results
    PUT  /api/v1/proofs/<id>/items/<item_id>       - check / uncheck one item
    POST /api/v1/proofs/<id>/submit                - created → ready
    POST /api/v1/proofs/<id>/validate-files        - validate every project file
    GET  /api/v1/proofs/<id>/history               - proof history
    GET  /api/v1/proofs/<id>/report                - .xlsx proof report
    GET  /api/v1/proofs/<id>/overrides             - override requests
    POST /api/v1/proofs/<id>/overrides             - request an override
    POST /api/v1/overrides/<id>/review             - approve / reject (admin)
    GET  /api/v1/proofs/<id>/approvals             - approvals of a proof
    POST /api/v1/proofs/<id>/approvals             - sign off or reject
    POST /api/v1/files/<id>/validate               - validate one file for one service
"""

import logging

from flask import Blueprint, jsonify, request, send_file

from phaseflow.core.exceptions import ValidationError
from phaseflow.middleware.identity import current_actor
from phaseflow.services import approval_ledger, file_validation, proof_service
from phaseflow.services.proof_report import build_report_data, render_report_xlsx
from phaseflow.services.proof_service import ProofUpdate
from phaseflow.utils.errors import register_error_handlers
from phaseflow.utils.helpers import client_ip, json_body, parse_bool

logger = logging.getLogger(__name__)

proof_bp = Blueprint("proof", __name__, url_prefix="/api/v1")
register_error_handlers(proof_bp)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ── Proof sessions ───────────────────────────────────────────────────────────

@proof_bp.route("/projects/<int:project_id>/proofs", methods=["GET"])
def get_current_proof(project_id):
    proof = proof_service.get_current(project_id, current_actor())
    return jsonify({"proof": proof.to_dict(include_approvals=True) if proof else None})


@proof_bp.route("/projects/<int:project_id>/proofs/all", methods=["GET"])
def list_proofs(project_id):
    proofs = proof_service.list_sessions(project_id, current_actor())
    return jsonify([p.to_dict() for p in proofs])


@proof_bp.route("/projects/<int:project_id>/proofs", methods=["POST"])
def create_proof(project_id):
    actor = current_actor()
    data = json_body()
    proof = proof_service.create(
        project_id,
        data.get("phase_key"),
        data.get("services"),
        actor,
        checklist_state=data.get("checklist_state"),
    )
    return jsonify(proof.to_dict()), 201


@proof_bp.route("/proofs/<int:proof_id>", methods=["GET"])
def get_proof(proof_id):
    proof = proof_service.load_session(proof_id, current_actor())
    return jsonify(proof.to_dict(include_approvals=True))


@proof_bp.route("/proofs/<int:proof_id>", methods=["PUT"])
def update_proof(proof_id):
    actor = current_actor()
    proof = proof_service.update_session(proof_id, ProofUpdate.from_payload(json_body()), actor)
    return jsonify(proof.to_dict())


@proof_bp.route("/proofs/<int:proof_id>/items/<item_id>", methods=["PUT"])
def set_checklist_item(proof_id, item_id):
    actor = current_actor()
    data = json_body()
    if "checked" not in data:
        raise ValidationError("checked required", details={"checked": "required"})
    item = proof_service.set_checklist_item(
        proof_id, item_id, parse_bool(data["checked"], "checked"), actor,
        notes=str(data.get("notes") or ""),
    )
    return jsonify({"item_id": item_id, "item": item})


@proof_bp.route("/proofs/<int:proof_id>/submit", methods=["POST"])
def submit_proof(proof_id):
    proof = proof_service.submit_for_approval(proof_id, current_actor())
    return jsonify(proof.to_dict())


@proof_bp.route("/proofs/<int:proof_id>/history", methods=["GET"])
def proof_history(proof_id):
    rows = proof_service.list_history(proof_id, current_actor())
    return jsonify([r.to_dict() for r in rows])


# ── Validation ───────────────────────────────────────────────────────────────

@proof_bp.route("/proofs/<int:proof_id>/validate-files", methods=["POST"])
def validate_files(proof_id):
    results = file_validation.validate_session(proof_id, current_actor())
    return jsonify({"proof_id": proof_id, "validation_results": results})


@proof_bp.route("/files/<int:file_id>/validate", methods=["POST"])
def validate_file(file_id):
    actor = current_actor()
    service_code = json_body().get("service_code")
    if not service_code or not isinstance(service_code, str):
        raise ValidationError("service_code required", details={"service_code": "required"})
    result = file_validation.validate(file_id, service_code.strip().upper(), actor)
    return jsonify(result)


# ── Report ───────────────────────────────────────────────────────────────────

@proof_bp.route("/proofs/<int:proof_id>/report", methods=["GET"])
def proof_report(proof_id):
    data = build_report_data(proof_id, current_actor())
    buf = render_report_xlsx(data)
    filename = f"Proof_{data['proof_number']}_Project{data['project_id']}_{data['phase_key']}.xlsx"
    return send_file(buf, mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)


# ── Overrides ────────────────────────────────────────────────────────────────

@proof_bp.route("/proofs/<int:proof_id>/overrides", methods=["GET"])
def list_overrides(proof_id):
    rows = proof_service.list_overrides(proof_id, current_actor())
    return jsonify([r.to_dict() for r in rows])


@proof_bp.route("/proofs/<int:proof_id>/overrides", methods=["POST"])
def request_override(proof_id):
    actor = current_actor()
    data = json_body()
    override = proof_service.request_override(proof_id, data.get("item_id"), data.get("reason"), actor)
    return jsonify(override.to_dict()), 201


@proof_bp.route("/overrides/<int:override_id>/review", methods=["POST"])
def review_override(override_id):
    actor = current_actor()
    data = json_body()
    override = approval_ledger.review_override(
        override_id, actor, data.get("decision"), notes=str(data.get("notes") or ""),
    )
    return jsonify(override.to_dict())


# ── Approvals ────────────────────────────────────────────────────────────────

@proof_bp.route("/proofs/<int:proof_id>/approvals", methods=["GET"])
def list_approvals(proof_id):
    rows = approval_ledger.list_approvals(proof_id, current_actor())
    return jsonify([r.to_dict() for r in rows])


@proof_bp.route("/proofs/<int:proof_id>/approvals", methods=["POST"])
def submit_approval(proof_id):
    actor = current_actor()
    data = json_body()
    approval = approval_ledger.submit_approval(
        proof_id,
        actor,
        status=data.get("status"),
        notes=str(data.get("notes") or ""),
        signature_data=data.get("signature_data"),
        ip_address=client_ip(),
        user_agent=request.headers.get("User-Agent"),
        approver_name=data.get("approver_name"),
        approver_email=data.get("approver_email"),
    )
    return jsonify(approval.to_dict()), 201
