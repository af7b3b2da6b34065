"""
Activity feed blueprint.

Endpoints:
    GET  /api/v1/projects/<pid>/activity  - paginated audit events of a project
"""

from flask import Blueprint, jsonify, request

from phaseflow.middleware.identity import current_actor
from phaseflow.models.audit import AuditLog
from phaseflow.services.access import authorize_project
from phaseflow.services.lookups import get_project
from phaseflow.utils.errors import register_error_handlers

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")
register_error_handlers(audit_bp)


@audit_bp.route("/projects/<int:project_id>/activity", methods=["GET"])
def project_activity(project_id):
    """
    Return the project's audit events, newest first.

    Query params:
        entity_type  - filter by entity type
        entity_id    - filter by entity PK
        action       - filter by action string (prefix match)
        actor_id     - filter by acting user
        page         - page number (default 1)
        per_page     - items per page (default 50, max 200)
    """
    project = get_project(project_id)
    authorize_project(current_actor(), project)

    q = AuditLog.query.filter(AuditLog.project_id == project.id)

    # ── Filters ──────────────────────────────────────────────────────────
    entity_type = request.args.get("entity_type")
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)

    entity_id = request.args.get("entity_id")
    if entity_id:
        q = q.filter(AuditLog.entity_id == entity_id)

    action = request.args.get("action")
    if action:
        q = q.filter(AuditLog.action.startswith(action))

    actor_id = request.args.get("actor_id", type=int)
    if actor_id is not None:
        q = q.filter(AuditLog.actor_id == actor_id)

    q = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())

    # ── Pagination ───────────────────────────────────────────────────────
    page = max(1, request.args.get("page", 1, type=int))
    per_page = min(200, max(1, request.args.get("per_page", 50, type=int)))

    paginated = q.paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        "activity": [log.to_dict() for log in paginated.items],
        "total": paginated.total,
        "page": paginated.page,
        "per_page": paginated.per_page,
        "pages": paginated.pages,
    })
