"""
Notification blueprint: the caller's in-app inbox.

Endpoints:
    GET  /api/v1/notifications[?unread_only=true&limit=&offset=]
    POST /api/v1/notifications/<id>/read
    POST /api/v1/notifications/read-all
"""

from flask import Blueprint, jsonify, request

from phaseflow.middleware.identity import current_actor
from phaseflow.services.notification import NotificationService
from phaseflow.utils.errors import register_error_handlers

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    actor = current_actor()
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = min(200, max(1, request.args.get("limit", 50, type=int)))
    offset = max(0, request.args.get("offset", 0, type=int))

    items, total = NotificationService.list_for_user(
        actor.id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(actor.id),
    })


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, current_actor().id)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    count = NotificationService.mark_all_read(current_actor().id)
    return jsonify({"marked_read": count})
