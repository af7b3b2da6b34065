"""
PhaseFlow
Notification Service.

Creates in-app notifications for workflow events (proof ready, proof
approved) and serves the per-user inbox.  Callers invoke it after their
own commit and log, rather than propagate, any failure.
"""

from datetime import datetime, timezone

from phaseflow.core.exceptions import NotFoundError
from phaseflow.models import db
from phaseflow.models.auth import User
from phaseflow.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, notification_type, title, content="", action_ref="", recipient_role=""):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            user_id=user_id,
            recipient_role=recipient_role,
            notification_type=notification_type,
            title=title,
            content=content,
            action_ref=action_ref,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def notify_role(role, *, notification_type, title, content="", action_ref=""):
        """
        Fan a notification out to every active user holding ``role``.

        Returns:
            List of created Notification instances.
        """
        users = User.query.filter_by(role=role, is_active=True).order_by(User.id).all()
        notifications = []
        for user in users:
            notif = Notification(
                user_id=user.id,
                recipient_role=role,
                notification_type=notification_type,
                title=title,
                content=content,
                action_ref=action_ref,
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.
        """
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one of the user's notifications as read."""
        notif = db.session.get(Notification, notification_id)
        if not notif or notif.user_id != user_id:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all of the user's notifications as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count
