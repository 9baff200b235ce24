"""
Construction Collaboration Platform
Notification Service.

In-app notification records.  Delivery transports (email, push) read from
this table and are outside the engine.
"""

from datetime import datetime, timezone

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.notification import NOTIFICATION_KINDS, Notification

_TITLES = {
    "additional_input_required": "Additional input required",
    "review_reminder": "Review reminder",
    "review_escalation": "Review overdue — escalated",
    "reviewer_assigned": "You were assigned as reviewer",
    "bid_accepted": "Your bid was accepted",
    "bid_rejected": "Your bid was not successful",
}

_SEVERITIES = {
    "review_escalation": "warning",
    "bid_accepted": "success",
}


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_id, kind, payload=None, *, entity_id=None):
        """
        Record a notification for *user_id*.

        Flushes only; the caller commits together with its own work.

        Returns:
            The created Notification instance.
        """
        if kind not in NOTIFICATION_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")
        payload = payload or {}
        notif = Notification(
            recipient=user_id,
            kind=kind,
            title=payload.get("title") or _TITLES[kind],
            message=payload.get("message", ""),
            severity=_SEVERITIES.get(kind, "info"),
            payload=payload,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def query_for_recipient(recipient, unread_only=False):
        """Newest-first query; the caller paginates."""
        q = Notification.query.filter_by(recipient=recipient)
        if unread_only:
            q = q.filter_by(is_read=False)
        return q.order_by(Notification.created_at.desc(), Notification.id.desc())

    @staticmethod
    def unread_count(recipient):
        return Notification.query.filter_by(recipient=recipient, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        notif = db.session.get(Notification, notification_id)
        if notif is None:
            raise NotFoundError("Notification", notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient):
        count = (Notification.query.filter_by(recipient=recipient, is_read=False)
                 .update({"is_read": True, "read_at": datetime.now(timezone.utc)},
                         synchronize_session="fetch"))
        db.session.commit()
        return count
