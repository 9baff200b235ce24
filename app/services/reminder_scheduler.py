"""
Review reminder scheduler.

``schedule_reminder`` persists a reminder and returns its id as the job
handle.  ``dispatch_due_reminders`` (run by the ``reminder_dispatch`` job)
notifies the reviewer of due reminders whose request is still waiting in the
same review round and cancels the rest.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from app.models import db
from app.models.scheduling import ScheduledReminder
from app.models.workflow import RequestState, WorkflowEntity
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)


def schedule_reminder(entity_id: str, offset_days: int, *, kind: str = "first",
                      trigger_version: int = 0, now: datetime | None = None) -> int:
    """
    Schedule a reminder *offset_days* from now.

    Idempotent per (entity_id, kind, trigger_version): an existing handle is
    returned instead of creating a second reminder.  Flushes only.
    """
    existing = ScheduledReminder.query.filter_by(
        entity_id=entity_id, kind=kind, trigger_version=trigger_version,
    ).first()
    if existing:
        return existing.id

    now = now or datetime.now(timezone.utc)
    reminder = ScheduledReminder(
        entity_id=entity_id,
        kind=kind,
        offset_days=int(offset_days),
        trigger_version=trigger_version,
        due_at=now + timedelta(days=int(offset_days)),
        status="scheduled",
    )
    db.session.add(reminder)
    db.session.flush()
    logger.debug("Reminder %s scheduled for %s in %sd", kind, entity_id, offset_days)
    return reminder.id


def cancel_reminders(entity_id: str) -> int:
    """Cancel every outstanding reminder of an entity."""
    return ScheduledReminder.query.filter_by(
        entity_id=entity_id, status="scheduled",
    ).update({"status": "cancelled"}, synchronize_session="fetch")


def _as_aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on round trip
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def dispatch_due_reminders(now: datetime | None = None) -> dict:
    """Send every due reminder; returns counters."""
    now = now or datetime.now(timezone.utc)
    results = {"sent": 0, "cancelled": 0, "notifications_created": 0}

    due = (
        ScheduledReminder.query
        .filter(ScheduledReminder.status == "scheduled")
        .order_by(ScheduledReminder.due_at, ScheduledReminder.id)
        .all()
    )
    for reminder in due:
        if _as_aware(reminder.due_at) > now:
            continue
        entity = db.session.get(WorkflowEntity, reminder.entity_id)
        still_waiting = (
            entity is not None
            and entity.current_state == RequestState.REVIEW.value
            and entity.version == reminder.trigger_version
        )
        if not still_waiting:
            reminder.status = "cancelled"
            results["cancelled"] += 1
            continue

        recipients = [entity.assigned_to] if entity.assigned_to else []
        kind = "review_reminder"
        if reminder.kind == "escalation":
            kind = "review_escalation"
            if entity.raised_by and entity.raised_by not in recipients:
                recipients.append(entity.raised_by)

        for user_id in recipients:
            NotificationService.notify(
                user_id, kind,
                {"message": f"'{entity.title}' has been waiting for review "
                            f"{reminder.offset_days} day(s).",
                 "reminder": reminder.kind},
                entity_id=entity.id,
            )
            results["notifications_created"] += 1

        reminder.status = "sent"
        reminder.sent_at = now
        results["sent"] += 1

    db.session.commit()
    if results["sent"] or results["cancelled"]:
        logger.info("Reminder dispatch: %s", results)
    return results
