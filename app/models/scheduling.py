"""
Construction Collaboration Platform
Scheduling models — background work that runs outside the request path.

Models:
    - ScheduledJob:      persisted job registry (run history + config)
    - SideEffectTask:    outbound task queue fed by state entry
    - ScheduledReminder: reminder handles created by the reminder scheduler
"""

from datetime import datetime, timezone

from sqlalchemy.orm import validates

from app.core.exceptions import ValidationError
from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = {"pending", "done", "dead"}
TASK_KINDS = {
    "schedule_reminders",
    "auto_assign_reviewer",
    "notify_input_required",
    "notify_award",
}
REMINDER_KINDS = {"first", "second", "escalation"}
REMINDER_STATUSES = {"scheduled", "sent", "cancelled"}


def _utcnow():
    return datetime.now(timezone.utc)


class ScheduledJob(db.Model):
    """
    Registry of scheduled background jobs.

    Tracks job configuration, last run time, and run history.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="Unique job identifier: side_effect_drain, award_reconciliation, ...")
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(30), default="interval",
                              comment="cron, interval, once")
    schedule_config = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), default="active",
                       comment="active, paused, completed, failed")
    is_enabled = db.Column(db.Boolean, default=True)

    # Execution tracking
    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True,
                                comment="success, failed, skipped")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        """Record a job execution."""
        self.last_run_at = _utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_type": self.schedule_type,
            "schedule_config": self.schedule_config,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"


class SideEffectTask(db.Model):
    """
    One unit of follow-up work triggered by entering a state.

    Idempotent per (entity_id, kind, trigger_version): re-enqueueing the same
    trigger is a no-op.  Tasks that keep failing are moved to ``dead``.
    """

    __tablename__ = "side_effect_tasks"
    __table_args__ = (
        db.UniqueConstraint("entity_id", "kind", "trigger_version",
                            name="uq_side_effect_trigger"),
        db.Index("idx_side_effect_due", "status", "next_attempt_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(db.String(36), nullable=False, index=True)
    state = db.Column(db.String(30), nullable=False, comment="State whose entry triggered the task")
    kind = db.Column(db.String(40), nullable=False)
    trigger_version = db.Column(db.Integer, nullable=False)
    payload = db.Column(db.JSON, default=dict)

    status = db.Column(db.String(20), nullable=False, default="pending")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    next_attempt_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @validates("kind")
    def _validate_kind(self, key, value):
        if value not in TASK_KINDS:
            raise ValidationError(f"Unknown side-effect kind '{value}'")
        return value

    @validates("status")
    def _validate_status(self, key, value):
        if value not in TASK_STATUSES:
            raise ValidationError(f"Unknown side-effect status '{value}'")
        return value

    def to_dict(self):
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "state": self.state,
            "kind": self.kind,
            "trigger_version": self.trigger_version,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "last_error": self.last_error,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<SideEffectTask {self.id} {self.kind}@{self.entity_id}v{self.trigger_version} [{self.status}]>"


class ScheduledReminder(db.Model):
    """A reminder due at ``due_at``; its id is the job handle returned to callers."""

    __tablename__ = "scheduled_reminders"
    __table_args__ = (
        db.UniqueConstraint("entity_id", "kind", "trigger_version",
                            name="uq_reminder_trigger"),
        db.Index("idx_reminder_due", "status", "due_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(db.String(36), nullable=False, index=True)
    kind = db.Column(db.String(20), nullable=False, comment="first | second | escalation")
    offset_days = db.Column(db.Integer, nullable=False)
    trigger_version = db.Column(db.Integer, nullable=False, default=0)
    due_at = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="scheduled")
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @validates("kind")
    def _validate_kind(self, key, value):
        if value not in REMINDER_KINDS:
            raise ValidationError(f"Unknown reminder kind '{value}'")
        return value

    @validates("status")
    def _validate_status(self, key, value):
        if value not in REMINDER_STATUSES:
            raise ValidationError(f"Unknown reminder status '{value}'")
        return value

    def to_dict(self):
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "kind": self.kind,
            "offset_days": self.offset_days,
            "trigger_version": self.trigger_version,
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "status": self.status,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    def __repr__(self):
        return f"<ScheduledReminder {self.id} {self.kind}@{self.entity_id} [{self.status}]>"
