"""
Construction Collaboration Platform
Operational audit model.

Models:
    - AuditLog: append-only record of engine events that are not state
      transitions (dead-lettered side effects, award reconciliation).

State transitions themselves live in ``workflow_transitions``.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import validates

from app.core.exceptions import ValidationError
from app.models import db

AUDIT_ACTIONS = frozenset({
    "side_effect.dead_lettered",
    "award.reconciliation_required",
    "award.reconciled",
    "award.reconciliation_failed",
})


class AuditLog(db.Model):
    """One operational event; ``diff`` holds its structured detail."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(30), nullable=False,
                            comment="request | tender | side_effect_task")
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(150), nullable=False, default="system")
    diff = db.Column(db.JSON, nullable=False, default=dict)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False,
                          default=lambda: datetime.now(timezone.utc))

    @validates("action")
    def _validate_action(self, key, value):
        if value not in AUDIT_ACTIONS:
            raise ValidationError(f"Unknown audit action '{value}'",
                                  details={"action": sorted(AUDIT_ACTIONS)})
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff or {},
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


def write_audit(*, entity_type: str, entity_id, action: str, actor: str = "system",
                diff: dict | None = None) -> AuditLog:
    """Add one audit row and flush; the caller owns the commit."""
    row = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        diff=_jsonable(diff or {}),
    )
    db.session.add(row)
    db.session.flush()
    return row


def _jsonable(value):
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
