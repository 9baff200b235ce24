"""
Construction Collaboration Platform
Workflow domain models — request (RFI) and tender lifecycles.

Models:
    - WorkflowEntity:    request-type record (information request or tender)
                         carrying a denormalized ``current_state``
    - TransitionRecord:  immutable, append-only lifecycle history
    - ProjectReviewer:   reviewer pool used by auto-assignment

Lifecycle states:
    request:  draft → review → approved → responded → closed
              review → additional_input_required → review
              review → revision_required → review
    tender:   draft → open → closed → awarded  |  draft/open → cancelled

Status columns are plain strings in the database but only ever hold values
of the closed enums below; anything else is rejected on assignment.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy.orm import validates

from app.core.exceptions import ValidationError
from app.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Enums ────────────────────────────────────────────────────────────────────

class EntityKind(str, Enum):
    REQUEST = "request"
    TENDER = "tender"


class RequestState(str, Enum):
    DRAFT = "draft"
    REVIEW = "review"
    ADDITIONAL_INPUT_REQUIRED = "additional_input_required"
    REVISION_REQUIRED = "revision_required"
    APPROVED = "approved"
    RESPONDED = "responded"
    CLOSED = "closed"


class RequestAction(str, Enum):
    SUBMIT_FOR_REVIEW = "submit_for_review"
    APPROVE = "approve"
    REQUEST_ADDITIONAL_INPUT = "request_additional_input"
    REQUEST_REVISION = "request_revision"
    PROVIDE_INPUT = "provide_input"
    RESPOND = "respond"
    CLOSE = "close"


class TenderState(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    AWARDED = "awarded"
    CANCELLED = "cancelled"


class TenderAction(str, Enum):
    PUBLISH = "publish"
    CLOSE = "close"
    AWARD = "award"
    CANCEL = "cancel"


STATES_BY_KIND = {
    EntityKind.REQUEST: RequestState,
    EntityKind.TENDER: TenderState,
}

ACTIONS_BY_KIND = {
    EntityKind.REQUEST: RequestAction,
    EntityKind.TENDER: TenderAction,
}

INITIAL_STATE = {
    EntityKind.REQUEST: RequestState.DRAFT,
    EntityKind.TENDER: TenderState.DRAFT,
}

REQUEST_PRIORITIES = {"low", "medium", "high", "urgent"}


def coerce_kind(value) -> EntityKind:
    """Return the EntityKind for *value* or raise ValidationError."""
    try:
        return EntityKind(value)
    except ValueError:
        raise ValidationError(
            f"Unknown entity_kind '{value}'",
            details={"entity_kind": sorted(k.value for k in EntityKind)},
        ) from None


def coerce_state(kind, value):
    """Return the state enum member of *kind* for *value* or raise ValidationError."""
    states = STATES_BY_KIND[coerce_kind(kind)]
    try:
        return states(value)
    except ValueError:
        raise ValidationError(
            f"Unknown {EntityKind(kind).value} state '{value}'",
            details={"state": sorted(s.value for s in states)},
        ) from None


class WorkflowEntity(db.Model):
    """
    A request or tender moving through its lifecycle.

    ``current_state`` is written only by the transition executor and always
    equals ``to_state`` of the latest TransitionRecord (or the initial state
    of the kind while the history is empty).  ``version`` increments with
    every committed transition and is the optimistic-concurrency token.
    """

    __tablename__ = "workflow_entities"
    __table_args__ = (
        db.Index("idx_wfe_project_kind_state", "project_id", "entity_kind", "current_state"),
        db.Index("idx_wfe_assigned_state", "assigned_to", "current_state"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(db.Integer, nullable=True, index=True)
    entity_kind = db.Column(
        db.String(10), nullable=False,
        comment="request | tender",
    )
    current_state = db.Column(
        db.String(30), nullable=False,
        comment="Denormalized: to_state of the latest transition",
    )
    version = db.Column(db.Integer, nullable=False, default=0)

    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True, comment="Question text / tender scope")

    # Request ownership
    raised_by = db.Column(db.String(150), nullable=True, index=True)
    assigned_to = db.Column(db.String(150), nullable=True)

    # Tender ownership
    issued_by = db.Column(db.String(150), nullable=True, index=True)
    awarded_to = db.Column(db.String(150), nullable=True)

    # Domain payload, opaque to the engine
    response_text = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(10), nullable=True, default="medium")
    due_date = db.Column(db.Date, nullable=True)
    budget = db.Column(db.Numeric(14, 2), nullable=True)
    deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    evaluation_criteria = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=_utcnow, onupdate=_utcnow)

    transitions = db.relationship(
        "TransitionRecord", backref="entity", lazy="dynamic",
        order_by="TransitionRecord.sequence",
    )
    bids = db.relationship("TenderBid", backref="tender", lazy="dynamic")

    # ── Validation ───────────────────────────────────────────────────────

    @validates("entity_kind")
    def _validate_kind(self, key, value):
        return coerce_kind(value).value

    @validates("current_state")
    def _validate_state(self, key, value):
        if self.entity_kind is None:
            for states in STATES_BY_KIND.values():
                if value in {s.value for s in states}:
                    return states(value).value
            raise ValidationError(f"Unknown state '{value}'")
        return coerce_state(self.entity_kind, value).value

    @validates("priority")
    def _validate_priority(self, key, value):
        if value is not None and value not in REQUEST_PRIORITIES:
            raise ValidationError(
                f"Unknown priority '{value}'",
                details={"priority": sorted(REQUEST_PRIORITIES)},
            )
        return value

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def kind(self) -> EntityKind:
        return EntityKind(self.entity_kind)

    @property
    def state(self):
        return STATES_BY_KIND[self.kind](self.current_state)

    def to_dict(self):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "entity_kind": self.entity_kind,
            "current_state": self.current_state,
            "version": self.version,
            "title": self.title,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.entity_kind == EntityKind.REQUEST.value:
            d.update({
                "raised_by": self.raised_by,
                "assigned_to": self.assigned_to,
                "response_text": self.response_text,
                "priority": self.priority,
                "due_date": self.due_date.isoformat() if self.due_date else None,
            })
        else:
            d.update({
                "issued_by": self.issued_by,
                "awarded_to": self.awarded_to,
                "budget": float(self.budget) if self.budget is not None else None,
                "deadline": self.deadline.isoformat() if self.deadline else None,
                "evaluation_criteria": self.evaluation_criteria,
            })
        return d

    def __repr__(self):
        return f"<WorkflowEntity {self.entity_kind}/{self.id} [{self.current_state}]>"


class TransitionRecord(db.Model):
    """
    Immutable lifecycle event.

    ``sequence`` is the entity version produced by this transition; the
    unique (entity_id, sequence) pair makes two writers that read the same
    version unable to both append.
    """

    __tablename__ = "workflow_transitions"
    __table_args__ = (
        db.UniqueConstraint("entity_id", "sequence", name="uq_wft_entity_sequence"),
        db.Index("idx_wft_entity_created", "entity_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(
        db.String(36), db.ForeignKey("workflow_entities.id", ondelete="RESTRICT"),
        nullable=False,
    )
    sequence = db.Column(db.Integer, nullable=False)
    from_state = db.Column(db.String(30), nullable=False)
    to_state = db.Column(db.String(30), nullable=False)
    action = db.Column(db.String(40), nullable=False)
    actor_id = db.Column(db.String(150), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @validates("action")
    def _validate_action(self, key, value):
        value = getattr(value, "value", value)
        if not any(value in {a.value for a in actions} for actions in ACTIONS_BY_KIND.values()):
            raise ValidationError(f"Unknown action '{value}'")
        return value

    @validates("from_state", "to_state")
    def _validate_states(self, key, value):
        value = getattr(value, "value", value)
        if not any(value in {s.value for s in states} for states in STATES_BY_KIND.values()):
            raise ValidationError(f"Unknown state '{value}'", details={key: value})
        return value

    def to_dict(self):
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "sequence": self.sequence,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "action": self.action,
            "actor_id": self.actor_id,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (f"<TransitionRecord {self.entity_id}#{self.sequence}: "
                f"{self.from_state}→{self.to_state} ({self.action})>")


class ProjectReviewer(db.Model):
    """Reviewer pool entry consulted when a request enters review unassigned."""

    __tablename__ = "project_reviewers"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_reviewer"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, nullable=False, index=True)
    user_id = db.Column(db.String(150), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
