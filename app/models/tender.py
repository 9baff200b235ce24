"""
Construction Collaboration Platform
Tender family models — bids and award reconciliation.

Models:
    - TenderBid:            child bid submitted against a tender
    - AwardReconciliation:  pending "reject everyone except the winner" replay
                            for an award whose multi-row update did not finish

Award invariant:
    once a tender is ``awarded`` exactly one of its bids is ``accepted`` and
    every other bid of the same tender is ``rejected``.
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


# ── Constants ────────────────────────────────────────────────────────────────

class BidStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


SCORE_FIELDS = (
    "price_score",
    "experience_score",
    "timeline_score",
    "technical_score",
    "communication_score",
)

# criterion weight key → score field
CRITERIA_FIELDS = {
    "price_weight": "price_score",
    "experience_weight": "experience_score",
    "timeline_weight": "timeline_score",
    "technical_weight": "technical_score",
    "communication_weight": "communication_score",
}

DEFAULT_EVALUATION_CRITERIA = {
    "price_weight": 40,
    "experience_weight": 20,
    "timeline_weight": 20,
    "technical_weight": 15,
    "communication_weight": 5,
}

RECONCILIATION_STATUSES = {"pending", "converged", "failed"}


def coerce_bid_status(value) -> BidStatus:
    try:
        return BidStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown bid status '{value}'",
            details={"status": sorted(s.value for s in BidStatus)},
        ) from None


class TenderBid(db.Model):
    """
    A bidder's proposal against a tender.

    One bid per bidder per tender.  Evaluation scores are optional until an
    evaluator fills them in; ``overall_score`` is their weighted sum using the
    tender's evaluation criteria.
    """

    __tablename__ = "tender_bids"
    __table_args__ = (
        db.UniqueConstraint("tender_id", "bidder_id", name="uq_tender_bid_bidder"),
        db.Index("idx_tender_bid_status", "tender_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    tender_id = db.Column(
        db.String(36), db.ForeignKey("workflow_entities.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    bidder_id = db.Column(db.String(150), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default=BidStatus.SUBMITTED.value,
        comment="submitted | under_review | accepted | rejected",
    )
    estimated_duration_days = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Evaluation
    price_score = db.Column(db.Float, nullable=True)
    experience_score = db.Column(db.Float, nullable=True)
    timeline_score = db.Column(db.Float, nullable=True)
    technical_score = db.Column(db.Float, nullable=True)
    communication_score = db.Column(db.Float, nullable=True)
    overall_score = db.Column(db.Float, nullable=True)
    evaluator_id = db.Column(db.String(150), nullable=True)
    evaluator_notes = db.Column(db.Text, nullable=True)
    evaluated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=_utcnow, onupdate=_utcnow)

    @validates("status")
    def _validate_status(self, key, value):
        return coerce_bid_status(value).value

    def to_dict(self):
        return {
            "id": self.id,
            "tender_id": self.tender_id,
            "bidder_id": self.bidder_id,
            "amount": float(self.amount) if self.amount is not None else None,
            "status": self.status,
            "estimated_duration_days": self.estimated_duration_days,
            "notes": self.notes,
            "scores": {f: getattr(self, f) for f in SCORE_FIELDS},
            "overall_score": self.overall_score,
            "evaluator_id": self.evaluator_id,
            "evaluator_notes": self.evaluator_notes,
            "evaluated_at": self.evaluated_at.isoformat() if self.evaluated_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }

    def __repr__(self):
        return f"<TenderBid {self.id} tender={self.tender_id} [{self.status}]>"


class AwardReconciliation(db.Model):
    """
    Outstanding award convergence work, one row per tender.

    ``pending`` rows are replayed by the reconciliation job until every
    sibling of ``winning_bid_id`` is rejected, then flipped to ``converged``.
    """

    __tablename__ = "award_reconciliations"

    id = db.Column(db.Integer, primary_key=True)
    tender_id = db.Column(
        db.String(36), db.ForeignKey("workflow_entities.id", ondelete="RESTRICT"),
        nullable=False, unique=True,
    )
    winning_bid_id = db.Column(
        db.String(36), db.ForeignKey("tender_bids.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status = db.Column(db.String(20), nullable=False, default="pending")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @validates("status")
    def _validate_status(self, key, value):
        if value not in RECONCILIATION_STATUSES:
            raise ValidationError(f"Unknown reconciliation status '{value}'")
        return value

    def to_dict(self):
        return {
            "id": self.id,
            "tender_id": self.tender_id,
            "winning_bid_id": self.winning_bid_id,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }

    def __repr__(self):
        return f"<AwardReconciliation tender={self.tender_id} [{self.status}]>"
