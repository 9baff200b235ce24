"""
Tender award coordinator.

Resolves the bid family of an awarded tender: the winner becomes
``accepted`` and every sibling ``rejected``.  There is no multi-row
transaction to lean on, so the work is two idempotent statements:

    1. accept winner            (positive half of the invariant)
    2. reject all but winner    (negative half)

If either statement fails the tender keeps its authoritative ``awarded``
state and an ``AwardReconciliation`` row is left ``pending``; the
``award_reconciliation`` job replays both statements until the family
converges.  A second bid is never accepted for the same tender.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import AwardReconciliationRequired, ConflictError, InvalidTransition, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.tender import AwardReconciliation, BidStatus
from app.models.workflow import TenderAction, TenderState
from app.services.workflow_store import WorkflowStore

logger = logging.getLogger(__name__)

CONVERGED = "converged"
PENDING = "pending_reconciliation"


def _max_attempts() -> int:
    if has_app_context():
        return current_app.config.get("AWARD_RECONCILE_MAX_ATTEMPTS", 10)
    return 10


class AwardCoordinator:

    def __init__(self, store: WorkflowStore | None = None):
        self.store = store or WorkflowStore()

    # ── Invariant ────────────────────────────────────────────────────────

    def check_invariant(self, tender_id: str) -> bool:
        """True when exactly one bid is accepted and all others are rejected."""
        bids = self.store.list_bids_for_tender(tender_id)
        accepted = [b for b in bids if b.status == BidStatus.ACCEPTED.value]
        others = [b for b in bids if b.status != BidStatus.ACCEPTED.value]
        return len(accepted) == 1 and all(b.status == BidStatus.REJECTED.value for b in others)

    def _guard(self, tender_id: str, winning_bid_id: str):
        tender = self.store.load_entity(tender_id)
        if tender.current_state != TenderState.AWARDED.value:
            raise InvalidTransition(tender_id, TenderAction.AWARD.value, tender.current_state,
                                    "bids are resolved only once the tender is awarded")

        bids = self.store.list_bids_for_tender(tender_id)
        winner = next((b for b in bids if b.id == winning_bid_id), None)
        if winner is None:
            raise ValidationError(f"Bid {winning_bid_id} does not belong to tender {tender_id}",
                                  details={"winning_bid_id": winning_bid_id})
        if tender.awarded_to and winner.bidder_id != tender.awarded_to:
            raise ConflictError("Tender award", "awarded_to", tender.awarded_to)
        already = [b.id for b in bids
                   if b.status == BidStatus.ACCEPTED.value and b.id != winning_bid_id]
        if already:
            raise ConflictError("Accepted bid", "tender_id", tender_id)
        return tender, winner

    # ── Award ────────────────────────────────────────────────────────────

    def award(self, tender_id: str, winning_bid_id: str) -> dict:
        """
        Accept *winning_bid_id* and reject its siblings.

        Safe to call repeatedly with the same winner.

        Raises:
            AwardReconciliationRequired: a statement failed; reconciliation
                has been scheduled and the tender stays awarded.
            ConflictError: a different bid is already accepted.
        """
        self._guard(tender_id, winning_bid_id)

        phase = "accept"
        try:
            self.store.update_bid_status(winning_bid_id, BidStatus.ACCEPTED)
            self.store.commit()
            phase = "reject"
            rejected = self.store.reject_bids_except(tender_id, winning_bid_id)
            self.store.commit()
        except SQLAlchemyError as exc:
            self.store.rollback()
            self._mark_pending(tender_id, winning_bid_id, f"{phase}: {exc}")
            raise AwardReconciliationRequired(tender_id, winning_bid_id, f"{phase} phase failed") from exc

        self._mark_converged_if_pending(tender_id)
        logger.info("Tender %s awarded to bid %s (%d sibling(s) rejected)",
                    tender_id, winning_bid_id, rejected,
                    extra={"entity_id": tender_id, "action": TenderAction.AWARD.value})
        return {"tender_id": tender_id, "winning_bid_id": winning_bid_id,
                "award_status": CONVERGED, "rejected": rejected}

    # ── Reconciliation ───────────────────────────────────────────────────

    def _mark_pending(self, tender_id: str, winning_bid_id: str, error: str) -> None:
        row = AwardReconciliation.query.filter_by(tender_id=tender_id).first()
        if row is None:
            row = AwardReconciliation(tender_id=tender_id, winning_bid_id=winning_bid_id)
            db.session.add(row)
        row.status = "pending"
        row.last_error = error[:2000]
        row.resolved_at = None
        write_audit(
            entity_type="tender",
            entity_id=tender_id,
            action="award.reconciliation_required",
            diff={"winning_bid_id": winning_bid_id, "error": error},
        )
        db.session.commit()
        logger.warning("Award of %s pending reconciliation: %s", tender_id, error,
                       extra={"entity_id": tender_id})

    def _mark_converged_if_pending(self, tender_id: str) -> None:
        row = AwardReconciliation.query.filter_by(tender_id=tender_id).first()
        if row is None or row.status == "converged":
            return
        row.status = "converged"
        row.resolved_at = datetime.now(timezone.utc)
        write_audit(
            entity_type="tender",
            entity_id=tender_id,
            action="award.reconciled",
            diff={"winning_bid_id": row.winning_bid_id, "attempts": row.attempts},
        )
        db.session.commit()

    def reconcile(self, tender_id: str) -> bool:
        """Replay the award statements for one pending tender; True once converged."""
        row = AwardReconciliation.query.filter_by(tender_id=tender_id).first()
        if row is None or row.status == "converged":
            return True
        winning_bid_id = row.winning_bid_id

        try:
            self._guard(tender_id, winning_bid_id)
            self.store.update_bid_status(winning_bid_id, BidStatus.ACCEPTED)
            self.store.reject_bids_except(tender_id, winning_bid_id)
            self.store.commit()
        except (SQLAlchemyError, ConflictError, ValidationError, InvalidTransition) as exc:
            self.store.rollback()
            row = AwardReconciliation.query.filter_by(tender_id=tender_id).first()
            row.attempts += 1
            row.last_error = str(exc)[:2000]
            if row.attempts >= _max_attempts():
                row.status = "failed"
                write_audit(
                    entity_type="tender",
                    entity_id=tender_id,
                    action="award.reconciliation_failed",
                    diff={"winning_bid_id": winning_bid_id, "attempts": row.attempts,
                          "error": row.last_error},
                )
                logger.error("Award reconciliation for %s gave up after %d attempts: %s",
                             tender_id, row.attempts, exc, extra={"entity_id": tender_id})
            else:
                logger.warning("Award reconciliation for %s failed (attempt %d): %s",
                               tender_id, row.attempts, exc, extra={"entity_id": tender_id})
            db.session.commit()
            return False

        row = AwardReconciliation.query.filter_by(tender_id=tender_id).first()
        row.attempts += 1
        db.session.commit()
        if not self.check_invariant(tender_id):
            return False
        self._mark_converged_if_pending(tender_id)
        logger.info("Award of %s reconciled after %d attempt(s)", tender_id, row.attempts,
                    extra={"entity_id": tender_id})
        return True

    def reconcile_pending(self) -> dict:
        results = {"checked": 0, "converged": 0, "still_pending": 0}
        tender_ids = [r.tender_id for r in
                      AwardReconciliation.query.filter_by(status="pending")
                      .order_by(AwardReconciliation.id).all()]
        for tender_id in tender_ids:
            results["checked"] += 1
            if self.reconcile(tender_id):
                results["converged"] += 1
            else:
                results["still_pending"] += 1
        return results
