"""
Workflow persistent store.

The only module that issues writes against ``workflow_entities``,
``workflow_transitions`` and ``tender_bids``.  Writes are flushed, never
committed; the caller owns the transaction boundary through ``commit`` /
``rollback``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConcurrentModification, NotFoundError
from app.models import db
from app.models.tender import BidStatus, TenderBid, coerce_bid_status
from app.models.workflow import TransitionRecord, WorkflowEntity, coerce_state

logger = logging.getLogger(__name__)


class WorkflowStore:
    """SQLAlchemy-backed store for entities, transitions and bids."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    # ── Entities ─────────────────────────────────────────────────────────

    def load_entity(self, entity_id: str) -> WorkflowEntity:
        entity = self.session.get(WorkflowEntity, entity_id, populate_existing=True)
        if entity is None:
            raise NotFoundError("WorkflowEntity", entity_id)
        return entity

    def add_entity(self, entity: WorkflowEntity) -> WorkflowEntity:
        self.session.add(entity)
        self.session.flush()
        return entity

    def conditional_update_state(
        self,
        entity_id: str,
        expected_state: str,
        new_state: str,
        *,
        expected_version: int,
        extra_values: dict | None = None,
    ) -> int:
        """
        Move the entity to *new_state* only if it is still at
        (*expected_state*, *expected_version*).

        Returns the new version.  Raises ConcurrentModification when the
        guard matched no row.
        """
        entity = self.session.get(WorkflowEntity, entity_id)
        kind = entity.entity_kind if entity is not None else None
        if kind is not None:
            new_state = coerce_state(kind, new_state).value

        values = {
            "current_state": new_state,
            "version": expected_version + 1,
            "updated_at": datetime.now(timezone.utc),
        }
        values.update(extra_values or {})
        result = self.session.execute(
            update(WorkflowEntity)
            .where(
                WorkflowEntity.id == entity_id,
                WorkflowEntity.current_state == expected_state,
                WorkflowEntity.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModification(entity_id, expected_state, expected_version)
        return expected_version + 1

    def set_fields(self, entity_id: str, **values) -> None:
        """Write non-state columns (assignee, response text) of an entity."""
        values.pop("current_state", None)
        values.pop("version", None)
        values["updated_at"] = datetime.now(timezone.utc)
        self.session.execute(
            update(WorkflowEntity)
            .where(WorkflowEntity.id == entity_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    # ── Transitions ──────────────────────────────────────────────────────

    def append_transition(self, record: TransitionRecord) -> TransitionRecord:
        self.session.add(record)
        try:
            self.session.flush()
        except IntegrityError:
            # another writer already appended this sequence number
            raise ConcurrentModification(record.entity_id, record.from_state,
                                         record.sequence - 1) from None
        return record

    def read_history(self, entity_id: str) -> list[TransitionRecord]:
        return list(
            self.session.scalars(
                select(TransitionRecord)
                .where(TransitionRecord.entity_id == entity_id)
                .order_by(TransitionRecord.sequence, TransitionRecord.id)
            )
        )

    def latest_transition(self, entity_id: str) -> TransitionRecord | None:
        return self.session.scalars(
            select(TransitionRecord)
            .where(TransitionRecord.entity_id == entity_id)
            .order_by(TransitionRecord.sequence.desc(), TransitionRecord.id.desc())
            .limit(1)
        ).first()

    # ── Bids ─────────────────────────────────────────────────────────────

    def load_bid(self, bid_id: str) -> TenderBid:
        bid = self.session.get(TenderBid, bid_id, populate_existing=True)
        if bid is None:
            raise NotFoundError("TenderBid", bid_id)
        return bid

    def list_bids_for_tender(self, tender_id: str) -> list[TenderBid]:
        return list(
            self.session.scalars(
                select(TenderBid)
                .where(TenderBid.tender_id == tender_id)
                .order_by(TenderBid.submitted_at, TenderBid.id)
                .execution_options(populate_existing=True)
            )
        )

    def update_bid_status(self, bid_id: str, status) -> int:
        """Set one bid's status; returns the affected row count (idempotent)."""
        status = coerce_bid_status(status).value
        result = self.session.execute(
            update(TenderBid)
            .where(TenderBid.id == bid_id, TenderBid.status != status)
            .values(status=status, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def triage_bid_status(self, bid_id: str, status, *, from_statuses, tender_states) -> int:
        """
        Move an unresolved bid between triage statuses.

        The write only lands while the bid is still in *from_statuses* and its
        tender is still in *tender_states*; returns the affected row count.
        """
        status = coerce_bid_status(status).value
        open_tenders = select(WorkflowEntity.id).where(
            WorkflowEntity.current_state.in_(list(tender_states)),
        )
        result = self.session.execute(
            update(TenderBid)
            .where(
                TenderBid.id == bid_id,
                TenderBid.status.in_(list(from_statuses)),
                TenderBid.tender_id.in_(open_tenders),
            )
            .values(status=status, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def reject_bids_except(self, tender_id: str, winning_bid_id: str) -> int:
        """Reject every bid of *tender_id* other than the winner (idempotent)."""
        result = self.session.execute(
            update(TenderBid)
            .where(
                TenderBid.tender_id == tender_id,
                TenderBid.id != winning_bid_id,
                TenderBid.status != BidStatus.REJECTED.value,
            )
            .values(status=BidStatus.REJECTED.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ── Transaction control ──────────────────────────────────────────────

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
