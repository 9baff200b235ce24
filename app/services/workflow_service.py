"""
Workflow service — entry points used by the blueprint, CLI and jobs.

Creation, bid submission/triage/evaluation and read models live here;
every lifecycle state change is delegated to the TransitionExecutor.
Functions commit their own transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    AwardReconciliationRequired,
    ConflictError,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from app.models import db
from app.models.tender import BidStatus, TenderBid
from app.models.workflow import (
    EntityKind,
    ProjectReviewer,
    RequestState,
    TenderAction,
    TenderState,
    WorkflowEntity,
)
from app.services import bid_evaluation
from app.services.audit_trail import AuditTrail
from app.services.award import AwardCoordinator, CONVERGED, PENDING
from app.services.permission import PermissionResolver
from app.services.progress import progress
from app.services.transition_executor import TransitionExecutor, TransitionResult
from app.services.workflow_store import WorkflowStore

logger = logging.getLogger(__name__)

_TRIAGE_STATUSES = {BidStatus.SUBMITTED.value, BidStatus.UNDER_REVIEW.value}
_EVALUATION_STATES = {TenderState.OPEN.value, TenderState.CLOSED.value}


def _required(value, name):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{name} is required", details={name: "required"})
    return value.strip() if isinstance(value, str) else value


def _decimal(value, name, *, required=True):
    if value is None:
        if required:
            raise ValidationError(f"{name} is required", details={name: "required"})
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number", details={name: value}) from None
    if amount < 0:
        raise ValidationError(f"{name} must not be negative", details={name: value})
    return amount


def _parse_date(value, name):
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date", details={name: value}) from None


def _parse_datetime(value, name):
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO datetime", details={name: value}) from None


# ═════════════════════════════════════════════════════════════════════════════
# Creation
# ═════════════════════════════════════════════════════════════════════════════


def create_request(*, project_id=None, raised_by, subject, question=None,
                   assigned_to=None, priority="medium", due_date=None) -> WorkflowEntity:
    """Create an information request in ``draft``; its history starts empty."""
    entity = WorkflowEntity(
        entity_kind=EntityKind.REQUEST.value,
        current_state=RequestState.DRAFT.value,
        version=0,
        project_id=project_id,
        raised_by=str(_required(raised_by, "raised_by")),
        title=_required(subject, "subject"),
        description=question,
        assigned_to=str(assigned_to) if assigned_to else None,
        priority=priority or "medium",
        due_date=_parse_date(due_date, "due_date"),
    )
    WorkflowStore().add_entity(entity)
    db.session.commit()
    logger.info("Request %s created by %s", entity.id, entity.raised_by,
                extra={"entity_id": entity.id, "entity_kind": "request"})
    return entity


def create_tender(*, project_id=None, issued_by, title, description=None,
                  budget=None, deadline=None, evaluation_criteria=None) -> WorkflowEntity:
    """Create a tender in ``draft`` with validated evaluation criteria."""
    entity = WorkflowEntity(
        entity_kind=EntityKind.TENDER.value,
        current_state=TenderState.DRAFT.value,
        version=0,
        project_id=project_id,
        issued_by=str(_required(issued_by, "issued_by")),
        title=_required(title, "title"),
        description=description,
        budget=_decimal(budget, "budget", required=False),
        deadline=_parse_datetime(deadline, "deadline"),
        evaluation_criteria=bid_evaluation.validate_criteria(evaluation_criteria),
    )
    WorkflowStore().add_entity(entity)
    db.session.commit()
    logger.info("Tender %s created by %s", entity.id, entity.issued_by,
                extra={"entity_id": entity.id, "entity_kind": "tender"})
    return entity


def get_entity(entity_id: str) -> WorkflowEntity:
    return WorkflowStore().load_entity(entity_id)


def add_project_reviewer(project_id: int, user_id: str) -> ProjectReviewer:
    user_id = str(_required(user_id, "user_id"))
    row = ProjectReviewer.query.filter_by(project_id=project_id, user_id=user_id).first()
    if row is None:
        row = ProjectReviewer(project_id=project_id, user_id=user_id)
        db.session.add(row)
    row.is_active = True
    db.session.commit()
    return row


# ═════════════════════════════════════════════════════════════════════════════
# Bids
# ═════════════════════════════════════════════════════════════════════════════


def _load_tender(store: WorkflowStore, tender_id: str) -> WorkflowEntity:
    tender = store.load_entity(tender_id)
    if tender.entity_kind != EntityKind.TENDER.value:
        raise ValidationError(f"Entity {tender_id} is not a tender",
                              details={"entity_kind": tender.entity_kind})
    return tender


def submit_bid(tender_id: str, *, bidder_id, amount, estimated_duration_days=None,
               notes=None) -> TenderBid:
    """Submit a bid; only while the tender is open, one bid per bidder."""
    store = WorkflowStore()
    tender = _load_tender(store, tender_id)
    if tender.current_state != TenderState.OPEN.value:
        raise InvalidTransition(tender_id, "submit_bid", tender.current_state,
                                "bids are accepted only while the tender is open")
    bidder_id = str(_required(bidder_id, "bidder_id"))
    if bidder_id == tender.issued_by:
        raise ValidationError("The issuer cannot bid on their own tender",
                              details={"bidder_id": bidder_id})

    bid = TenderBid(
        tender_id=tender_id,
        bidder_id=bidder_id,
        amount=_decimal(amount, "amount"),
        status=BidStatus.SUBMITTED.value,
        estimated_duration_days=estimated_duration_days,
        notes=notes,
    )
    db.session.add(bid)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Bid", "bidder_id", bidder_id) from None

    # the tender may have closed since the check above; a late bid must not
    # land next to an award
    state = store.load_entity(tender_id).current_state
    if state != TenderState.OPEN.value:
        db.session.rollback()
        raise InvalidTransition(tender_id, "submit_bid", state,
                                "bids are accepted only while the tender is open")
    db.session.commit()
    logger.info("Bid %s submitted on %s by %s", bid.id, tender_id, bidder_id,
                extra={"entity_id": tender_id, "actor_id": bidder_id})
    return bid


def update_bid_status(bid_id: str, status: str, *, actor_id) -> TenderBid:
    """Issuer triage: ``submitted`` ⇄ ``under_review`` only."""
    store = WorkflowStore()
    bid = store.load_bid(bid_id)
    tender = _load_tender(store, bid.tender_id)
    if not actor_id or str(actor_id) != tender.issued_by:
        raise PermissionDenied(tender.id, actor_id, "update_bid_status")
    if status not in _TRIAGE_STATUSES:
        raise ValidationError(
            "Bid status can only move between submitted and under_review",
            details={"status": sorted(_TRIAGE_STATUSES)},
        )
    if bid.status not in _TRIAGE_STATUSES:
        raise InvalidTransition(bid_id, "update_bid_status", bid.status,
                                "the bid has already been resolved by the award")
    if tender.current_state not in _EVALUATION_STATES:
        raise InvalidTransition(tender.id, "update_bid_status", tender.current_state)

    changed = store.triage_bid_status(bid_id, status, from_statuses=_TRIAGE_STATUSES,
                                      tender_states=_EVALUATION_STATES)
    if changed != 1:
        store.rollback()
        bid = store.load_bid(bid_id)
        raise InvalidTransition(bid_id, "update_bid_status", bid.status,
                                "the tender was resolved while the bid was being triaged")
    store.commit()
    return store.load_bid(bid_id)


def evaluate_bid(bid_id: str, *, evaluator_id, scores: dict, notes=None) -> TenderBid:
    store = WorkflowStore()
    bid = store.load_bid(bid_id)
    tender = _load_tender(store, bid.tender_id)
    evaluator_id = str(_required(evaluator_id, "evaluator_id"))
    if evaluator_id == bid.bidder_id:
        raise PermissionDenied(tender.id, evaluator_id, "evaluate_bid")
    if tender.current_state not in _EVALUATION_STATES:
        raise InvalidTransition(tender.id, "evaluate_bid", tender.current_state,
                                "bids are evaluated while the tender is open or closed")

    bid_evaluation.evaluate_bid(bid, scores or {}, evaluator_id=evaluator_id, notes=notes,
                                criteria=tender.evaluation_criteria)
    db.session.commit()
    return bid


def rank_bids(tender_id: str) -> list[TenderBid]:
    store = WorkflowStore()
    _load_tender(store, tender_id)
    return bid_evaluation.rank_bids(store.list_bids_for_tender(tender_id))


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


def execute_action(entity_id: str, action: str, actor_id, *, notes=None,
                   expected_state=None, winning_bid_id=None,
                   response_text=None) -> TransitionResult:
    return TransitionExecutor().execute(
        entity_id, action, actor_id, notes,
        expected_state=expected_state,
        winning_bid_id=winning_bid_id,
        response_text=response_text,
    )


def award_tender(tender_id: str, winning_bid_id: str, actor_id, *, notes=None) -> TransitionResult:
    """
    Award *tender_id* to *winning_bid_id*.

    Re-awarding to the same winner re-runs the bid-family update (no new
    transition).  Awarding a different bid once awarded is rejected and
    changes nothing.
    """
    store = WorkflowStore()
    tender = _load_tender(store, tender_id)
    if tender.current_state != TenderState.AWARDED.value:
        return TransitionExecutor(store=store).execute(
            tender_id, TenderAction.AWARD.value, actor_id, notes,
            winning_bid_id=winning_bid_id,
        )

    if not actor_id or str(actor_id) != tender.issued_by:
        raise PermissionDenied(tender_id, actor_id, TenderAction.AWARD.value)
    winner = store.load_bid(winning_bid_id)
    if winner.tender_id != tender_id or winner.bidder_id != tender.awarded_to:
        raise InvalidTransition(tender_id, TenderAction.AWARD.value, tender.current_state,
                                f"already awarded to {tender.awarded_to}")

    result = TransitionResult(entity=None, transition=store.latest_transition(tender_id))
    try:
        AwardCoordinator(store).award(tender_id, winning_bid_id)
        result.award_status = CONVERGED
    except AwardReconciliationRequired as warning:
        result.award_status = PENDING
        result.warnings.append(warning)
    result.entity = store.load_entity(tender_id)
    return result


def get_possible_actions(entity_id: str, actor_id) -> list[str]:
    entity = WorkflowStore().load_entity(entity_id)
    return sorted(PermissionResolver().possible_actions(entity, actor_id))


def get_progress(entity_id: str) -> dict:
    entity = WorkflowStore().load_entity(entity_id)
    return {"entity_id": entity.id, "entity_kind": entity.entity_kind,
            "current_state": entity.current_state, "progress": progress(entity)}


def get_history(entity_id: str) -> dict:
    store = WorkflowStore()
    entity = store.load_entity(entity_id)
    trail = AuditTrail(store)
    return {
        "entity_id": entity.id,
        "current_state": entity.current_state,
        "consistent": trail.is_consistent(entity),
        "items": [r.to_dict() for r in trail.history(entity_id)],
    }
