"""
Transition executor — the only writer of ``current_state``.

Steps:
  1. Load the entity and read (current_state, version).
  2. Look the action up in the state machine          → InvalidTransition
  3. Check the actor against the permission resolver  → PermissionDenied
  4. In one transaction: conditional state update guarded on
     (current_state, version) + append the TransitionRecord
                                                      → ConcurrentModification
  5. Tender entering ``awarded``: resolve the bid family via the award
     coordinator.  Failure is reported as a warning; the award stands.
  6. Enqueue side effects for the entered state (never raises).
  7. Return the freshly loaded entity.

Steps 1-4 are authoritative: any failure there rolls back and persists
nothing.  Steps 5-6 never undo a committed transition.

Usage:
    from app.services.transition_executor import TransitionExecutor

    result = TransitionExecutor().execute(rfi_id, "approve", "user-b", notes="LGTM")
    result.entity.current_state   # "approved"
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    AwardReconciliationRequired,
    ConcurrentModification,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
    WorkflowError,
)
from app.models.tender import BidStatus
from app.models.workflow import (
    EntityKind,
    RequestAction,
    TenderAction,
    TenderState,
    TransitionRecord,
)
from app.services.audit_trail import AuditTrail
from app.services.award import CONVERGED, PENDING, AwardCoordinator
from app.services.permission import PermissionResolver
from app.services.side_effects import SideEffectDispatcher
from app.services.state_machine import next_state
from app.services.workflow_store import WorkflowStore

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    entity: object
    transition: TransitionRecord | None = None
    award_status: str | None = None
    warnings: list[WorkflowError] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = {
            "entity": self.entity.to_dict(),
            "transition": self.transition.to_dict() if self.transition else None,
            "warnings": [
                {"type": type(w).__name__, "message": str(w)} for w in self.warnings
            ],
        }
        if self.award_status:
            d["award_status"] = self.award_status
        return d


class TransitionExecutor:

    def __init__(
        self,
        store: WorkflowStore | None = None,
        resolver: PermissionResolver | None = None,
        audit: AuditTrail | None = None,
        dispatcher: SideEffectDispatcher | None = None,
        award_coordinator: AwardCoordinator | None = None,
    ):
        self.store = store or WorkflowStore()
        self.resolver = resolver or PermissionResolver()
        self.audit = audit or AuditTrail(self.store)
        self.dispatcher = dispatcher or SideEffectDispatcher(self.store)
        self.award_coordinator = award_coordinator or AwardCoordinator(self.store)

    def execute(
        self,
        entity_id: str,
        action: str,
        actor_id: str,
        notes: str | None = None,
        *,
        expected_state: str | None = None,
        winning_bid_id: str | None = None,
        response_text: str | None = None,
    ) -> TransitionResult:
        """
        Apply *action* to the entity on behalf of *actor_id*.

        Args:
            expected_state: The state the caller based its decision on.  A
                mismatch with the stored state is a ConcurrentModification.
            winning_bid_id: Required for the tender ``award`` action.
            response_text: Stored with the request ``respond`` action.

        Raises:
            NotFoundError, InvalidTransition, PermissionDenied,
            ConcurrentModification, ValidationError
        """
        action = getattr(action, "value", action)

        # 1. Read
        entity = self.store.load_entity(entity_id)
        kind = EntityKind(entity.entity_kind)
        current_state = entity.current_state
        version = entity.version
        log_extra = {"entity_id": entity_id, "entity_kind": kind.value,
                     "action": action, "actor_id": actor_id, "from_state": current_state}

        if expected_state is not None and expected_state != current_state:
            logger.info("Stale read on %s: expected %s, found %s",
                        entity_id, expected_state, current_state, extra=log_extra)
            raise ConcurrentModification(entity_id, expected_state)

        # 2. Validate against the state machine
        target_state, ok = next_state(kind, current_state, action)
        if not ok:
            logger.info("Rejected '%s' on %s from %s: undefined", action, entity_id,
                        current_state, extra=log_extra)
            raise InvalidTransition(entity_id, action, current_state)

        # 3. Permission
        if action not in self.resolver.possible_actions(entity, actor_id):
            logger.info("Rejected '%s' on %s by %s: not permitted", action, entity_id,
                        actor_id, extra=log_extra)
            raise PermissionDenied(entity_id, actor_id, action)

        extra_values = self._action_values(entity, kind, action, winning_bid_id, response_text)

        # 4. Conditional write + audit append, one transaction
        try:
            new_version = self.store.conditional_update_state(
                entity_id, current_state, target_state,
                expected_version=version, extra_values=extra_values,
            )
            record = self.audit.append(TransitionRecord(
                entity_id=entity_id,
                sequence=new_version,
                from_state=current_state,
                to_state=target_state,
                action=action,
                actor_id=str(actor_id),
                notes=notes,
            ))
            self.store.commit()
        except ConcurrentModification:
            self.store.rollback()
            logger.warning("Concurrent modification of %s at %s v%d", entity_id,
                           current_state, version, extra=log_extra)
            raise
        except (SQLAlchemyError, WorkflowError, ValidationError):
            self.store.rollback()
            raise

        logger.info("Transition %s: %s -[%s]-> %s by %s", entity_id, current_state,
                    action, target_state, actor_id,
                    extra={**log_extra, "to_state": target_state})

        result = TransitionResult(entity=None, transition=record)

        # 5. Award family update
        if kind is EntityKind.TENDER and target_state == TenderState.AWARDED.value:
            try:
                self.award_coordinator.award(entity_id, winning_bid_id)
                result.award_status = CONVERGED
            except AwardReconciliationRequired as warning:
                result.award_status = PENDING
                result.warnings.append(warning)

        # 6. Side effects
        self._dispatch(entity_id, target_state, kind, new_version,
                       {"actor_id": str(actor_id), "winning_bid_id": winning_bid_id})

        # 7. Fresh read
        result.entity = self.store.load_entity(entity_id)
        return result

    def _action_values(self, entity, kind, action, winning_bid_id, response_text) -> dict:
        """Columns written together with the state for specific actions."""
        if kind is EntityKind.TENDER and action == TenderAction.AWARD.value:
            if not winning_bid_id:
                raise ValidationError("winning_bid_id is required to award a tender",
                                      details={"winning_bid_id": "required"})
            bid = self.store.load_bid(winning_bid_id)
            if bid.tender_id != entity.id:
                raise ValidationError(f"Bid {winning_bid_id} does not belong to tender {entity.id}",
                                      details={"winning_bid_id": winning_bid_id})
            if bid.status == BidStatus.REJECTED.value:
                raise ValidationError(f"Bid {winning_bid_id} was rejected",
                                      details={"winning_bid_id": winning_bid_id})
            return {"awarded_to": bid.bidder_id}
        if kind is EntityKind.REQUEST and action == RequestAction.RESPOND.value and response_text:
            return {"response_text": response_text}
        return {}

    def _dispatch(self, entity_id, state, kind, version, context) -> None:
        task_ids = self.dispatcher.on_enter(entity_id, state, kind=kind,
                                            trigger_version=version, context=context)
        if not task_ids:
            return
        if has_app_context() and current_app.config.get("SIDE_EFFECT_INLINE_DRAIN", False):
            try:
                self.dispatcher.drain(entity_id=entity_id)
            except SQLAlchemyError:
                # tasks stay pending for the side_effect_drain job
                self.store.rollback()
                logger.exception("Inline side-effect drain failed for %s", entity_id,
                                 extra={"entity_id": entity_id})
