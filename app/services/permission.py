"""
Workflow permission resolver.

An actor may invoke an action only when the state machine defines it for the
entity's current state AND the actor holds the owning relation for that
(state, action) pair.  Unknown or unrelated actors get an empty set; that is
not an error, callers check membership before executing.

Usage:
    from app.services.permission import PermissionResolver

    resolver = PermissionResolver()
    if "approve" in resolver.possible_actions(entity, "user-b"):
        ...
"""

from __future__ import annotations

from app.models.workflow import (
    EntityKind,
    RequestAction as RA,
    RequestState as RS,
    TenderAction as TA,
    TenderState as TS,
)
from app.services.identity import ASSIGNEE, ISSUER, RAISER, EntityRelationIdentityProvider
from app.services.state_machine import possible_actions_from_state

# Any resolved (non-anonymous) actor
ANY_ACTOR = "*"

# (state, action) → relations allowed to invoke it
REQUEST_RULES = {
    (RS.DRAFT, RA.SUBMIT_FOR_REVIEW): {RAISER},
    (RS.REVIEW, RA.APPROVE): {ASSIGNEE},
    (RS.REVIEW, RA.REQUEST_ADDITIONAL_INPUT): {ASSIGNEE},
    (RS.REVIEW, RA.REQUEST_REVISION): {ASSIGNEE},
    (RS.ADDITIONAL_INPUT_REQUIRED, RA.PROVIDE_INPUT): {ANY_ACTOR},
    (RS.REVISION_REQUIRED, RA.SUBMIT_FOR_REVIEW): {RAISER},
    (RS.APPROVED, RA.RESPOND): {ASSIGNEE},
    (RS.RESPONDED, RA.CLOSE): {RAISER},
}

TENDER_RULES = {
    (TS.DRAFT, TA.PUBLISH): {ISSUER},
    (TS.DRAFT, TA.CANCEL): {ISSUER},
    (TS.OPEN, TA.CLOSE): {ISSUER},
    (TS.OPEN, TA.CANCEL): {ISSUER},
    (TS.CLOSED, TA.AWARD): {ISSUER},
}

_RULES = {
    EntityKind.REQUEST: {(s.value, a.value): r for (s, a), r in REQUEST_RULES.items()},
    EntityKind.TENDER: {(s.value, a.value): r for (s, a), r in TENDER_RULES.items()},
}


class PermissionResolver:
    """Computes the actions an actor may currently invoke on an entity."""

    def __init__(self, identity_provider=None):
        self.identity = identity_provider or EntityRelationIdentityProvider()

    def possible_actions(self, entity, actor_id) -> set[str]:
        actor = self.identity.resolve_actor(actor_id, entity)
        if actor is None:
            return set()

        kind = EntityKind(entity.entity_kind)
        rules = _RULES[kind]
        allowed = set()
        for action in possible_actions_from_state(kind, entity.current_state):
            relations = rules.get((entity.current_state, action), set())
            if ANY_ACTOR in relations or relations & actor.relations:
                allowed.add(action)

        if TA.AWARD.value in allowed and not _has_bids(entity):
            allowed.discard(TA.AWARD.value)
        return allowed

    def can(self, entity, actor_id, action) -> bool:
        return str(getattr(action, "value", action)) in self.possible_actions(entity, actor_id)


def _has_bids(entity) -> bool:
    return entity.bids.count() > 0
