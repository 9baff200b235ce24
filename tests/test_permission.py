"""
Permission resolver tests.

possible_actions = actions defined from the current state that the actor
holds the owning relation for.  Unknown actors get an empty set.
"""

import pytest

from app.models.workflow import WorkflowEntity
from app.services import workflow_service
from app.services.identity import ASSIGNEE, RAISER, EntityRelationIdentityProvider
from app.services.permission import PermissionResolver

RAISER_ID = "raiser-a"
REVIEWER = "reviewer-b"
ISSUER = "issuer-i"


def _request(state, **kw):
    kw.setdefault("raised_by", RAISER_ID)
    kw.setdefault("assigned_to", REVIEWER)
    return WorkflowEntity(entity_kind="request", current_state=state, title="t", **kw)


@pytest.fixture()
def resolver():
    return PermissionResolver()


class TestIdentity:

    def test_relations_from_owner_fields(self):
        entity = _request("review", assigned_to=RAISER_ID)
        actor = EntityRelationIdentityProvider().resolve_actor(RAISER_ID, entity)
        assert actor.has(RAISER) and actor.has(ASSIGNEE)

    @pytest.mark.parametrize("actor_id", [None, "", "   "])
    def test_empty_actor_is_anonymous(self, actor_id):
        assert EntityRelationIdentityProvider().resolve_actor(actor_id, _request("draft")) is None


class TestRequestRules:

    def test_raiser_submits_draft(self, resolver):
        entity = _request("draft")
        assert resolver.possible_actions(entity, RAISER_ID) == {"submit_for_review"}
        assert resolver.possible_actions(entity, REVIEWER) == set()

    def test_assignee_decides_review(self, resolver):
        entity = _request("review")
        assert resolver.possible_actions(entity, REVIEWER) == {
            "approve", "request_additional_input", "request_revision",
        }
        assert resolver.possible_actions(entity, RAISER_ID) == set()

    def test_provide_input_open_to_any_known_actor(self, resolver):
        entity = _request("additional_input_required")
        for actor in (RAISER_ID, REVIEWER, "site-engineer"):
            assert resolver.possible_actions(entity, actor) == {"provide_input"}
        assert resolver.possible_actions(entity, "") == set()

    def test_assignee_responds_raiser_closes(self, resolver):
        assert resolver.possible_actions(_request("approved"), REVIEWER) == {"respond"}
        assert resolver.possible_actions(_request("responded"), RAISER_ID) == {"close"}
        assert resolver.possible_actions(_request("responded"), REVIEWER) == set()

    def test_unrelated_actor_gets_nothing(self, resolver):
        for state in ("draft", "review", "approved", "responded", "closed"):
            assert resolver.possible_actions(_request(state), "stranger") == set()

    def test_can(self, resolver):
        entity = _request("review")
        assert resolver.can(entity, REVIEWER, "approve")
        assert not resolver.can(entity, RAISER_ID, "approve")


class TestTenderRules:

    def test_issuer_manages_draft(self, resolver):
        tender = workflow_service.create_tender(issued_by=ISSUER, title="Roofing")
        assert resolver.possible_actions(tender, ISSUER) == {"publish", "cancel"}
        assert resolver.possible_actions(tender, "bidder-x") == set()

    def test_award_needs_a_bid(self, resolver, open_tender):
        workflow_service.execute_action(open_tender.id, "close", ISSUER)
        tender = workflow_service.get_entity(open_tender.id)
        assert resolver.possible_actions(tender, ISSUER) == set()

    def test_award_offered_with_bids(self, resolver, closed_tender_with_bids):
        tender, _ = closed_tender_with_bids
        assert resolver.possible_actions(tender, ISSUER) == {"award"}
        assert resolver.possible_actions(tender, "bidder-90") == set()
