"""
HTTP API tests for the workflow blueprint:
  - creation, lifecycle actions, possible actions, progress, history
  - error mapping (400 / 403 / 404 / 409 / 422)
  - bids, evaluation, award, notifications, jobs and health probes
"""

import pytest

RAISER = "raiser-a"
REVIEWER = "reviewer-b"
ISSUER = "issuer-i"

API = "/api/v1"


def _post(client, url, payload):
    return client.post(f"{API}{url}", json=payload)


def _action(client, entity_id, action, actor_id, **extra):
    return _post(client, f"/entities/{entity_id}/actions",
                 {"action": action, "actor_id": actor_id, **extra})


@pytest.fixture()
def request_id(client):
    res = _post(client, "/requests", {
        "raised_by": RAISER, "assigned_to": REVIEWER,
        "subject": "Fire stopping at riser 2", "priority": "high",
    })
    assert res.status_code == 201
    return res.get_json()["id"]


@pytest.fixture()
def tender_with_bids(client):
    tender_id = _post(client, "/tenders", {"issued_by": ISSUER, "title": "Roofing"}).get_json()["id"]
    assert _action(client, tender_id, "publish", ISSUER).status_code == 200
    bid_ids = {}
    for bidder, amount in (("bidder-100", 100000), ("bidder-120", 120000), ("bidder-90", 90000)):
        res = _post(client, f"/tenders/{tender_id}/bids", {"bidder_id": bidder, "amount": amount})
        assert res.status_code == 201
        bid_ids[amount] = res.get_json()["id"]
    assert _action(client, tender_id, "close", ISSUER).status_code == 200
    return tender_id, bid_ids


# ═════════════════════════════════════════════════════════════════════════════
# Creation & lifecycle
# ═════════════════════════════════════════════════════════════════════════════

class TestRequests:

    def test_create(self, client, request_id):
        body = client.get(f"{API}/entities/{request_id}").get_json()
        assert body["current_state"] == "draft"
        assert body["version"] == 0
        assert body["entity_kind"] == "request"
        assert body["progress"] == 0

    def test_create_missing_subject(self, client):
        res = _post(client, "/requests", {"raised_by": RAISER})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_non_object_body(self, client):
        res = client.post(f"{API}/requests", json=["not", "an", "object"])
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_bad_due_date(self, client):
        res = _post(client, "/requests", {"raised_by": RAISER, "subject": "X",
                                          "due_date": "next tuesday"})
        assert res.status_code == 422

    def test_full_lifecycle(self, client, request_id):
        assert _action(client, request_id, "submit_for_review", RAISER).status_code == 200
        assert _action(client, request_id, "approve", REVIEWER).status_code == 200
        res = _action(client, request_id, "respond", REVIEWER, response_text="Use 150 c/c")
        assert res.status_code == 200
        assert res.get_json()["entity"]["response_text"] == "Use 150 c/c"
        res = _action(client, request_id, "close", RAISER)
        body = res.get_json()
        assert body["entity"]["current_state"] == "closed"
        assert body["transition"]["sequence"] == 4

        progress = client.get(f"{API}/entities/{request_id}/progress").get_json()
        assert progress["progress"] == 100

        history = client.get(f"{API}/entities/{request_id}/history").get_json()
        assert history["consistent"] is True
        assert [h["action"] for h in history["items"]] == [
            "submit_for_review", "approve", "respond", "close",
        ]

    def test_possible_actions_per_actor(self, client, request_id):
        _action(client, request_id, "submit_for_review", RAISER)
        reviewer = client.get(f"{API}/entities/{request_id}/possible-actions",
                              query_string={"actor_id": REVIEWER}).get_json()
        raiser = client.get(f"{API}/entities/{request_id}/possible-actions",
                            query_string={"actor_id": RAISER}).get_json()
        assert reviewer["actions"] == ["approve", "request_additional_input", "request_revision"]
        assert raiser["actions"] == []

    def test_detail_with_actor_includes_actions(self, client, request_id):
        body = client.get(f"{API}/entities/{request_id}",
                          query_string={"actor_id": RAISER}).get_json()
        assert body["possible_actions"] == ["submit_for_review"]


class TestErrorMapping:

    def test_unknown_entity(self, client):
        res = client.get(f"{API}/entities/does-not-exist")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_undefined_transition(self, client, request_id):
        res = _action(client, request_id, "approve", REVIEWER)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_TRANSITION"
        assert body["details"]["current_state"] == "draft"

    def test_forbidden_actor(self, client, request_id):
        res = _action(client, request_id, "submit_for_review", REVIEWER)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_stale_expected_state(self, client, request_id):
        _action(client, request_id, "submit_for_review", RAISER)
        res = _action(client, request_id, "submit_for_review", RAISER, expected_state="draft")
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONCURRENT_MODIFICATION"
        assert body["details"]["retryable"] is True

    def test_missing_actor(self, client, request_id):
        res = _post(client, f"/entities/{request_id}/actions", {"action": "submit_for_review"})
        assert res.status_code == 400

    def test_failed_action_leaves_no_history(self, client, request_id):
        _action(client, request_id, "approve", REVIEWER)
        history = client.get(f"{API}/entities/{request_id}/history").get_json()
        assert history["items"] == []
        assert history["current_state"] == "draft"


# ═════════════════════════════════════════════════════════════════════════════
# Tenders
# ═════════════════════════════════════════════════════════════════════════════

class TestTenders:

    def test_bad_criteria_is_422(self, client):
        res = _post(client, "/tenders", {"issued_by": ISSUER, "title": "Lifts",
                                         "evaluation_criteria": {"price_weight": 50}})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"

    def test_duplicate_bid_is_409(self, client):
        tender_id = _post(client, "/tenders", {"issued_by": ISSUER, "title": "Lifts"}).get_json()["id"]
        _action(client, tender_id, "publish", ISSUER)
        _post(client, f"/tenders/{tender_id}/bids", {"bidder_id": "b1", "amount": 10})
        res = _post(client, f"/tenders/{tender_id}/bids", {"bidder_id": "b1", "amount": 9})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_award(self, client, tender_with_bids):
        tender_id, bid_ids = tender_with_bids
        res = _post(client, f"/tenders/{tender_id}/award",
                    {"actor_id": ISSUER, "winning_bid_id": bid_ids[90000]})

        assert res.status_code == 200
        body = res.get_json()
        assert body["award_status"] == "converged"
        assert body["entity"]["awarded_to"] == "bidder-90"

        bids = client.get(f"{API}/tenders/{tender_id}/bids").get_json()["items"]
        assert {b["bidder_id"]: b["status"] for b in bids} == {
            "bidder-90": "accepted", "bidder-100": "rejected", "bidder-120": "rejected",
        }

    def test_second_award_is_409(self, client, tender_with_bids):
        tender_id, bid_ids = tender_with_bids
        _post(client, f"/tenders/{tender_id}/award",
              {"actor_id": ISSUER, "winning_bid_id": bid_ids[90000]})
        res = _post(client, f"/tenders/{tender_id}/award",
                    {"actor_id": ISSUER, "winning_bid_id": bid_ids[100000]})
        assert res.status_code == 409

    def test_award_by_bidder_is_403(self, client, tender_with_bids):
        tender_id, bid_ids = tender_with_bids
        res = _post(client, f"/tenders/{tender_id}/award",
                    {"actor_id": "bidder-90", "winning_bid_id": bid_ids[90000]})
        assert res.status_code == 403

    def test_evaluate_and_rank(self, client, tender_with_bids):
        tender_id, bid_ids = tender_with_bids
        res = _post(client, f"/bids/{bid_ids[120000]}/evaluation", {
            "evaluator_id": ISSUER,
            "scores": {"price_score": 100, "experience_score": 100, "timeline_score": 100,
                       "technical_score": 100, "communication_score": 100},
        })
        assert res.status_code == 200
        assert res.get_json()["overall_score"] == 100.0

        ranked = client.get(f"{API}/tenders/{tender_id}/bids").get_json()["items"]
        assert [b["bidder_id"] for b in ranked] == ["bidder-120", "bidder-90", "bidder-100"]

    def test_scores_must_be_object(self, client, tender_with_bids):
        _, bid_ids = tender_with_bids
        res = _post(client, f"/bids/{bid_ids[90000]}/evaluation",
                    {"evaluator_id": ISSUER, "scores": [1, 2]})
        assert res.status_code == 400

    def test_triage(self, client, tender_with_bids):
        _, bid_ids = tender_with_bids
        res = client.patch(f"{API}/bids/{bid_ids[90000]}/status",
                           json={"status": "under_review", "actor_id": ISSUER})
        assert res.status_code == 200
        assert res.get_json()["status"] == "under_review"

        res = client.patch(f"{API}/bids/{bid_ids[90000]}/status",
                           json={"status": "accepted", "actor_id": ISSUER})
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# Reviewers, notifications, jobs, health
# ═════════════════════════════════════════════════════════════════════════════

class TestSupportingEndpoints:

    def test_reviewer_pool_and_auto_assign(self, client):
        res = _post(client, "/projects/3/reviewers", {"user_id": "rev-1"})
        assert res.status_code == 201
        request_id = _post(client, "/requests", {
            "project_id": 3, "raised_by": RAISER, "subject": "Ceiling void depth",
        }).get_json()["id"]

        _action(client, request_id, "submit_for_review", RAISER)

        body = client.get(f"{API}/entities/{request_id}").get_json()
        assert body["assigned_to"] == "rev-1"

    def test_notifications_for_recipient(self, client, request_id):
        _action(client, request_id, "submit_for_review", RAISER)
        _action(client, request_id, "request_additional_input", REVIEWER)

        res = client.get(f"{API}/notifications", query_string={"recipient": RAISER})
        body = res.get_json()
        assert body["total"] == 1
        assert body["unread"] == 1
        assert body["items"][0]["kind"] == "additional_input_required"

    def test_mark_read(self, client, request_id):
        _action(client, request_id, "submit_for_review", RAISER)
        _action(client, request_id, "request_additional_input", REVIEWER)
        notif_id = client.get(f"{API}/notifications",
                              query_string={"recipient": RAISER}).get_json()["items"][0]["id"]

        res = client.patch(f"{API}/notifications/{notif_id}/read")
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True
        unread = client.get(f"{API}/notifications",
                            query_string={"recipient": RAISER, "unread_only": "true"}).get_json()
        assert unread == {"items": [], "total": 0, "unread": 0}

        assert client.patch(f"{API}/notifications/999999/read").status_code == 404

    def test_mark_all_read(self, client, request_id):
        _action(client, request_id, "submit_for_review", RAISER)
        _action(client, request_id, "request_additional_input", REVIEWER)
        res = _post(client, "/notifications/read-all", {"recipient": RAISER})
        assert res.get_json() == {"marked": 1}
        assert _post(client, "/notifications/read-all", {"recipient": RAISER}).get_json() == {
            "marked": 0,
        }

    def test_notifications_need_recipient(self, client):
        assert client.get(f"{API}/notifications").status_code == 400

    def test_jobs(self, client):
        names = {j["job_name"] for j in client.get(f"{API}/jobs").get_json()["items"]}
        assert names == {"side_effect_drain", "reminder_dispatch", "award_reconciliation"}

        res = client.post(f"{API}/jobs/award_reconciliation/run")
        assert res.status_code == 200
        assert res.get_json()["status"] == "success"

        assert client.post(f"{API}/jobs/unknown/run").status_code == 404

    def test_health(self, client):
        assert client.get(f"{API}/health/ready").get_json() == {"status": "ok"}
        live = client.get(f"{API}/health/live").get_json()
        assert live["status"] == "healthy"
        assert live["checks"]["side_effects"] == {"pending": 0, "dead": 0}
