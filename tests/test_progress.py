"""
Progress percentage tests.

Progress is the position of the current state in a fixed linear order, so
the request back-edges can make it move backwards.
"""

import pytest

from app.services import workflow_service
from app.services.progress import progress_for

RAISER = "raiser-a"
REVIEWER = "reviewer-b"


@pytest.mark.parametrize("state,expected", [
    ("draft", 0),
    ("review", 17),
    ("additional_input_required", 33),
    ("revision_required", 50),
    ("approved", 67),
    ("responded", 83),
    ("closed", 100),
])
def test_request_progress(state, expected):
    assert progress_for("request", state) == expected


@pytest.mark.parametrize("state,expected", [
    ("draft", 0),
    ("open", 33),
    ("closed", 67),
    ("awarded", 100),
    ("cancelled", 100),
])
def test_tender_progress(state, expected):
    assert progress_for("tender", state) == expected


def test_unknown_state_is_zero():
    assert progress_for("tender", "archived") == 0


def test_progress_can_move_backwards(rfi):
    workflow_service.execute_action(rfi.id, "submit_for_review", RAISER)
    workflow_service.execute_action(rfi.id, "request_revision", REVIEWER)
    assert workflow_service.get_progress(rfi.id)["progress"] == 50

    workflow_service.execute_action(rfi.id, "submit_for_review", RAISER)
    assert workflow_service.get_progress(rfi.id)["progress"] == 17


def test_progress_payload(rfi):
    assert workflow_service.get_progress(rfi.id) == {
        "entity_id": rfi.id,
        "entity_kind": "request",
        "current_state": "draft",
        "progress": 0,
    }
