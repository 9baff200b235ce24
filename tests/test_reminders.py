"""
Review reminders and reviewer auto-assignment.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.models.notification import Notification
from app.models.scheduling import ScheduledReminder
from app.services import workflow_service
from app.services.reminder_scheduler import (
    cancel_reminders,
    dispatch_due_reminders,
    schedule_reminder,
)
from app.services.reviewer_assignment import ReviewerAssigner

RAISER = "raiser-a"
REVIEWER = "reviewer-b"


def _reminders(entity_id):
    return {r.kind: r for r in ScheduledReminder.query.filter_by(entity_id=entity_id)}


@pytest.fixture()
def in_review(rfi):
    workflow_service.execute_action(rfi.id, "submit_for_review", RAISER)
    return rfi


class TestScheduling:

    def test_entering_review_schedules_three_reminders(self, in_review):
        reminders = _reminders(in_review.id)
        assert {k: r.offset_days for k, r in reminders.items()} == {
            "first": 3, "second": 7, "escalation": 14,
        }
        assert {r.trigger_version for r in reminders.values()} == {1}

    def test_handle_is_idempotent(self, rfi):
        first = schedule_reminder(rfi.id, 3, kind="first", trigger_version=5)
        second = schedule_reminder(rfi.id, 3, kind="first", trigger_version=5)
        assert first == second

    def test_cancel(self, in_review):
        assert cancel_reminders(in_review.id) == 3
        assert {r.status for r in _reminders(in_review.id).values()} == {"cancelled"}


class TestDispatch:

    def test_nothing_due_yet(self, in_review):
        assert dispatch_due_reminders() == {"sent": 0, "cancelled": 0, "notifications_created": 0}

    def test_first_reminder_goes_to_reviewer(self, in_review):
        now = datetime.now(timezone.utc) + timedelta(days=4)
        results = dispatch_due_reminders(now=now)

        assert results == {"sent": 1, "cancelled": 0, "notifications_created": 1}
        notif = Notification.query.filter_by(kind="review_reminder").one()
        assert notif.recipient == REVIEWER
        assert notif.entity_id == in_review.id

    def test_escalation_copies_raiser(self, in_review):
        now = datetime.now(timezone.utc) + timedelta(days=15)
        results = dispatch_due_reminders(now=now)

        assert results["sent"] == 3
        escalated = {n.recipient for n in Notification.query.filter_by(kind="review_escalation")}
        assert escalated == {REVIEWER, RAISER}

    def test_decided_request_cancels_reminders(self, in_review):
        workflow_service.execute_action(in_review.id, "approve", REVIEWER)
        now = datetime.now(timezone.utc) + timedelta(days=15)
        results = dispatch_due_reminders(now=now)

        assert results == {"sent": 0, "cancelled": 3, "notifications_created": 0}
        assert Notification.query.filter_by(kind="review_reminder").count() == 0

    def test_new_review_round_supersedes_old(self, in_review):
        workflow_service.execute_action(in_review.id, "request_revision", REVIEWER)
        workflow_service.execute_action(in_review.id, "submit_for_review", RAISER)
        now = datetime.now(timezone.utc) + timedelta(days=4)
        results = dispatch_due_reminders(now=now)

        # round one (version 1) is stale, round two (version 3) is live
        assert results["cancelled"] == 1
        assert results["sent"] == 1


class TestReviewerAssignment:

    @pytest.fixture()
    def pool(self):
        for user in ("rev-1", "rev-2", RAISER):
            workflow_service.add_project_reviewer(7, user)

    def _unassigned(self, subject="Door schedule"):
        return workflow_service.create_request(project_id=7, raised_by=RAISER, subject=subject)

    def test_assigned_on_entering_review(self, pool):
        req = self._unassigned()
        workflow_service.execute_action(req.id, "submit_for_review", RAISER)
        assert workflow_service.get_entity(req.id).assigned_to == "rev-1"
        notif = Notification.query.filter_by(kind="reviewer_assigned").one()
        assert notif.recipient == "rev-1"

    def test_least_loaded_reviewer_wins(self, pool):
        first = self._unassigned("A")
        workflow_service.execute_action(first.id, "submit_for_review", RAISER)
        second = self._unassigned("B")
        workflow_service.execute_action(second.id, "submit_for_review", RAISER)
        assert workflow_service.get_entity(second.id).assigned_to == "rev-2"

    def test_raiser_never_reviews_own_request(self, pool):
        req = self._unassigned()
        assert RAISER not in ReviewerAssigner().candidates(req)

    def test_existing_assignee_kept(self, pool):
        req = workflow_service.create_request(project_id=7, raised_by=RAISER, subject="X",
                                              assigned_to="rev-2")
        assert ReviewerAssigner().assign(req.id) == "rev-2"

    def test_no_pool_leaves_unassigned(self):
        req = self._unassigned()
        workflow_service.execute_action(req.id, "submit_for_review", RAISER)
        assert workflow_service.get_entity(req.id).assigned_to is None

    def test_assignment_does_not_move_state(self, pool):
        req = self._unassigned()
        workflow_service.execute_action(req.id, "submit_for_review", RAISER)
        entity = workflow_service.get_entity(req.id)
        assert (entity.current_state, entity.version) == ("review", 1)
