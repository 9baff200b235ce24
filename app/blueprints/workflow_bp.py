"""
Construction Collaboration Platform
Workflow Blueprint.

Provides:
    - Request (RFI) and tender creation
    - Lifecycle actions, possible actions, progress and history per entity
    - Bid submission, triage, evaluation, ranking and tender award
    - Project reviewer pool
    - Recipient notifications (list, mark read)
    - Manual job trigger (side-effect drain, reminders, award reconciliation)

Service exceptions (NotFoundError, ValidationError, WorkflowError, ...) are
mapped to HTTP responses by the handlers registered in the app factory.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import paginate_query
from app.services import workflow_service
from app.services.notification import NotificationService
from app.services.progress import progress_for
from app.services.scheduler_service import SchedulerService, get_registered_jobs
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow_bp", __name__, url_prefix="/api/v1")


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


def _require(data, *fields):
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"{', '.join(missing)} is required",
                         details={"missing": missing})
    return None


# ═══════════════════════════════════════════════════════════════════════════
#  CREATION
# ═══════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/requests", methods=["POST"])
def create_request():
    """Create an information request in draft."""
    data, err = _json_body()
    if err:
        return err
    err = _require(data, "raised_by", "subject")
    if err:
        return err

    entity = workflow_service.create_request(
        project_id=data.get("project_id"),
        raised_by=data["raised_by"],
        subject=data["subject"],
        question=data.get("question"),
        assigned_to=data.get("assigned_to"),
        priority=data.get("priority") or "medium",
        due_date=data.get("due_date"),
    )
    return jsonify(entity.to_dict()), 201


@workflow_bp.route("/tenders", methods=["POST"])
def create_tender():
    """Create a tender in draft."""
    data, err = _json_body()
    if err:
        return err
    err = _require(data, "issued_by", "title")
    if err:
        return err

    entity = workflow_service.create_tender(
        project_id=data.get("project_id"),
        issued_by=data["issued_by"],
        title=data["title"],
        description=data.get("description"),
        budget=data.get("budget"),
        deadline=data.get("deadline"),
        evaluation_criteria=data.get("evaluation_criteria"),
    )
    return jsonify(entity.to_dict()), 201


# ═══════════════════════════════════════════════════════════════════════════
#  LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/entities/<entity_id>", methods=["GET"])
def get_entity(entity_id):
    """Entity detail; with ?actor_id= also the actions that actor may invoke."""
    entity = workflow_service.get_entity(entity_id)
    body = entity.to_dict()
    body["progress"] = progress_for(entity.entity_kind, entity.current_state)
    actor_id = request.args.get("actor_id")
    if actor_id:
        body["possible_actions"] = workflow_service.get_possible_actions(entity_id, actor_id)
    return jsonify(body)


@workflow_bp.route("/entities/<entity_id>/actions", methods=["POST"])
def execute_action(entity_id):
    data, err = _json_body()
    if err:
        return err
    err = _require(data, "action", "actor_id")
    if err:
        return err

    result = workflow_service.execute_action(
        entity_id,
        data["action"],
        data["actor_id"],
        notes=data.get("notes"),
        expected_state=data.get("expected_state"),
        winning_bid_id=data.get("winning_bid_id"),
        response_text=data.get("response_text"),
    )
    return jsonify(result.to_dict()), 200


@workflow_bp.route("/entities/<entity_id>/possible-actions", methods=["GET"])
def possible_actions(entity_id):
    actor_id = request.args.get("actor_id", "")
    return jsonify({
        "entity_id": entity_id,
        "actor_id": actor_id,
        "actions": workflow_service.get_possible_actions(entity_id, actor_id),
    })


@workflow_bp.route("/entities/<entity_id>/progress", methods=["GET"])
def progress(entity_id):
    return jsonify(workflow_service.get_progress(entity_id))


@workflow_bp.route("/entities/<entity_id>/history", methods=["GET"])
def history(entity_id):
    return jsonify(workflow_service.get_history(entity_id))


# ═══════════════════════════════════════════════════════════════════════════
#  BIDS & AWARD
# ═══════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/tenders/<tender_id>/bids", methods=["POST"])
def submit_bid(tender_id):
    data, err = _json_body()
    if err:
        return err
    err = _require(data, "bidder_id", "amount")
    if err:
        return err

    bid = workflow_service.submit_bid(
        tender_id,
        bidder_id=data["bidder_id"],
        amount=data["amount"],
        estimated_duration_days=data.get("estimated_duration_days"),
        notes=data.get("notes"),
    )
    return jsonify(bid.to_dict()), 201


@workflow_bp.route("/tenders/<tender_id>/bids", methods=["GET"])
def list_bids(tender_id):
    """Bids ranked by overall score (desc), cheaper first on ties."""
    bids = workflow_service.rank_bids(tender_id)
    return jsonify({"items": [b.to_dict() for b in bids], "total": len(bids)})


@workflow_bp.route("/bids/<bid_id>/evaluation", methods=["POST"])
def evaluate_bid(bid_id):
    data, err = _json_body()
    if err:
        return err
    err = _require(data, "evaluator_id")
    if err:
        return err
    scores = data.get("scores") or {}
    if not isinstance(scores, dict):
        return api_error(E.VALIDATION_INVALID, "scores must be an object")

    bid = workflow_service.evaluate_bid(
        bid_id, evaluator_id=data["evaluator_id"], scores=scores, notes=data.get("notes"),
    )
    return jsonify(bid.to_dict())


@workflow_bp.route("/bids/<bid_id>/status", methods=["PATCH"])
def update_bid_status(bid_id):
    data, err = _json_body()
    if err:
        return err
    err = _require(data, "status", "actor_id")
    if err:
        return err

    bid = workflow_service.update_bid_status(bid_id, data["status"], actor_id=data["actor_id"])
    return jsonify(bid.to_dict())


@workflow_bp.route("/tenders/<tender_id>/award", methods=["POST"])
def award_tender(tender_id):
    data, err = _json_body()
    if err:
        return err
    err = _require(data, "actor_id", "winning_bid_id")
    if err:
        return err

    result = workflow_service.award_tender(
        tender_id, data["winning_bid_id"], data["actor_id"], notes=data.get("notes"),
    )
    return jsonify(result.to_dict()), 200


# ═══════════════════════════════════════════════════════════════════════════
#  REVIEWERS & NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/projects/<int:project_id>/reviewers", methods=["POST"])
def add_reviewer(project_id):
    data, err = _json_body()
    if err:
        return err
    err = _require(data, "user_id")
    if err:
        return err
    row = workflow_service.add_project_reviewer(project_id, data["user_id"])
    return jsonify(row.to_dict()), 201


@workflow_bp.route("/notifications", methods=["GET"])
def list_notifications():
    recipient = request.args.get("recipient", "").strip()
    if not recipient:
        return api_error(E.VALIDATION_REQUIRED, "recipient is required")

    unread_only = request.args.get("unread_only", "false").lower() == "true"
    items, total = paginate_query(NotificationService.query_for_recipient(recipient, unread_only))
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread": NotificationService.unread_count(recipient),
    })


@workflow_bp.route("/notifications/<int:notification_id>/read", methods=["PATCH"])
def mark_notification_read(notification_id):
    return jsonify(NotificationService.mark_read(notification_id).to_dict())


@workflow_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_notifications_read():
    data, err = _json_body()
    if err:
        return err
    err = _require(data, "recipient")
    if err:
        return err
    return jsonify({"marked": NotificationService.mark_all_read(data["recipient"])})


# ═══════════════════════════════════════════════════════════════════════════
#  JOBS
# ═══════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/jobs", methods=["GET"])
def list_jobs():
    return jsonify({"items": SchedulerService.list_jobs()})


@workflow_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    """Trigger a registered job immediately."""
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    result = SchedulerService.run_job(job_name)
    status = 200 if result["status"] == "success" else 500
    return jsonify(result), status
