"""
Side-effect dispatcher — outbound task queue keyed by state entry.

``on_enter`` is called by the transition executor after the state change has
committed.  It only enqueues ``SideEffectTask`` rows (its own transaction);
``drain`` executes due tasks through the collaborators with exponential
backoff, dead-lettering a task after ``SIDE_EFFECT_MAX_ATTEMPTS``.

Nothing here writes ``current_state`` or goes back through the executor.

State entry → tasks:
    request review                     schedule_reminders, auto_assign_reviewer*
    request additional_input_required  notify_input_required
    tender  awarded                    notify_award
    (* when WORKFLOW_AUTO_ASSIGN_REVIEWERS is on)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import SideEffectFailure
from app.models import db
from app.models.audit import write_audit
from app.models.scheduling import SideEffectTask
from app.models.tender import TenderBid
from app.models.workflow import EntityKind, RequestState, TenderState
from app.services.notification import NotificationService
from app.services.reminder_scheduler import schedule_reminder
from app.services.reviewer_assignment import ReviewerAssigner
from app.services.workflow_store import WorkflowStore

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_SCHEDULE = {"first": 3, "second": 7, "escalation": 14}


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _utcnow():
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SideEffectDispatcher:
    """Plans, enqueues and executes follow-up work for state entries."""

    def __init__(self, store: WorkflowStore | None = None, assigner: ReviewerAssigner | None = None):
        self.store = store or WorkflowStore()
        self.assigner = assigner or ReviewerAssigner(self.store)
        self._handlers = {
            "schedule_reminders": self._schedule_reminders,
            "auto_assign_reviewer": self._auto_assign_reviewer,
            "notify_input_required": self._notify_input_required,
            "notify_award": self._notify_award,
        }

    # ── Planning ─────────────────────────────────────────────────────────

    def plan(self, kind, state, context: dict | None = None) -> list[tuple[str, dict]]:
        """Return the (task_kind, payload) pairs triggered by entering *state*."""
        kind = EntityKind(kind)
        context = context or {}
        tasks = []
        if kind is EntityKind.REQUEST and state == RequestState.REVIEW.value:
            schedule = _config("WORKFLOW_REMINDER_SCHEDULE", DEFAULT_REMINDER_SCHEDULE)
            tasks.append(("schedule_reminders", {"schedule": dict(schedule)}))
            if _config("WORKFLOW_AUTO_ASSIGN_REVIEWERS", True):
                tasks.append(("auto_assign_reviewer", {}))
        elif kind is EntityKind.REQUEST and state == RequestState.ADDITIONAL_INPUT_REQUIRED.value:
            tasks.append(("notify_input_required", {"requested_by": context.get("actor_id")}))
        elif kind is EntityKind.TENDER and state == TenderState.AWARDED.value:
            tasks.append(("notify_award", {"winning_bid_id": context.get("winning_bid_id")}))
        return tasks

    # ── Enqueue ──────────────────────────────────────────────────────────

    def on_enter(self, entity_id: str, state: str, *, kind, trigger_version: int,
                 context: dict | None = None) -> list[int]:
        """
        Enqueue the tasks for (entity_id, state, trigger_version).

        Fire-and-forget: failures are logged and reported as an empty list,
        never raised to the caller.
        """
        task_ids = []
        try:
            for task_kind, payload in self.plan(kind, state, context):
                existing = SideEffectTask.query.filter_by(
                    entity_id=entity_id, kind=task_kind, trigger_version=trigger_version,
                ).first()
                if existing:
                    task_ids.append(existing.id)
                    continue
                task = SideEffectTask(
                    entity_id=entity_id,
                    state=state,
                    kind=task_kind,
                    trigger_version=trigger_version,
                    payload=payload,
                    status="pending",
                    next_attempt_at=_utcnow(),
                )
                db.session.add(task)
                db.session.flush()
                task_ids.append(task.id)
            db.session.commit()
        except IntegrityError:
            # concurrent enqueue of the same trigger; the other writer owns it
            db.session.rollback()
            task_ids = [
                t.id for t in SideEffectTask.query.filter_by(
                    entity_id=entity_id, trigger_version=trigger_version,
                )
            ]
        except SQLAlchemyError as exc:
            db.session.rollback()
            failure = SideEffectFailure(entity_id, f"enqueue:{state}", str(exc))
            logger.error("%s", failure, extra={"entity_id": entity_id})
            return []

        if task_ids:
            logger.debug("Enqueued %d side effect(s) for %s entering %s",
                         len(task_ids), entity_id, state, extra={"entity_id": entity_id})
        return task_ids

    # ── Execution ────────────────────────────────────────────────────────

    def drain(self, *, entity_id: str | None = None, limit: int = 100,
              now: datetime | None = None) -> dict:
        """Execute due pending tasks once each; returns counters."""
        now = now or _utcnow()
        results = {"processed": 0, "done": 0, "retried": 0, "dead": 0}

        q = SideEffectTask.query.filter(SideEffectTask.status == "pending")
        if entity_id:
            q = q.filter(SideEffectTask.entity_id == entity_id)
        candidates = q.order_by(SideEffectTask.id).limit(limit).all()
        due_ids = [t.id for t in candidates if _as_aware(t.next_attempt_at) <= now]

        for task_id in due_ids:
            results["processed"] += 1
            outcome = self.run_task(task_id, now=now)
            results[outcome] += 1

        if results["processed"]:
            logger.info("Side-effect drain: %s", results)
        return results

    def run_task(self, task_id: int, *, now: datetime | None = None) -> str:
        """Run one task in its own transaction; returns done | retried | dead."""
        now = now or _utcnow()
        task = db.session.get(SideEffectTask, task_id)
        if task is None or task.status != "pending":
            return "done"

        handler = self._handlers[task.kind]
        try:
            handler(task)
            task.status = "done"
            task.attempts += 1
            task.completed_at = now
            task.last_error = None
            db.session.commit()
            return "done"
        except Exception as exc:
            # task boundary: the failure is retried or dead-lettered
            db.session.rollback()
            return self._record_failure(task_id, exc, now)

    def _record_failure(self, task_id: int, exc: Exception, now: datetime) -> str:
        task = db.session.get(SideEffectTask, task_id)
        failure = SideEffectFailure(task.entity_id, task.kind, str(exc))
        task.attempts += 1
        task.last_error = str(exc)[:2000]
        max_attempts = _config("SIDE_EFFECT_MAX_ATTEMPTS", 5)

        if task.attempts >= max_attempts:
            task.status = "dead"
            write_audit(
                entity_type="side_effect_task",
                entity_id=str(task.id),
                action="side_effect.dead_lettered",
                diff={"entity_id": task.entity_id, "kind": task.kind,
                      "attempts": task.attempts, "error": task.last_error},
            )
            db.session.commit()
            logger.error("Dead-lettered %s after %d attempts",
                         failure, task.attempts, extra={"entity_id": task.entity_id, "task_id": task.id})
            return "dead"

        backoff = _config("SIDE_EFFECT_RETRY_BACKOFF_SECONDS", 30)
        task.next_attempt_at = now + timedelta(seconds=backoff * 2 ** (task.attempts - 1))
        db.session.commit()
        logger.warning("%s (attempt %d, retry at %s)", failure, task.attempts,
                       task.next_attempt_at.isoformat(),
                       extra={"entity_id": task.entity_id, "task_id": task.id})
        return "retried"

    # ── Handlers ─────────────────────────────────────────────────────────

    def _schedule_reminders(self, task):
        schedule = (task.payload or {}).get("schedule") or DEFAULT_REMINDER_SCHEDULE
        for reminder_kind, days in schedule.items():
            schedule_reminder(task.entity_id, days, kind=reminder_kind,
                              trigger_version=task.trigger_version)

    def _auto_assign_reviewer(self, task):
        entity = self.store.load_entity(task.entity_id)
        if entity.current_state != RequestState.REVIEW.value:
            return
        self.assigner.assign(task.entity_id)

    def _notify_input_required(self, task):
        entity = self.store.load_entity(task.entity_id)
        requested_by = (task.payload or {}).get("requested_by")
        recipient = entity.raised_by
        if requested_by and requested_by == entity.raised_by:
            recipient = entity.assigned_to
        if not recipient:
            logger.info("No recipient for input request on %s", entity.id)
            return
        NotificationService.notify(
            recipient, "additional_input_required",
            {"message": f"Additional input is required on '{entity.title}'.",
             "requested_by": requested_by},
            entity_id=entity.id,
        )

    def _notify_award(self, task):
        winning_bid_id = (task.payload or {}).get("winning_bid_id")
        bids = TenderBid.query.filter_by(tender_id=task.entity_id).all()
        for bid in bids:
            kind = "bid_accepted" if bid.id == winning_bid_id else "bid_rejected"
            NotificationService.notify(
                bid.bidder_id, kind,
                {"bid_id": bid.id, "tender_id": task.entity_id},
                entity_id=task.entity_id,
            )
