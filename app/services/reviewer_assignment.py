"""
Reviewer auto-assignment.

Picks the active project reviewer with the fewest requests currently in
review (ties broken by user id), never the raiser.  Writes only
``assigned_to``; the lifecycle state is untouched.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from app.models import db
from app.models.workflow import EntityKind, ProjectReviewer, RequestState, WorkflowEntity
from app.services.notification import NotificationService
from app.services.workflow_store import WorkflowStore

logger = logging.getLogger(__name__)


class ReviewerAssigner:

    def __init__(self, store: WorkflowStore | None = None):
        self.store = store or WorkflowStore()

    def candidates(self, entity) -> list[str]:
        if entity.project_id is None:
            return []
        rows = (
            ProjectReviewer.query
            .filter_by(project_id=entity.project_id, is_active=True)
            .order_by(ProjectReviewer.user_id)
            .all()
        )
        return [r.user_id for r in rows if r.user_id != entity.raised_by]

    def _open_review_load(self, user_ids: list[str]) -> dict[str, int]:
        if not user_ids:
            return {}
        rows = db.session.execute(
            select(WorkflowEntity.assigned_to, func.count(WorkflowEntity.id))
            .where(
                WorkflowEntity.entity_kind == EntityKind.REQUEST.value,
                WorkflowEntity.current_state == RequestState.REVIEW.value,
                WorkflowEntity.assigned_to.in_(user_ids),
            )
            .group_by(WorkflowEntity.assigned_to)
        ).all()
        return {user_id: count for user_id, count in rows}

    def assign(self, entity_id: str) -> str | None:
        """Assign a reviewer to *entity_id* if it has none; returns the assignee."""
        entity = self.store.load_entity(entity_id)
        if entity.assigned_to:
            return entity.assigned_to

        candidates = self.candidates(entity)
        if not candidates:
            logger.info("No reviewer candidates for %s (project=%s)",
                        entity_id, entity.project_id)
            return None

        load = self._open_review_load(candidates)
        chosen = min(candidates, key=lambda uid: (load.get(uid, 0), uid))
        self.store.set_fields(entity_id, assigned_to=chosen)
        NotificationService.notify(
            chosen, "reviewer_assigned",
            {"message": f"You are now reviewing '{entity.title}'."},
            entity_id=entity_id,
        )
        logger.info("Auto-assigned reviewer %s to %s", chosen, entity_id,
                    extra={"entity_id": entity_id})
        return chosen
