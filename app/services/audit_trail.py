"""
Workflow audit trail.

Append-only transition history per entity.  The ordered history is the
canonical record of how an entity reached its current state; records are
never updated or deleted.
"""

from __future__ import annotations

from app.models.workflow import INITIAL_STATE, EntityKind, TransitionRecord
from app.services.state_machine import replay
from app.services.workflow_store import WorkflowStore


class AuditTrail:

    def __init__(self, store: WorkflowStore | None = None):
        self.store = store or WorkflowStore()

    def append(self, record: TransitionRecord) -> TransitionRecord:
        """Stage *record* in the caller's transaction; durable once it commits."""
        return self.store.append_transition(record)

    def history(self, entity_id: str) -> list[TransitionRecord]:
        return self.store.read_history(entity_id)

    def latest(self, entity_id: str) -> TransitionRecord | None:
        return self.store.latest_transition(entity_id)

    def replayed_state(self, entity) -> str:
        """State obtained by folding the entity's history from its initial state."""
        kind = EntityKind(entity.entity_kind)
        actions = [r.action for r in self.history(entity.id)]
        return replay(kind, INITIAL_STATE[kind], actions)

    def is_consistent(self, entity) -> bool:
        """True when ``current_state`` matches the latest record (or the initial state)."""
        last = self.latest(entity.id)
        if last is None:
            return entity.current_state == INITIAL_STATE[EntityKind(entity.entity_kind)].value
        return entity.current_state == last.to_state
