"""
Workflow progress percentage — display aid only.

Progress is the position of the current state in a fixed linear ordering.
The request graph has back-edges (review ⇄ additional_input_required,
review ⇄ revision_required), so the value can move backwards or stay flat
across a forward-moving action.  That behaviour is kept as is.
"""

from app.models.workflow import EntityKind, RequestState as RS, TenderState as TS

STATE_ORDER = {
    EntityKind.REQUEST: [
        RS.DRAFT, RS.REVIEW, RS.ADDITIONAL_INPUT_REQUIRED,
        RS.REVISION_REQUIRED, RS.APPROVED, RS.RESPONDED, RS.CLOSED,
    ],
    # cancelled is terminal: it ends the lifecycle like awarded does
    EntityKind.TENDER: [TS.DRAFT, TS.OPEN, TS.CLOSED, TS.AWARDED],
}


def progress(entity) -> int:
    """Return 0..100 for *entity* (anything with ``entity_kind`` and ``current_state``)."""
    return progress_for(entity.entity_kind, entity.current_state)


def progress_for(kind, state) -> int:
    kind = EntityKind(kind)
    state = getattr(state, "value", state)
    if kind is EntityKind.TENDER and state == TS.CANCELLED.value:
        return 100
    order = [s.value for s in STATE_ORDER[kind]]
    if state not in order:
        return 0
    pct = order.index(state) / (len(order) - 1) * 100
    return int(pct + 0.5)
