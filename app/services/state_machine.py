"""
Workflow state machine definition.

Static transition tables for the two lifecycle kinds.  Pure lookups, no I/O.

Usage:
    from app.services.state_machine import next_state, possible_actions_from_state

    state, ok = next_state("request", "review", "approve")   # ("approved", True)
    possible_actions_from_state("tender", "open")             # {"close", "cancel"}
"""

from app.models.workflow import (
    EntityKind,
    RequestAction as RA,
    RequestState as RS,
    TenderAction as TA,
    TenderState as TS,
    coerce_kind,
)

# state → {action: next_state}
REQUEST_TRANSITIONS = {
    RS.DRAFT: {RA.SUBMIT_FOR_REVIEW: RS.REVIEW},
    RS.REVIEW: {
        RA.APPROVE: RS.APPROVED,
        RA.REQUEST_ADDITIONAL_INPUT: RS.ADDITIONAL_INPUT_REQUIRED,
        RA.REQUEST_REVISION: RS.REVISION_REQUIRED,
    },
    RS.ADDITIONAL_INPUT_REQUIRED: {RA.PROVIDE_INPUT: RS.REVIEW},
    RS.REVISION_REQUIRED: {RA.SUBMIT_FOR_REVIEW: RS.REVIEW},
    RS.APPROVED: {RA.RESPOND: RS.RESPONDED},
    RS.RESPONDED: {RA.CLOSE: RS.CLOSED},
    RS.CLOSED: {},
}

TENDER_TRANSITIONS = {
    TS.DRAFT: {TA.PUBLISH: TS.OPEN, TA.CANCEL: TS.CANCELLED},
    TS.OPEN: {TA.CLOSE: TS.CLOSED, TA.CANCEL: TS.CANCELLED},
    TS.CLOSED: {TA.AWARD: TS.AWARDED},
    TS.AWARDED: {},
    TS.CANCELLED: {},
}

TRANSITIONS = {
    EntityKind.REQUEST: REQUEST_TRANSITIONS,
    EntityKind.TENDER: TENDER_TRANSITIONS,
}


def _table(kind):
    return TRANSITIONS[coerce_kind(kind)]


def _key(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


def next_state(kind, current_state, action) -> tuple[str, bool]:
    """
    Look up the state *action* leads to from *current_state*.

    Returns:
        (next_state, True) when the edge exists, otherwise
        (current_state, False).  Unknown states or actions are simply
        absent from the table.
    """
    current = _key(current_state)
    wanted = _key(action)
    for state, edges in _table(kind).items():
        if state.value != current:
            continue
        for edge_action, target in edges.items():
            if edge_action.value == wanted:
                return target.value, True
    return current, False


def possible_actions_from_state(kind, current_state) -> set[str]:
    """Return every action defined out of *current_state* (empty for terminal states)."""
    current = _key(current_state)
    for state, edges in _table(kind).items():
        if state.value == current:
            return {a.value for a in edges}
    return set()


def is_terminal(kind, state) -> bool:
    return not possible_actions_from_state(kind, state)


def replay(kind, initial_state, actions) -> str:
    """
    Fold a sequence of actions through the table starting at *initial_state*.

    Raises ValueError on the first action that is not defined for the
    state reached so far.
    """
    state = _key(initial_state)
    for action in actions:
        state, ok = next_state(kind, state, action)
        if not ok:
            raise ValueError(f"Action '{_key(action)}' undefined from state '{state}'")
    return state
