"""
Platform-wide exception hierarchy.

Services raise these types; the application factory registers one error
handler per type so every blueprint gets the same HTTP mapping.

Usage:
    from app.core.exceptions import NotFoundError, InvalidTransition

    raise NotFoundError(resource="Tender", resource_id=tender_id)
    raise InvalidTransition(entity_id, "approve", "draft")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Request", "Bid").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Workflow errors ──────────────────────────────────────────────────────────


class WorkflowError(Exception):
    """Base class for lifecycle engine failures.

    ``retryable`` tells callers whether re-reading and trying again can help.
    """

    retryable = False

    def __init__(self, message: str, *, entity_id: str | None = None) -> None:
        self.entity_id = entity_id
        super().__init__(message)


class InvalidTransition(WorkflowError):
    """The action is not defined for the entity's current state."""

    def __init__(self, entity_id: str | None, action: str, current_state: str,
                 reason: str | None = None) -> None:
        msg = f"Cannot '{action}' entity {entity_id} (state={current_state})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, entity_id=entity_id)
        self.action = action
        self.current_state = current_state
        self.reason = reason


class PermissionDenied(WorkflowError):
    """The actor may not invoke the action on this entity in its current state."""

    def __init__(self, entity_id: str | None, actor_id: str | None, action: str) -> None:
        super().__init__(
            f"Actor {actor_id or '<anonymous>'} may not '{action}' entity {entity_id}",
            entity_id=entity_id,
        )
        self.actor_id = actor_id
        self.action = action


class ConcurrentModification(WorkflowError):
    """Another writer changed the entity between read and conditional write."""

    retryable = True

    def __init__(self, entity_id: str | None, expected_state: str,
                 expected_version: int | None = None) -> None:
        super().__init__(
            f"Entity {entity_id} is no longer in state '{expected_state}'"
            + (f" at version {expected_version}" if expected_version is not None else ""),
            entity_id=entity_id,
        )
        self.expected_state = expected_state
        self.expected_version = expected_version


class SideEffectFailure(WorkflowError):
    """Follow-up work failed; the triggering transition stays committed."""

    retryable = True

    def __init__(self, entity_id: str | None, kind: str, cause: str) -> None:
        super().__init__(f"Side effect '{kind}' for {entity_id} failed: {cause}",
                         entity_id=entity_id)
        self.kind = kind
        self.cause = cause


class AwardReconciliationRequired(WorkflowError):
    """The tender is awarded but not every sibling bid is rejected yet."""

    retryable = True

    def __init__(self, tender_id: str, winning_bid_id: str, cause: str) -> None:
        super().__init__(
            f"Award of tender {tender_id} to bid {winning_bid_id} pending reconciliation: {cause}",
            entity_id=tender_id,
        )
        self.tender_id = tender_id
        self.winning_bid_id = winning_bid_id
        self.cause = cause
