"""
Bid evaluation and ranking.

Scores are 0-100 per criterion; ``overall_score`` is the criteria-weighted
sum divided by 100, so with weights summing to 100 it stays on the 0-100
scale.  Evaluation never touches a bid's status: accepted / rejected are
written only by the award coordinator.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from app.core.exceptions import ValidationError
from app.models.tender import CRITERIA_FIELDS, DEFAULT_EVALUATION_CRITERIA, SCORE_FIELDS

logger = logging.getLogger(__name__)


def validate_criteria(criteria: dict | None) -> dict:
    """Return a complete criteria dict; weights must be 0-100 and sum to 100."""
    if criteria is None:
        return dict(DEFAULT_EVALUATION_CRITERIA)
    unknown = sorted(set(criteria) - set(CRITERIA_FIELDS))
    if unknown:
        raise ValidationError("Unknown evaluation criteria",
                              details={"unknown": unknown})

    merged = {key: 0 for key in CRITERIA_FIELDS}
    for key, raw in criteria.items():
        try:
            weight = float(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"{key} must be a number", details={key: raw}) from None
        if not 0 <= weight <= 100:
            raise ValidationError(f"{key} must be between 0 and 100", details={key: raw})
        merged[key] = weight

    total = sum(merged.values())
    if abs(total - 100) > 1e-6:
        raise ValidationError("Evaluation weights must sum to 100",
                              details={"total": total})
    return merged


def weighted_score(scores: dict, criteria: dict) -> float:
    total = 0.0
    for weight_key, score_field in CRITERIA_FIELDS.items():
        total += float(scores.get(score_field) or 0) * float(criteria.get(weight_key, 0))
    return round(total / 100, 2)


def evaluate_bid(bid, scores: dict, *, evaluator_id: str, notes: str | None = None,
                 criteria: dict | None = None):
    """
    Record an evaluator's scores on *bid* and recompute ``overall_score``.

    Missing score fields keep their previous value.  Flushes nothing; the
    caller commits.
    """
    unknown = sorted(set(scores) - set(SCORE_FIELDS))
    if unknown:
        raise ValidationError("Unknown score fields", details={"unknown": unknown})

    for field_name, raw in scores.items():
        if raw is None:
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"{field_name} must be a number",
                                  details={field_name: raw}) from None
        if not 0 <= value <= 100:
            raise ValidationError(f"{field_name} must be between 0 and 100",
                                  details={field_name: raw})
        setattr(bid, field_name, value)

    criteria = validate_criteria(criteria)
    current = {f: getattr(bid, f) for f in SCORE_FIELDS}
    bid.overall_score = weighted_score(current, criteria)
    bid.evaluator_id = evaluator_id
    bid.evaluator_notes = notes
    bid.evaluated_at = datetime.now(timezone.utc)
    logger.debug("Bid %s evaluated by %s: %.2f", bid.id, evaluator_id, bid.overall_score)
    return bid


def rank_bids(bids) -> list:
    """Highest overall score first, unscored last; ties go to the cheaper bid."""
    return sorted(
        bids,
        key=lambda b: (
            b.overall_score is None,
            -(b.overall_score or 0),
            float(b.amount),
            b.submitted_at,
        ),
    )
