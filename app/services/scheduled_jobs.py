"""
Construction Collaboration Platform
Scheduled Jobs.

Concrete job implementations that run on a schedule.

Jobs:
    - side_effect_drain:     executes due side-effect tasks (retry/backoff)
    - reminder_dispatch:     sends due review reminders and escalations
    - award_reconciliation:  converges awarded tenders whose bid family
                             update did not finish
"""

from __future__ import annotations

import logging
from typing import Any

from app.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Side-effect drain
# ═══════════════════════════════════════════════════════════════════════════

@register_job("side_effect_drain", every_seconds=30)
def drain_side_effects(app) -> dict[str, Any]:
    """Execute pending side-effect tasks whose retry time has come."""
    from app.services.side_effects import SideEffectDispatcher

    return SideEffectDispatcher().drain(limit=500)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Reminder dispatch
# ═══════════════════════════════════════════════════════════════════════════

@register_job("reminder_dispatch", every_seconds=15 * 60)
def dispatch_reminders(app) -> dict[str, Any]:
    """Notify reviewers of requests still waiting in review."""
    from app.services.reminder_scheduler import dispatch_due_reminders

    return dispatch_due_reminders()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Award reconciliation
# ═══════════════════════════════════════════════════════════════════════════

@register_job("award_reconciliation", every_seconds=5 * 60)
def reconcile_awards(app) -> dict[str, Any]:
    """Replay the bid-family update of awarded tenders pending reconciliation."""
    from app.services.award import AwardCoordinator

    results = AwardCoordinator().reconcile_pending()
    if results["still_pending"]:
        logger.warning("Award reconciliation: %d tender(s) still pending",
                       results["still_pending"])
    return results
