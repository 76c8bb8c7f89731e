"""
Structured log events emitted by the matching services.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger("reconciliation")


class ReconciliationAuditEvent:
    """Event types for reconciliation operations."""
    CANDIDATES_FOUND = "reconciliation.candidates_found"
    MATCH_COMMITTED = "reconciliation.match_committed"
    AUTO_MATCH_STARTED = "reconciliation.auto_match_started"
    AUTO_MATCH_COMPLETED = "reconciliation.auto_match_completed"
    AUTO_MATCH_ITEM_FAILED = "reconciliation.auto_match_item_failed"


def log_reconciliation_event(
    event_type: str,
    details: Dict[str, Any],
    actor: str = "system",
    level: int = logging.INFO
):
    """Log reconciliation event for the operational trail."""
    log_entry = {
        "event": event_type,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.log(level, f"Reconciliation event: {event_type}", extra=log_entry)
