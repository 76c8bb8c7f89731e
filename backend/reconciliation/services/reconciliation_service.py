"""
Reconciliation Service

Entry points of the matching engine:
- Suggesting ledger entries for imported transactions
- Committing a match (manual or reconciled)
- Running the auto-match batch
- Reading the match audit trail

The acting user is always passed in explicitly; unattended callers use "system".
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation.policy import MatchPolicy, default_policy
from reconciliation.services.auto_match_service import AutoMatchRunner, AutoMatchRunResult
from reconciliation.services.candidate_service import CandidateGenerator, TransactionSuggestions
from reconciliation.services.commit_service import MatchCommitEngine, CommitResult
from reconciliation.services.events import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.services.finance_repository import FinanceRepository

logger = logging.getLogger(__name__)

__all__ = [
    'ReconciliationService',
    'ReconciliationAuditEvent',
    'log_reconciliation_event',
]


def _audit_to_dict(record) -> Dict[str, Any]:
    return {
        "id": record.id,
        "entity_type": record.entity_type,
        "entity_id": record.entity_id,
        "action": record.action.value if hasattr(record.action, "value") else record.action,
        "actor": record.actor,
        "reason": record.reason,
        "before_state": record.before_state,
        "after_state": record.after_state,
        "metadata": record.event_metadata,
        "occurred_at": record.occurred_at.isoformat() if record.occurred_at else None,
    }


class ReconciliationService:
    """
    Service for matching imported transactions to ledger entries.
    """

    def __init__(self, db: AsyncSession, policy: MatchPolicy = default_policy):
        self.db = db
        self.policy = policy
        self.repository = FinanceRepository(db)
        self.generator = CandidateGenerator(db, policy=policy)
        self.commit_engine = MatchCommitEngine(db, policy=policy)
        self.auto_match_runner = AutoMatchRunner(
            db,
            generator=self.generator,
            commit_engine=self.commit_engine,
            policy=policy
        )

    async def suggest_matches(
        self,
        transaction_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[TransactionSuggestions]:
        """
        Ranked ledger entry suggestions.

        Args:
            transaction_id: One transaction, or None for the recent imported pool
            limit: Suggestions per transaction (default 8, max 20)
        """
        return await self.generator.suggest(transaction_id, limit)

    async def commit_match(
        self,
        transaction_id: str,
        ledger_entry_id: str,
        mark_reconciled: bool = False,
        reason: Optional[str] = None,
        actor: str = "system"
    ) -> CommitResult:
        """Link a transaction to a ledger entry and write the audit record."""
        return await self.commit_engine.commit(
            transaction_id,
            ledger_entry_id,
            actor=actor,
            mark_reconciled=mark_reconciled,
            reason=reason
        )

    async def run_auto_match(
        self,
        limit: Optional[int] = None,
        actor: str = "system"
    ) -> AutoMatchRunResult:
        """Auto-commit high confidence matches for recent imported transactions."""
        return await self.auto_match_runner.run(limit, actor=actor)

    async def get_audit_trail(
        self,
        transaction_id: Optional[str] = None,
        ledger_entry_id: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Match audit records, newest first."""
        limit = max(1, min(500, int(limit or 100)))
        records = await self.repository.list_audit_records(
            transaction_id=transaction_id,
            ledger_entry_id=ledger_entry_id,
            limit=limit
        )
        return [_audit_to_dict(r) for r in records]
