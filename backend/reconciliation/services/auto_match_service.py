"""
Auto-Match Batch Runner

Commits only the matches the scorer is nearly sure about; everything else is
left for human review. One bad transaction never stops the batch.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation.policy import MatchPolicy, MatchReason, default_policy
from reconciliation.services.candidate_service import CandidateGenerator
from reconciliation.services.commit_service import MatchCommitEngine
from reconciliation.services.events import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.services.finance_repository import FinanceRepository
from sentry_integration import capture_exception

logger = logging.getLogger(__name__)


class AutoMatchOutcome:
    COMMITTED = "committed"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class AutoMatchRunResult:
    """Result of an auto-match run."""
    run_id: str
    scanned: int = 0
    committed: int = 0
    skipped: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "scanned": self.scanned,
            "committed": self.committed,
            "skipped": self.skipped,
            "details": self.details,
        }


class AutoMatchRunner:
    """
    Batch runner over the most recently posted imported transactions.
    """

    def __init__(
        self,
        db: AsyncSession,
        generator: Optional[CandidateGenerator] = None,
        commit_engine: Optional[MatchCommitEngine] = None,
        policy: MatchPolicy = default_policy
    ):
        self.db = db
        self.repository = FinanceRepository(db)
        self.policy = policy
        self.generator = generator or CandidateGenerator(db, policy=policy)
        self.commit_engine = commit_engine or MatchCommitEngine(db, policy=policy)

    async def run(self, limit: Optional[int] = None, *, actor: str = "system") -> AutoMatchRunResult:
        """
        Auto-commit top candidates at or above the auto-match threshold.

        Only the initial transaction fetch can fail the run; per-transaction
        errors are logged, reported and counted as skipped.
        """
        limit = self.policy.clamp_auto_match_limit(limit)
        result = AutoMatchRunResult(run_id=str(uuid.uuid4()))

        log_reconciliation_event(
            ReconciliationAuditEvent.AUTO_MATCH_STARTED,
            {"run_id": result.run_id, "limit": limit},
            actor=actor
        )

        transactions = await self.repository.list_imported_transactions(limit)
        # Ids only: a rolled-back item expires every loaded instance
        transaction_ids = [txn.id for txn in transactions]
        result.scanned = len(transaction_ids)

        for transaction_id in transaction_ids:
            try:
                detail = await self._process(transaction_id, result.run_id, actor)
            except Exception as e:
                await self.db.rollback()
                logger.warning(f"Auto-match failed for transaction {transaction_id}: {e}")
                log_reconciliation_event(
                    ReconciliationAuditEvent.AUTO_MATCH_ITEM_FAILED,
                    {
                        "run_id": result.run_id,
                        "transaction_id": transaction_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                    actor=actor,
                    level=logging.WARNING
                )
                capture_exception(e, run_id=result.run_id, transaction_id=transaction_id)
                detail = {
                    "transaction_id": transaction_id,
                    "outcome": AutoMatchOutcome.ERROR,
                    "error": str(e),
                }

            if detail["outcome"] == AutoMatchOutcome.COMMITTED:
                result.committed += 1
            else:
                result.skipped += 1
            result.details.append(detail)

        log_reconciliation_event(
            ReconciliationAuditEvent.AUTO_MATCH_COMPLETED,
            {
                "run_id": result.run_id,
                "scanned": result.scanned,
                "committed": result.committed,
                "skipped": result.skipped,
            },
            actor=actor
        )

        return result

    async def _process(self, transaction_id: str, run_id: str, actor: str) -> Dict[str, Any]:
        bundles = await self.generator.suggest(transaction_id, limit=1)
        top = bundles[0].top if bundles else None

        if top is None:
            return {"transaction_id": transaction_id, "outcome": AutoMatchOutcome.SKIPPED}

        if not self.policy.is_auto_committable(top.confidence):
            return {
                "transaction_id": transaction_id,
                "outcome": AutoMatchOutcome.SKIPPED,
                "ledger_entry_id": top.ledger_entry_id,
                "confidence": top.confidence,
            }

        await self.commit_engine.commit(
            transaction_id,
            top.ledger_entry_id,
            actor=actor,
            mark_reconciled=False,
            reason=MatchReason.AUTO_HIGH_CONFIDENCE,
            metadata={"confidence": top.confidence, "run_id": run_id}
        )

        return {
            "transaction_id": transaction_id,
            "outcome": AutoMatchOutcome.COMMITTED,
            "ledger_entry_id": top.ledger_entry_id,
            "confidence": top.confidence,
        }
