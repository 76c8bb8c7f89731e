"""
Candidate Generator

Ranks ledger entries that could be the bookkeeping side of an imported
transaction. Pure read: nothing is written.

Pool rules:
- Only needs_approval / approved ledger entries (drafts are not confirmed
  obligations, locked entries are immutable)
- At most ledger_pool_limit entries, most recent entry_date first; older
  entries are simply not candidates for that call
- Without a transaction id, the transaction_pool_limit most recently posted
  "imported" transactions get one bundle each
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation.errors import EntityNotFoundError
from reconciliation.matching_rules.ledger_rules import LedgerMatchingRules, ledger_rules
from reconciliation.policy import MatchPolicy, default_policy
from reconciliation.services.events import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.services.finance_repository import FinanceRepository

logger = logging.getLogger(__name__)


def _as_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _as_iso(value: Any) -> Optional[str]:
    return value.isoformat() if hasattr(value, "isoformat") else value


def _transaction_snapshot(txn) -> Dict[str, Any]:
    """Plain copy of the fields the scorer reads, safe to hand to worker threads"""
    return {
        "id": txn.id,
        "amount": txn.amount,
        "posted_at": txn.posted_at,
        "description_raw": txn.description_raw,
    }


def _ledger_snapshot(entry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "gross_amount": entry.gross_amount,
        "entry_date": entry.entry_date,
        "description": entry.description,
    }


@dataclass
class MatchSuggestion:
    """A single ranked ledger entry candidate."""
    ledger_entry_id: str
    confidence: float
    reasons: List[str] = field(default_factory=list)
    ledger_description: Optional[str] = None
    ledger_amount: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ledger_entry_id": self.ledger_entry_id,
            "confidence": self.confidence,
            "reasons": self.reasons,
            "ledger_description": self.ledger_description,
            "ledger_amount": self.ledger_amount,
        }


@dataclass
class TransactionSuggestions:
    """Ranked suggestions for one transaction."""
    transaction_id: str
    transaction_amount: Optional[float] = None
    transaction_date: Optional[str] = None
    description: Optional[str] = None
    suggestions: List[MatchSuggestion] = field(default_factory=list)

    @property
    def top(self) -> Optional[MatchSuggestion]:
        return self.suggestions[0] if self.suggestions else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "transaction_amount": self.transaction_amount,
            "transaction_date": self.transaction_date,
            "description": self.description,
            "suggestions": [s.to_dict() for s in self.suggestions],
        }


class CandidateGenerator:
    """
    Scores the ledger pool against one or many transactions.
    """

    def __init__(
        self,
        db: AsyncSession,
        rules: LedgerMatchingRules = ledger_rules,
        policy: MatchPolicy = default_policy
    ):
        self.db = db
        self.repository = FinanceRepository(db)
        self.rules = rules
        self.policy = policy

    async def suggest(
        self,
        transaction_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[TransactionSuggestions]:
        """
        Suggest ledger entries for a transaction, or for the recent imported pool.

        Args:
            transaction_id: Transaction to match; None means the imported pool
            limit: Max suggestions per transaction (default 8, capped at 20)

        Returns:
            One TransactionSuggestions bundle per transaction, in pool order

        Raises:
            EntityNotFoundError: transaction_id given but unknown
        """
        limit = self.policy.clamp_suggestion_limit(limit)

        if transaction_id:
            txn = await self.repository.get_transaction(transaction_id)
            if txn is None:
                raise EntityNotFoundError("Transaction", transaction_id)
            transactions = [txn]
        else:
            transactions = await self.repository.list_imported_transactions(
                self.policy.transaction_pool_limit
            )

        if not transactions:
            return []

        entries = await self.repository.list_matchable_ledger_entries(self.policy.ledger_pool_limit)

        txn_snapshots = [_transaction_snapshot(t) for t in transactions]
        pool = [_ledger_snapshot(e) for e in entries]

        if len(txn_snapshots) == 1:
            bundles = [self.rank(txn_snapshots[0], pool, limit)]
        else:
            bundles = await self._rank_concurrently(txn_snapshots, pool, limit)

        log_reconciliation_event(
            ReconciliationAuditEvent.CANDIDATES_FOUND,
            {
                "transaction_id": transaction_id,
                "transactions": len(bundles),
                "pool_size": len(pool),
                "suggestions": sum(len(b.suggestions) for b in bundles),
            }
        )

        return bundles

    async def _rank_concurrently(
        self,
        transactions: Sequence[Dict[str, Any]],
        pool: Sequence[Dict[str, Any]],
        limit: int
    ) -> List[TransactionSuggestions]:
        loop = asyncio.get_running_loop()
        workers = max(1, min(self.policy.scoring_workers, len(transactions)))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="match-score") as executor:
            futures = [
                loop.run_in_executor(executor, self.rank, txn, pool, limit)
                for txn in transactions
            ]
            return list(await asyncio.gather(*futures))

    def rank(
        self,
        transaction: Dict[str, Any],
        pool: Sequence[Dict[str, Any]],
        limit: int
    ) -> TransactionSuggestions:
        """Score, filter to the suggestion floor, stable-sort and truncate."""
        suggestions = []
        for entry in pool:
            breakdown = self.rules.score_breakdown(transaction, entry)
            if not self.policy.is_suggestible(breakdown.confidence):
                continue
            suggestions.append(MatchSuggestion(
                ledger_entry_id=entry["id"],
                confidence=breakdown.confidence,
                reasons=breakdown.reasons,
                ledger_description=entry.get("description"),
                ledger_amount=_as_float(entry.get("gross_amount")),
            ))

        # sorted() is stable: ties keep pool order (most recent first)
        suggestions = sorted(suggestions, key=lambda s: s.confidence, reverse=True)[:limit]

        return TransactionSuggestions(
            transaction_id=transaction["id"],
            transaction_amount=_as_float(transaction.get("amount")),
            transaction_date=_as_iso(transaction.get("posted_at")),
            description=transaction.get("description_raw"),
            suggestions=suggestions,
        )
