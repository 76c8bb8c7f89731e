"""
Match Commit Engine

Links a transaction to a ledger entry and records the decision.

The ledger entry update, the transaction status update and the audit append
are flushed and committed in one database transaction. The ledger row is
read FOR UPDATE and carries a version counter; if another writer changed it
first, the whole attempt is rolled back and replayed from a fresh read.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from database.finance_models import (
    FinanceAuditLogDB, TransactionStatus, LedgerEntryStatus, AuditAction,
    TRANSACTION_STATUS_HIERARCHY, AUDIT_ENTITY_MATCH
)
from reconciliation.errors import (
    MatchValidationError, EntityNotFoundError, LedgerEntryLockedError, ConcurrentMatchError
)
from reconciliation.link_set import LinkedIdSet
from reconciliation.policy import MatchPolicy, MatchReason, default_policy
from reconciliation.services.events import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.services.finance_repository import FinanceRepository

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    """Outcome of a successful commit."""
    transaction_id: str
    ledger_entry_id: str
    status: str
    newly_linked: bool = True
    audit_id: Optional[str] = None
    attempts: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "ledger_entry_id": self.ledger_entry_id,
            "status": self.status,
        }


def _status_value(status) -> Optional[str]:
    return status.value if hasattr(status, "value") else status


class MatchCommitEngine:
    """
    Commits transaction/ledger entry matches.
    """

    def __init__(self, db: AsyncSession, policy: MatchPolicy = default_policy):
        self.db = db
        self.repository = FinanceRepository(db)
        self.policy = policy

    async def commit(
        self,
        transaction_id: str,
        ledger_entry_id: str,
        *,
        actor: str = "system",
        mark_reconciled: bool = False,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> CommitResult:
        """
        Link a transaction to a ledger entry.

        Args:
            transaction_id: Transaction being matched
            ledger_entry_id: Ledger entry it pays
            actor: Who is committing ("system" for unattended jobs)
            mark_reconciled: Final confirmation instead of a provisional match
            reason: Audit reason (defaults to "manual_match")
            metadata: Extra audit metadata

        Returns:
            CommitResult with the transaction's new status

        Raises:
            MatchValidationError: An id is missing (before any read)
            EntityNotFoundError: Transaction or ledger entry does not exist
            LedgerEntryLockedError: The ledger entry is locked
            ConcurrentMatchError: Version conflicts on every attempt
        """
        if not transaction_id:
            raise MatchValidationError("transaction_id")
        if not ledger_entry_id:
            raise MatchValidationError("ledger_entry_id")

        actor = actor or "system"
        reason = reason or MatchReason.MANUAL

        attempts = self.policy.commit_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                result = await self._apply(
                    transaction_id, ledger_entry_id, actor, mark_reconciled, reason, metadata
                )
                await self.db.commit()
            except StaleDataError:
                await self.db.rollback()
                logger.warning(
                    f"Ledger entry {ledger_entry_id} changed during commit "
                    f"(attempt {attempt}/{attempts}), retrying"
                )
                continue
            except Exception:
                await self.db.rollback()
                raise

            result.attempts = attempt
            log_reconciliation_event(
                ReconciliationAuditEvent.MATCH_COMMITTED,
                {
                    "transaction_id": transaction_id,
                    "ledger_entry_id": ledger_entry_id,
                    "status": result.status,
                    "newly_linked": result.newly_linked,
                    "reason": reason,
                    "attempts": attempt,
                },
                actor=actor
            )
            return result

        logger.error(f"Giving up on match {transaction_id}:{ledger_entry_id} after {attempts} attempts")
        raise ConcurrentMatchError(
            f"Ledger entry {ledger_entry_id} was modified concurrently; "
            f"commit abandoned after {attempts} attempts"
        )

    async def _apply(
        self,
        transaction_id: str,
        ledger_entry_id: str,
        actor: str,
        mark_reconciled: bool,
        reason: str,
        metadata: Optional[Dict[str, Any]]
    ) -> CommitResult:
        """One attempt: read, mutate, stage the audit row and flush. Caller commits."""
        txn = await self.repository.get_transaction(transaction_id)
        if txn is None:
            raise EntityNotFoundError("Transaction", transaction_id)

        entry = await self.repository.get_ledger_entry(ledger_entry_id, for_update=True)
        if entry is None:
            raise EntityNotFoundError("Ledger entry", ledger_entry_id)

        if entry.status == LedgerEntryStatus.LOCKED:
            raise LedgerEntryLockedError(f"Ledger entry {ledger_entry_id} is locked")

        links = LinkedIdSet.from_stored(entry.linked_transaction_ids)
        before_state = {
            "transaction_status": _status_value(txn.status),
            "ledger_status": _status_value(entry.status),
            "linked_transaction_ids": links.to_list(),
        }

        # Ledger entry: idempotent link, first link surfaces a draft for approval
        newly_linked = links.add(txn.id)
        if newly_linked:
            entry.linked_transaction_ids = links.to_list()
        if entry.status == LedgerEntryStatus.DRAFT:
            entry.status = LedgerEntryStatus.NEEDS_APPROVAL

        # Transaction: advance only
        target = TransactionStatus.RECONCILED if mark_reconciled else TransactionStatus.MATCHED
        if TRANSACTION_STATUS_HIERARCHY[target] > TRANSACTION_STATUS_HIERARCHY[TransactionStatus(txn.status)]:
            txn.status = target

        after_state = {
            "transaction_status": _status_value(txn.status),
            "ledger_status": _status_value(entry.status),
            "linked_transaction_ids": links.to_list(),
        }

        audit = self.repository.add_audit_record(FinanceAuditLogDB(
            entity_type=AUDIT_ENTITY_MATCH,
            entity_id=f"{txn.id}:{entry.id}",
            action=AuditAction.RECONCILE if mark_reconciled else AuditAction.MATCH,
            actor=actor,
            reason=reason,
            before_state=before_state,
            after_state=after_state,
            event_metadata={
                **(metadata or {}),
                "transaction_id": txn.id,
                "ledger_entry_id": entry.id,
            },
        ))

        await self.db.flush()

        return CommitResult(
            transaction_id=txn.id,
            ledger_entry_id=entry.id,
            status=_status_value(txn.status),
            newly_linked=newly_linked,
            audit_id=audit.id,
        )
