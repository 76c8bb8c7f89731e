"""
Finance Repository

Data access for the matching engine. Reads only; writes go through the
session owned by the caller so one commit can cover several rows.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.finance_models import (
    FinanceTransactionDB, LedgerEntryDB, FinanceAuditLogDB,
    TransactionStatus, MATCHABLE_LEDGER_STATUSES, AUDIT_ENTITY_MATCH
)


class FinanceRepository:
    """Queries over finance_transactions, finance_ledger_entries and finance_audit_log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== TRANSACTIONS ====================

    async def get_transaction(self, transaction_id: str) -> Optional[FinanceTransactionDB]:
        result = await self.session.execute(
            select(FinanceTransactionDB)
            .where(FinanceTransactionDB.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_imported_transactions(self, limit: int) -> List[FinanceTransactionDB]:
        """Unmatched transactions, most recently posted first"""
        result = await self.session.execute(
            select(FinanceTransactionDB)
            .where(FinanceTransactionDB.status == TransactionStatus.IMPORTED)
            .order_by(FinanceTransactionDB.posted_at.desc().nulls_last(), FinanceTransactionDB.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    # ==================== LEDGER ENTRIES ====================

    async def get_ledger_entry(
        self,
        ledger_entry_id: str,
        for_update: bool = False
    ) -> Optional[LedgerEntryDB]:
        """
        Load a ledger entry, optionally row-locked for a read-modify-write.

        Always refreshes the identity map copy so a retried commit sees the
        current link list and version.
        """
        query = (
            select(LedgerEntryDB)
            .where(LedgerEntryDB.id == ledger_entry_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_matchable_ledger_entries(self, limit: int) -> List[LedgerEntryDB]:
        """Candidate pool: needs_approval/approved entries, most recent entry_date first"""
        result = await self.session.execute(
            select(LedgerEntryDB)
            .where(LedgerEntryDB.status.in_(MATCHABLE_LEDGER_STATUSES))
            .order_by(LedgerEntryDB.entry_date.desc().nulls_last(), LedgerEntryDB.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    # ==================== AUDIT ====================

    def add_audit_record(self, record: FinanceAuditLogDB) -> FinanceAuditLogDB:
        self.session.add(record)
        return record

    async def list_audit_records(
        self,
        transaction_id: Optional[str] = None,
        ledger_entry_id: Optional[str] = None,
        limit: int = 100
    ) -> List[FinanceAuditLogDB]:
        """Match audit records, newest first. entity_id is '<transaction>:<ledger entry>'."""
        query = select(FinanceAuditLogDB).where(FinanceAuditLogDB.entity_type == AUDIT_ENTITY_MATCH)

        if transaction_id and ledger_entry_id:
            query = query.where(FinanceAuditLogDB.entity_id == f"{transaction_id}:{ledger_entry_id}")
        elif transaction_id:
            query = query.where(FinanceAuditLogDB.entity_id.startswith(f"{transaction_id}:", autoescape=True))
        elif ledger_entry_id:
            query = query.where(FinanceAuditLogDB.entity_id.endswith(f":{ledger_entry_id}", autoescape=True))

        result = await self.session.execute(
            query.order_by(FinanceAuditLogDB.occurred_at.desc(), FinanceAuditLogDB.id).limit(limit)
        )
        return list(result.scalars().all())
