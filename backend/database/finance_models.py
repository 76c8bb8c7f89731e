"""
Ledger Match Engine - Finance Database Models

Records the matching engine reads and writes. Transactions and ledger entries
are created by ingestion and bookkeeping collaborators; the engine only links
them and advances their statuses.

Tables:
- finance_transactions: Imported bank/payment events
- finance_ledger_entries: Bookkeeping lines with their linked transaction ids
- finance_audit_log: Append-only record of every matching decision
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Column, String, Text, Integer, DateTime, Index, Enum as SQLEnum, JSON, Numeric,
    event
)
from sqlalchemy.orm import validates

from database.connection import Base
from reconciliation.errors import AuditLogImmutableError


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members]
    )


# ==================== ENUMS ====================

class TransactionSource(str, PyEnum):
    """Provider a transaction was imported from"""
    HALIFAX = "halifax"
    MONZO = "monzo"
    PAYPAL = "paypal"
    SHOPIFY = "shopify"
    OTHER = "other"


class TransactionStatus(str, PyEnum):
    """Transaction lifecycle"""
    IMPORTED = "imported"
    MATCHED = "matched"
    RECONCILED = "reconciled"
    IGNORED = "ignored"


class LedgerDirection(str, PyEnum):
    INCOME = "income"
    EXPENSE = "expense"


class LedgerEntryStatus(str, PyEnum):
    """Ledger entry approval workflow"""
    DRAFT = "draft"
    NEEDS_APPROVAL = "needs_approval"
    APPROVED = "approved"
    LOCKED = "locked"


class AuditAction(str, PyEnum):
    """Matching decisions recorded in the audit log"""
    MATCH = "match"
    RECONCILE = "reconcile"


# Status hierarchies for "never move backwards" comparisons
TRANSACTION_STATUS_HIERARCHY = {
    TransactionStatus.IMPORTED: 0,
    TransactionStatus.IGNORED: 0,
    TransactionStatus.MATCHED: 1,
    TransactionStatus.RECONCILED: 2,
}

LEDGER_STATUS_HIERARCHY = {
    LedgerEntryStatus.DRAFT: 0,
    LedgerEntryStatus.NEEDS_APPROVAL: 1,
    LedgerEntryStatus.APPROVED: 2,
    LedgerEntryStatus.LOCKED: 3,
}

# Ledger entries the candidate generator may propose
MATCHABLE_LEDGER_STATUSES = (LedgerEntryStatus.NEEDS_APPROVAL, LedgerEntryStatus.APPROVED)

AUDIT_ENTITY_MATCH = "finance_match"


def build_source_unique_ref(source: str, account_id: Optional[str], source_txn_id: str) -> str:
    """Composite key used for idempotent re-ingestion: source:account:native id."""
    source_value = source.value if isinstance(source, PyEnum) else str(source)
    return f"{source_value}:{account_id or 'default'}:{source_txn_id}"


# ==================== DATABASE MODELS ====================

class FinanceTransactionDB(Base):
    """
    An externally sourced payment event.

    source_unique_ref is set once by ingestion and never changes. Status is
    advanced only by the match commit path (or an explicit manual override).
    """
    __tablename__ = "finance_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    # Source tracking
    source = Column(
        _enum_column(TransactionSource, "finance_transaction_source_enum"),
        nullable=False,
        default=TransactionSource.OTHER
    )
    source_txn_id = Column(String(255), nullable=False)
    account_id = Column(String(36), nullable=True, index=True)
    source_unique_ref = Column(String(512), nullable=False, unique=True)

    # Payment data
    posted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="GBP")
    counterparty_raw = Column(Text, nullable=True)
    description_raw = Column(Text, nullable=True)
    raw_payload = Column(JSON, nullable=True)

    status = Column(
        _enum_column(TransactionStatus, "finance_transaction_status_enum"),
        nullable=False,
        default=TransactionStatus.IMPORTED,
        index=True
    )

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_finance_transactions_status_posted', 'status', 'posted_at'),
    )

    @validates("source_unique_ref")
    def _validate_source_unique_ref(self, key, value):
        current = self.__dict__.get("source_unique_ref")
        if current is not None and value != current:
            raise ValueError("source_unique_ref is immutable once set")
        return value


class LedgerEntryDB(Base):
    """
    An internally recorded bookkeeping line (invoice, receipt or manual entry).

    linked_transaction_ids is a weak back-reference list to
    finance_transactions, not a foreign key. version_id guards the
    read-modify-write of that list against concurrent commits.
    """
    __tablename__ = "finance_ledger_entries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    direction = Column(
        _enum_column(LedgerDirection, "finance_ledger_direction_enum"),
        nullable=False
    )

    # Amounts
    gross_amount = Column(Numeric(12, 2), nullable=False)
    net_amount = Column(Numeric(12, 2), nullable=True)
    vat_amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="GBP")

    entry_date = Column(DateTime(timezone=True), nullable=True, index=True)
    description = Column(Text, nullable=True)

    status = Column(
        _enum_column(LedgerEntryStatus, "finance_ledger_status_enum"),
        nullable=False,
        default=LedgerEntryStatus.DRAFT,
        index=True
    )

    # Weak references (ordered, duplicate-free)
    linked_transaction_ids = Column(JSON, nullable=False, default=list)
    linked_document_ids = Column(JSON, nullable=False, default=list)

    version_id = Column(Integer, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index('ix_finance_ledger_status_date', 'status', 'entry_date'),
    )


class FinanceAuditLogDB(Base):
    """
    Immutable audit trail for matching decisions.

    One row per committed decision with:
    - Who made it (actor, "system" for unattended jobs)
    - What action was taken and why
    - Before/after state (JSON snapshots)
    """
    __tablename__ = "finance_audit_log"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(255), nullable=False, index=True)

    action = Column(
        _enum_column(AuditAction, "finance_audit_action_enum"),
        nullable=False
    )
    actor = Column(String(255), nullable=False, default="system")
    reason = Column(Text, nullable=True)

    before_state = Column(JSON, nullable=True)
    after_state = Column(JSON, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=True)

    occurred_at = Column(DateTime(timezone=True), default=utc_now, index=True)


@event.listens_for(FinanceAuditLogDB, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit record {target.id} cannot be modified")


@event.listens_for(FinanceAuditLogDB, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit record {target.id} cannot be deleted")


__all__ = [
    'TransactionSource',
    'TransactionStatus',
    'LedgerDirection',
    'LedgerEntryStatus',
    'AuditAction',
    'TRANSACTION_STATUS_HIERARCHY',
    'LEDGER_STATUS_HIERARCHY',
    'MATCHABLE_LEDGER_STATUSES',
    'AUDIT_ENTITY_MATCH',
    'build_source_unique_ref',
    'FinanceTransactionDB',
    'LedgerEntryDB',
    'FinanceAuditLogDB',
]
