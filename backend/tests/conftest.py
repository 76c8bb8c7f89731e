"""
Shared fixtures: an in-memory SQLite database with the finance tables, and
factories for transactions and ledger entries.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from database.connection import build_session_factory, create_tables
from database.finance_models import (
    FinanceTransactionDB, LedgerEntryDB,
    TransactionSource, TransactionStatus, LedgerDirection, LedgerEntryStatus,
    build_source_unique_ref
)


def utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def add_transaction(db):
    """Insert an imported transaction; defaults describe an invoice payment."""
    async def _add(
        amount="-45.00",
        posted_at=None,
        description="Invoice INV-1042 payment",
        status=TransactionStatus.IMPORTED,
        source=TransactionSource.MONZO,
    ):
        source_txn_id = uuid.uuid4().hex
        txn = FinanceTransactionDB(
            source=source,
            source_txn_id=source_txn_id,
            account_id="acc-main",
            source_unique_ref=build_source_unique_ref(source, "acc-main", source_txn_id),
            amount=Decimal(amount),
            posted_at=posted_at or utc(2024, 3, 10),
            description_raw=description,
            status=status,
        )
        db.add(txn)
        await db.commit()
        return txn

    return _add


@pytest.fixture
def add_ledger_entry(db):
    """Insert a ledger entry; defaults match the add_transaction defaults."""
    async def _add(
        gross_amount="45.00",
        entry_date=None,
        description="INV-1042 supplier invoice",
        status=LedgerEntryStatus.APPROVED,
        linked_transaction_ids=None,
    ):
        entry = LedgerEntryDB(
            direction=LedgerDirection.EXPENSE,
            gross_amount=Decimal(gross_amount),
            entry_date=entry_date or utc(2024, 3, 9),
            description=description,
            status=status,
            linked_transaction_ids=linked_transaction_ids or [],
        )
        db.add(entry)
        await db.commit()
        return entry

    return _add
