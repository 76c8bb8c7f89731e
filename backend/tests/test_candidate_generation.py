"""
Unit Tests for the Candidate Generator

Uses the in-memory SQLite database from conftest.

Run with: pytest tests/test_candidate_generation.py -v
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select, func

from database.finance_models import (
    FinanceAuditLogDB, TransactionStatus, LedgerEntryStatus
)
from reconciliation.errors import EntityNotFoundError
from reconciliation.policy import MatchPolicy
from reconciliation.services.candidate_service import CandidateGenerator


def utc(year, month, day, hour=0):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


class TestSuggestForTransaction:

    @pytest.mark.asyncio
    async def test_ranks_filters_and_excludes_ineligible_entries(self, db, add_transaction, add_ledger_entry):
        """Only needs_approval/approved entries at or above the floor, best first."""
        txn = await add_transaction()
        best = await add_ledger_entry()
        close = await add_ledger_entry(
            gross_amount="45.05", description="Stationery", status=LedgerEntryStatus.NEEDS_APPROVAL
        )
        await add_ledger_entry(gross_amount="50.00", description="Office supplies")  # 0.55
        await add_ledger_entry(status=LedgerEntryStatus.DRAFT)
        await add_ledger_entry(status=LedgerEntryStatus.LOCKED)

        bundles = await CandidateGenerator(db).suggest(txn.id)

        assert len(bundles) == 1
        bundle = bundles[0]
        assert bundle.transaction_id == txn.id
        assert bundle.transaction_amount == -45.0
        assert [(s.ledger_entry_id, s.confidence) for s in bundle.suggestions] == [
            (best.id, 0.99),
            (close.id, 0.83),
        ]
        assert bundle.top.reasons == ["amount_diff=0.00", "date_diff_days=1", "invoice_ref_match"]
        assert bundle.top.ledger_description == "INV-1042 supplier invoice"
        assert bundle.top.ledger_amount == 45.0

    @pytest.mark.asyncio
    async def test_ties_keep_most_recent_first(self, db, add_transaction, add_ledger_entry):
        txn = await add_transaction(description="card payment")
        older = await add_ledger_entry(entry_date=utc(2024, 3, 8), description="Supplier")
        newest = await add_ledger_entry(entry_date=utc(2024, 3, 10), description="Supplier")
        middle = await add_ledger_entry(entry_date=utc(2024, 3, 9), description="Supplier")

        bundles = await CandidateGenerator(db).suggest(txn.id)

        suggestions = bundles[0].suggestions
        assert {s.confidence for s in suggestions} == {0.87}
        assert [s.ledger_entry_id for s in suggestions] == [newest.id, middle.id, older.id]

    @pytest.mark.asyncio
    async def test_limit_truncates_and_is_capped(self, db, add_transaction, add_ledger_entry):
        txn = await add_transaction()
        for _ in range(25):
            await add_ledger_entry()

        generator = CandidateGenerator(db)

        assert len((await generator.suggest(txn.id, limit=1))[0].suggestions) == 1
        assert len((await generator.suggest(txn.id))[0].suggestions) == 8
        assert len((await generator.suggest(txn.id, limit=50))[0].suggestions) == 20

    @pytest.mark.asyncio
    async def test_ledger_pool_is_bounded_to_most_recent(self, db, add_transaction, add_ledger_entry):
        txn = await add_transaction()
        await add_ledger_entry(entry_date=utc(2024, 3, 9))
        recent_a = await add_ledger_entry(entry_date=utc(2024, 3, 11), description="Supplier")
        recent_b = await add_ledger_entry(entry_date=utc(2024, 3, 12), description="Supplier")

        generator = CandidateGenerator(db, policy=MatchPolicy(ledger_pool_limit=2))
        bundles = await generator.suggest(txn.id)

        # The best match is older than the pool bound and is not considered
        assert [s.ledger_entry_id for s in bundles[0].suggestions] == [recent_b.id, recent_a.id]

    @pytest.mark.asyncio
    async def test_no_candidates_is_not_an_error(self, db, add_transaction, add_ledger_entry):
        txn = await add_transaction()
        await add_ledger_entry(gross_amount="999.00", entry_date=utc(2023, 1, 1), description="Rent")

        bundles = await CandidateGenerator(db).suggest(txn.id)

        assert bundles[0].suggestions == []
        assert bundles[0].top is None

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, db):
        with pytest.raises(EntityNotFoundError) as exc_info:
            await CandidateGenerator(db).suggest("missing-id")

        assert "missing-id" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_matched_transaction_can_still_be_scored(self, db, add_transaction, add_ledger_entry):
        """An explicit id is scored whatever its status."""
        txn = await add_transaction(status=TransactionStatus.MATCHED)
        await add_ledger_entry()

        bundles = await CandidateGenerator(db).suggest(txn.id)

        assert bundles[0].top.confidence == 0.99


class TestSuggestForImportedPool:

    @pytest.mark.asyncio
    async def test_one_bundle_per_imported_transaction_newest_first(self, db, add_transaction, add_ledger_entry):
        older = await add_transaction(posted_at=utc(2024, 3, 1), description="Invoice INV-2000")
        newer = await add_transaction(posted_at=utc(2024, 3, 10))
        await add_transaction(posted_at=utc(2024, 3, 11), status=TransactionStatus.MATCHED)
        await add_transaction(posted_at=utc(2024, 3, 12), status=TransactionStatus.IGNORED)
        entry = await add_ledger_entry()

        bundles = await CandidateGenerator(db).suggest()

        assert [b.transaction_id for b in bundles] == [newer.id, older.id]
        assert bundles[0].top.ledger_entry_id == entry.id
        assert bundles[0].top.confidence == 0.99
        # 8 days apart, same amount, different reference: 0.98*0.55 + 0.70*0.35
        assert bundles[1].top.confidence == 0.78

    @pytest.mark.asyncio
    async def test_transaction_pool_is_bounded(self, db, add_transaction, add_ledger_entry):
        for day in range(1, 6):
            await add_transaction(posted_at=utc(2024, 3, day))
        await add_ledger_entry()

        generator = CandidateGenerator(db, policy=MatchPolicy(transaction_pool_limit=3, scoring_workers=2))
        bundles = await generator.suggest()

        assert len(bundles) == 3

    @pytest.mark.asyncio
    async def test_empty_pool(self, db, add_ledger_entry):
        await add_ledger_entry()

        assert await CandidateGenerator(db).suggest() == []

    @pytest.mark.asyncio
    async def test_suggest_is_read_only(self, db, add_transaction, add_ledger_entry):
        txn = await add_transaction()
        entry = await add_ledger_entry()

        await CandidateGenerator(db).suggest()
        await CandidateGenerator(db).suggest(txn.id)

        await db.refresh(txn)
        await db.refresh(entry)
        audit_count = (await db.execute(select(func.count(FinanceAuditLogDB.id)))).scalar()

        assert txn.status == TransactionStatus.IMPORTED
        assert entry.linked_transaction_ids == []
        assert audit_count == 0


class TestSuggestionSerialization:

    @pytest.mark.asyncio
    async def test_to_dict(self, db, add_transaction, add_ledger_entry):
        txn = await add_transaction()
        entry = await add_ledger_entry()

        bundle = (await CandidateGenerator(db).suggest(txn.id))[0].to_dict()

        assert bundle["transaction_id"] == txn.id
        assert bundle["description"] == "Invoice INV-1042 payment"
        assert bundle["transaction_date"].startswith("2024-03-10")
        assert bundle["suggestions"][0] == {
            "ledger_entry_id": entry.id,
            "confidence": 0.99,
            "reasons": ["amount_diff=0.00", "date_diff_days=1", "invoice_ref_match"],
            "ledger_description": "INV-1042 supplier invoice",
            "ledger_amount": 45.0,
        }
