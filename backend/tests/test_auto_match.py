"""
Unit Tests for the Auto-Match Batch Runner

Tests:
- Only top candidates at or above 0.95 are committed
- Per-transaction failures are absorbed (batch safety)
- Limit clamping and fetch failures

Run with: pytest tests/test_auto_match.py -v
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from database.finance_models import FinanceAuditLogDB, FinanceTransactionDB, TransactionStatus
from reconciliation.policy import MatchPolicy
from reconciliation.services.auto_match_service import AutoMatchRunner
from reconciliation.services.candidate_service import MatchSuggestion, TransactionSuggestions


def utc(year, month, day):
    return datetime(year, month, day, tzinfo=timezone.utc)


class StubGenerator:
    """Returns a fixed top suggestion per transaction id."""

    def __init__(self, tops):
        self.tops = tops
        self.calls = []

    async def suggest(self, transaction_id=None, limit=None):
        self.calls.append((transaction_id, limit))
        top = self.tops.get(transaction_id)
        if isinstance(top, Exception):
            raise top
        suggestions = [MatchSuggestion(ledger_entry_id=top[0], confidence=top[1])] if top else []
        return [TransactionSuggestions(transaction_id=transaction_id, suggestions=suggestions)]


async def transaction_status(db, transaction_id):
    result = await db.execute(
        select(FinanceTransactionDB.status).where(FinanceTransactionDB.id == transaction_id)
    )
    return result.scalar_one()


class TestAutoMatchRun:

    @pytest.mark.asyncio
    async def test_commits_only_high_confidence(self, db, add_transaction, add_ledger_entry):
        sure = await add_transaction(posted_at=utc(2024, 3, 10))
        no_candidate = await add_transaction(amount="-7.50", posted_at=utc(2024, 3, 5), description="Coffee")
        close_call = await add_transaction(
            amount="-100.05", posted_at=utc(2024, 2, 20), description="Invoice INV-2000"
        )
        entry = await add_ledger_entry()
        close_entry = await add_ledger_entry(
            gross_amount="100.00", entry_date=utc(2024, 3, 1), description="INV-2000"
        )

        result = await AutoMatchRunner(db).run()

        assert (result.scanned, result.committed, result.skipped) == (3, 1, 2)
        assert result.details == [
            {"transaction_id": sure.id, "outcome": "committed", "ledger_entry_id": entry.id, "confidence": 0.99},
            {"transaction_id": no_candidate.id, "outcome": "skipped"},
            {"transaction_id": close_call.id, "outcome": "skipped", "ledger_entry_id": close_entry.id, "confidence": 0.94},
        ]

        assert await transaction_status(db, sure.id) == TransactionStatus.MATCHED
        assert await transaction_status(db, close_call.id) == TransactionStatus.IMPORTED

        [audit] = (await db.execute(select(FinanceAuditLogDB))).scalars().all()
        assert audit.reason == "auto_match_high_confidence"
        assert audit.actor == "system"
        assert audit.event_metadata["run_id"] == result.run_id
        assert audit.event_metadata["confidence"] == 0.99

    @pytest.mark.asyncio
    async def test_half_cent_score_at_threshold_is_committed(self, db, add_transaction, add_ledger_entry):
        """50c apart, one day, shared reference: 0.945 rounds to 0.95."""
        txn = await add_transaction()
        entry = await add_ledger_entry(gross_amount="45.50")

        result = await AutoMatchRunner(db).run()

        assert result.committed == 1
        assert result.details == [
            {"transaction_id": txn.id, "outcome": "committed", "ledger_entry_id": entry.id, "confidence": 0.95},
        ]
        assert await transaction_status(db, txn.id) == TransactionStatus.MATCHED

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self, db, add_transaction, add_ledger_entry):
        at_threshold = await add_transaction(posted_at=utc(2024, 3, 10))
        just_below = await add_transaction(posted_at=utc(2024, 3, 9))
        entry = await add_ledger_entry()

        generator = StubGenerator({
            at_threshold.id: (entry.id, 0.95),
            just_below.id: (entry.id, 0.94),
        })
        result = await AutoMatchRunner(db, generator=generator).run(actor="scheduler")

        assert result.committed == 1
        assert result.details[0]["outcome"] == "committed"
        assert result.details[1]["outcome"] == "skipped"
        assert await transaction_status(db, at_threshold.id) == TransactionStatus.MATCHED
        assert await transaction_status(db, just_below.id) == TransactionStatus.IMPORTED
        assert generator.calls == [(at_threshold.id, 1), (just_below.id, 1)]

    @pytest.mark.asyncio
    async def test_missing_ledger_entry_does_not_abort_batch(self, db, add_transaction, add_ledger_entry):
        # Ids up front: the failed item rolls back and expires loaded instances
        first_id = (await add_transaction(posted_at=utc(2024, 3, 10))).id
        broken_id = (await add_transaction(posted_at=utc(2024, 3, 9))).id
        last_id = (await add_transaction(posted_at=utc(2024, 3, 8))).id
        entry_id = (await add_ledger_entry()).id

        generator = StubGenerator({
            first_id: (entry_id, 0.99),
            broken_id: ("no-such-ledger-entry", 0.99),
            last_id: (entry_id, 0.99),
        })

        with patch("reconciliation.services.auto_match_service.capture_exception") as mock_capture:
            result = await AutoMatchRunner(db, generator=generator).run()

        assert result.scanned == 3
        assert result.committed == 2
        assert result.skipped == 1
        assert result.details[1]["transaction_id"] == broken_id
        assert result.details[1]["outcome"] == "error"
        assert "no-such-ledger-entry" in result.details[1]["error"]
        mock_capture.assert_called_once()
        assert await transaction_status(db, last_id) == TransactionStatus.MATCHED

    @pytest.mark.asyncio
    async def test_candidate_lookup_failure_is_skipped(self, db, add_transaction, add_ledger_entry):
        failing_id = (await add_transaction(posted_at=utc(2024, 3, 10))).id
        fine_id = (await add_transaction(posted_at=utc(2024, 3, 9))).id
        entry_id = (await add_ledger_entry()).id

        generator = StubGenerator({
            failing_id: RuntimeError("scoring exploded"),
            fine_id: (entry_id, 0.97),
        })

        with patch("reconciliation.services.auto_match_service.capture_exception"):
            result = await AutoMatchRunner(db, generator=generator).run()

        assert (result.scanned, result.committed, result.skipped) == (2, 1, 1)
        assert result.details[0] == {
            "transaction_id": failing_id,
            "outcome": "error",
            "error": "scoring exploded",
        }

    @pytest.mark.asyncio
    async def test_limit_bounds_the_scan(self, db, add_transaction, add_ledger_entry):
        for day in range(1, 4):
            await add_transaction(posted_at=utc(2024, 3, day))
        await add_ledger_entry()

        result = await AutoMatchRunner(db).run(limit=1)

        assert result.scanned == 1

    @pytest.mark.asyncio
    async def test_empty_run(self, db):
        result = await AutoMatchRunner(db).run()

        assert result.to_dict()["scanned"] == 0
        assert result.details == []
        assert result.run_id

    @pytest.mark.asyncio
    async def test_initial_fetch_failure_propagates(self, db):
        runner = AutoMatchRunner(db)
        runner.repository.list_imported_transactions = AsyncMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError, match="db down"):
            await runner.run()

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, db):
        runner = AutoMatchRunner(db)
        runner.repository.list_imported_transactions = AsyncMock(return_value=[])

        await runner.run(limit=500)
        await runner.run()

        assert [c.args[0] for c in runner.repository.list_imported_transactions.await_args_list] == [100, 25]

    def test_policy_threshold(self):
        policy = MatchPolicy()
        assert policy.is_auto_committable(0.95)
        assert not policy.is_auto_committable(0.94)
