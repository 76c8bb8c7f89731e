"""
Ledger Matching Rules

Scores how likely an imported transaction and a ledger entry describe the
same payment.

Components:
- amount proximity (weight 0.55, discrete tiers)
- date proximity (weight 0.35, discrete tiers)
- invoice reference match (flat +0.20 bonus)

The blended score is rounded to two places and capped at 0.99 so an automated
match never reads as a human-confirmed 1.0. Filtering by threshold is the
candidate generator's job, not the scorer's.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from reconciliation.matching_rules.reference import extract_reference, references_match
from reconciliation.policy import MatchPolicy, default_policy

TWO_PLACES = Decimal("0.01")


@dataclass
class ScoreBreakdown:
    """Components of a single transaction / ledger entry score."""
    amount_confidence: Decimal
    date_confidence: Decimal
    reference_bonus: Decimal
    confidence: float
    amount_diff: Decimal
    date_diff_days: Optional[float]
    transaction_reference: Optional[str]
    ledger_reference: Optional[str]
    reasons: List[str] = field(default_factory=list)

    @property
    def reference_matched(self) -> bool:
        return self.reference_bonus > 0


def _field(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _to_decimal(value: Any) -> Decimal:
    """Missing, malformed and non-finite (NaN, Infinity) amounts count as zero."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        parsed = value
    else:
        try:
            parsed = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            return Decimal("0")
    if not parsed.is_finite():
        return Decimal("0")
    return parsed


def _to_datetime(value: Any) -> Optional[datetime]:
    """Accept datetimes, dates and ISO strings; naive values are taken as UTC."""
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class LedgerMatchingRules:
    """
    Scoring rules for transaction-to-ledger-entry matching.
    """

    # Scoring weights
    WEIGHT_AMOUNT = 0.55
    WEIGHT_DATE = 0.35
    REFERENCE_BONUS = Decimal("0.20")

    # (max absolute difference, confidence); inclusive upper bounds
    AMOUNT_TIERS = (
        (Decimal("0.01"), Decimal("0.98")),
        (Decimal("0.10"), Decimal("0.90")),
        (Decimal("1.00"), Decimal("0.75")),
    )
    AMOUNT_FLOOR = Decimal("0.40")

    # (max days apart, confidence)
    DATE_TIERS = (
        (2, Decimal("0.95")),
        (7, Decimal("0.85")),
        (14, Decimal("0.70")),
    )
    DATE_FLOOR = Decimal("0.40")
    DATE_UNKNOWN = Decimal("0.50")

    def __init__(self, policy: MatchPolicy = default_policy):
        self.policy = policy

    def score(self, transaction: Any, entry: Any) -> float:
        """Confidence in [0, cap] that transaction and entry are the same payment."""
        return self.score_breakdown(transaction, entry).confidence

    def score_breakdown(self, transaction: Any, entry: Any) -> ScoreBreakdown:
        amount_diff = self.amount_difference(
            _field(transaction, "amount"), _field(entry, "gross_amount")
        )
        amount_confidence = self.amount_confidence(amount_diff)

        date_diff = self.date_difference_days(
            _field(transaction, "posted_at"), _field(entry, "entry_date")
        )
        date_confidence = self.date_confidence(date_diff)

        txn_ref = extract_reference(_field(transaction, "description_raw"))
        ledger_ref = extract_reference(_field(entry, "description"))
        bonus = self.REFERENCE_BONUS if references_match(txn_ref, ledger_ref) else Decimal("0")

        # Two-place round of the float sum: 0.945 -> 0.95, 0.595 -> 0.59
        raw = (
            float(amount_confidence) * self.WEIGHT_AMOUNT
            + float(date_confidence) * self.WEIGHT_DATE
            + float(bonus)
        )
        confidence = min(self.policy.confidence_cap, round(raw, 2))

        reasons = [f"amount_diff={amount_diff.quantize(TWO_PLACES)}"]
        if date_diff is None:
            reasons.append("date_unparseable")
        else:
            reasons.append(f"date_diff_days={date_diff:g}")
        if bonus:
            reasons.append("invoice_ref_match")

        return ScoreBreakdown(
            amount_confidence=amount_confidence,
            date_confidence=date_confidence,
            reference_bonus=bonus,
            confidence=float(confidence),
            amount_diff=amount_diff,
            date_diff_days=date_diff,
            transaction_reference=txn_ref,
            ledger_reference=ledger_ref,
            reasons=reasons,
        )

    @staticmethod
    def amount_difference(transaction_amount: Any, ledger_amount: Any) -> Decimal:
        """Difference of magnitudes; sign (direction) is ignored."""
        return abs(abs(_to_decimal(transaction_amount)) - abs(_to_decimal(ledger_amount)))

    def amount_confidence(self, diff: Decimal) -> Decimal:
        for limit, confidence in self.AMOUNT_TIERS:
            if diff <= limit:
                return confidence
        return self.AMOUNT_FLOOR

    @staticmethod
    def date_difference_days(posted_at: Any, entry_date: Any) -> Optional[float]:
        left = _to_datetime(posted_at)
        right = _to_datetime(entry_date)
        if left is None or right is None:
            return None
        return abs((left - right).total_seconds()) / 86400

    def date_confidence(self, days: Optional[float]) -> Decimal:
        if days is None:
            return self.DATE_UNKNOWN
        for limit, confidence in self.DATE_TIERS:
            if days <= limit:
                return confidence
        return self.DATE_FLOOR


# Instantiate rules engine
ledger_rules = LedgerMatchingRules()


def score(transaction: Any, entry: Any) -> float:
    """Module-level shortcut for the default rules."""
    return ledger_rules.score(transaction, entry)
