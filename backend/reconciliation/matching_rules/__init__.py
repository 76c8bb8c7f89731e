"""
Matching Rules Module
"""

from .reference import extract_reference, references_match
from .ledger_rules import LedgerMatchingRules, ScoreBreakdown, ledger_rules, score

__all__ = [
    "extract_reference",
    "references_match",
    "LedgerMatchingRules",
    "ScoreBreakdown",
    "ledger_rules",
    "score",
]
