"""
Reconciliation Engine Module

Links imported bank/payment transactions to ledger entries:
- Reference extraction and confidence scoring
- Ranked match suggestions for review
- Atomic, audited match commits
- Auto-matching for high confidence

Services and the API router live in reconciliation.services and
reconciliation.endpoints; they are not imported here because the database
models depend on reconciliation.errors.
"""

from reconciliation.errors import (
    ReconciliationError,
    MatchValidationError,
    EntityNotFoundError,
    LedgerEntryLockedError,
    ConcurrentMatchError,
    AuditLogImmutableError
)
from reconciliation.policy import MatchPolicy, MatchReason, default_policy, policy_from_settings
from reconciliation.link_set import LinkedIdSet
from reconciliation.matching_rules import (
    extract_reference,
    LedgerMatchingRules,
    ScoreBreakdown,
    ledger_rules
)

__all__ = [
    # Errors
    'ReconciliationError',
    'MatchValidationError',
    'EntityNotFoundError',
    'LedgerEntryLockedError',
    'ConcurrentMatchError',
    'AuditLogImmutableError',
    # Policy
    'MatchPolicy',
    'MatchReason',
    'default_policy',
    'policy_from_settings',
    'LinkedIdSet',
    # Matching Rules
    'extract_reference',
    'LedgerMatchingRules',
    'ScoreBreakdown',
    'ledger_rules',
]
