"""
Reconciliation error taxonomy.

Validation and not-found errors propagate to interactive callers; the
auto-match runner absorbs them per item.
"""


class ReconciliationError(Exception):
    """Base class for matching engine failures"""
    pass


class MatchValidationError(ReconciliationError, ValueError):
    """A required identifier is missing or empty"""

    def __init__(self, parameter: str, message: str = None):
        self.parameter = parameter
        super().__init__(message or f"{parameter} is required")


class EntityNotFoundError(ReconciliationError, LookupError):
    """A transaction or ledger entry does not exist"""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class LedgerEntryLockedError(ReconciliationError):
    """Locked ledger entries cannot gain new links"""
    pass


class ConcurrentMatchError(ReconciliationError):
    """The ledger entry kept changing underneath the commit"""
    pass


class AuditLogImmutableError(ReconciliationError):
    """Audit records are append-only"""
    pass
