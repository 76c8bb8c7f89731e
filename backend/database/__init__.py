from .connection import (
    get_db, get_engine, get_session_factory, build_session_factory,
    create_tables, init_db, Base
)

# Import finance models to ensure they are registered with Base
from .finance_models import (
    FinanceTransactionDB, LedgerEntryDB, FinanceAuditLogDB,
    TransactionSource, TransactionStatus, LedgerDirection, LedgerEntryStatus,
    AuditAction, build_source_unique_ref
)

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'build_session_factory',
    'create_tables', 'init_db', 'Base',
    # Finance models
    'FinanceTransactionDB', 'LedgerEntryDB', 'FinanceAuditLogDB',
    'TransactionSource', 'TransactionStatus', 'LedgerDirection', 'LedgerEntryStatus',
    'AuditAction', 'build_source_unique_ref',
]
