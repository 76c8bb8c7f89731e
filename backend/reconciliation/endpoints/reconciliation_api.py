"""
Reconciliation API Endpoints

REST API for the matching engine:
- GET /api/reconciliation/status - Module status and active policy
- POST /api/reconciliation/suggest - Ranked ledger entry suggestions
- POST /api/reconciliation/commit - Link a transaction to a ledger entry
- POST /api/reconciliation/auto-match - Run the auto-match batch
- GET /api/reconciliation/audit - Match audit trail
"""

import logging
from typing import Optional, List
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database.connection import get_db
from middleware.internal_auth import InternalService, verify_internal_auth
from reconciliation.errors import (
    MatchValidationError,
    EntityNotFoundError,
    LedgerEntryLockedError,
    ConcurrentMatchError
)
from reconciliation.policy import policy_from_settings
from reconciliation.services.reconciliation_service import ReconciliationService
from sentry_integration import capture_exception, set_tag
from utils.validation_errors import raise_missing_parameter, raise_invalid_parameter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])

MAX_AUDIT_LIMIT = 500


# ==================== Request/Response Models ====================

class SuggestMatchesRequest(BaseModel):
    """Request for match suggestions."""
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: Optional[str] = Field(
        default=None, alias="transactionId",
        description="Transaction to match; omit for the recent imported pool"
    )
    limit: Optional[int] = Field(default=None, description="Suggestions per transaction (default 8, max 20)")


class CommitMatchRequest(BaseModel):
    """Request to commit a match."""
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: Optional[str] = Field(default=None, alias="transactionId")
    ledger_entry_id: Optional[str] = Field(default=None, alias="ledgerEntryId")
    mark_reconciled: bool = Field(default=False, alias="markReconciled")
    reason: Optional[str] = Field(default=None, description="Audit reason (default manual_match)")


class AutoMatchRequest(BaseModel):
    """Request to run the auto-match batch."""
    limit: Optional[int] = Field(default=None, description="Transactions to scan (default 25, max 100)")


class SuggestionResponse(BaseModel):
    ledger_entry_id: str
    confidence: float
    reasons: List[str]
    ledger_description: Optional[str] = None
    ledger_amount: Optional[float] = None


class TransactionSuggestionsResponse(BaseModel):
    transaction_id: str
    transaction_amount: Optional[float] = None
    transaction_date: Optional[str] = None
    description: Optional[str] = None
    suggestions: List[SuggestionResponse]


class SuggestMatchesResponse(BaseModel):
    """Response for match suggestions."""
    matches: List[TransactionSuggestionsResponse]


class CommitMatchResponse(BaseModel):
    """Response for a committed match."""
    transaction_id: str
    ledger_entry_id: str
    status: str


class AutoMatchResponse(BaseModel):
    """Response for an auto-match run."""
    run_id: str
    scanned: int
    committed: int
    skipped: int
    details: List[dict]


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status():
    """
    Get reconciliation module status.

    Returns the active matching policy. No authentication required.
    """
    return {
        "module": "reconciliation",
        "status": "operational",
        "version": get_settings().API_VERSION,
        "features": {
            "suggestions": True,
            "manual_commit": True,
            "auto_matching": True,
            "audit_trail": True
        },
        "policy": policy_from_settings(get_settings()).to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.post("/suggest", response_model=SuggestMatchesResponse, summary="Suggest matches")
async def suggest_matches(
    request: SuggestMatchesRequest,
    db: AsyncSession = Depends(get_db),
    _auth: InternalService = Depends(verify_internal_auth)
):
    """
    Rank ledger entries for one transaction, or for each of the most recent
    imported transactions when no transaction_id is given.

    Only suggestions with confidence >= the suggestion floor are returned.

    Requires internal API key authentication.
    """
    try:
        service = ReconciliationService(db, policy=policy_from_settings(get_settings()))
        bundles = await service.suggest_matches(
            transaction_id=request.transaction_id,
            limit=request.limit
        )
        return {"matches": [b.to_dict() for b in bundles]}

    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to suggest matches: {e}")
        capture_exception(e, endpoint="suggest", transaction_id=request.transaction_id)
        raise HTTPException(status_code=500, detail="Failed to suggest matches")


@router.post("/commit", response_model=CommitMatchResponse, summary="Commit match")
async def commit_match(
    request: CommitMatchRequest,
    db: AsyncSession = Depends(get_db),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: InternalService = Depends(verify_internal_auth)
):
    """
    Link a transaction to a ledger entry.

    Sets the transaction to "matched" (or "reconciled" with mark_reconciled),
    promotes a draft ledger entry to "needs_approval" and appends an audit record.
    Re-committing the same pair never duplicates the link.

    Requires internal API key authentication.
    """
    actor = x_user_id or "system"
    set_tag("actor", actor)

    try:
        service = ReconciliationService(db, policy=policy_from_settings(get_settings()))
        result = await service.commit_match(
            transaction_id=request.transaction_id,
            ledger_entry_id=request.ledger_entry_id,
            mark_reconciled=request.mark_reconciled,
            reason=request.reason,
            actor=actor
        )
        return result.to_dict()

    except MatchValidationError as e:
        raise_missing_parameter(e.parameter, str(e))
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (LedgerEntryLockedError, ConcurrentMatchError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to commit match: {e}")
        capture_exception(
            e,
            endpoint="commit",
            transaction_id=request.transaction_id,
            ledger_entry_id=request.ledger_entry_id
        )
        raise HTTPException(status_code=500, detail="Failed to commit match")


@router.post("/auto-match", response_model=AutoMatchResponse, summary="Run auto-match")
async def run_auto_match(
    request: Optional[AutoMatchRequest] = None,
    db: AsyncSession = Depends(get_db),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: InternalService = Depends(verify_internal_auth)
):
    """
    Auto-commit high confidence matches for the most recent imported transactions.

    Per-transaction failures are reported in details and never fail the run.

    Requires internal API key authentication.
    """
    limit = request.limit if request else None

    try:
        service = ReconciliationService(db, policy=policy_from_settings(get_settings()))
        result = await service.run_auto_match(limit=limit, actor=x_user_id or "system")
        return result.to_dict()

    except Exception as e:
        logger.error(f"Auto-match run failed: {e}")
        capture_exception(e, endpoint="auto-match", limit=limit)
        raise HTTPException(status_code=500, detail="Failed to run auto-match")


@router.get("/audit", summary="Match audit trail")
async def get_audit_trail(
    transaction_id: Optional[str] = Query(default=None),
    ledger_entry_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100),
    db: AsyncSession = Depends(get_db),
    _auth: InternalService = Depends(verify_internal_auth)
):
    """
    List match audit records, newest first, optionally for one transaction
    and/or ledger entry.

    Requires internal API key authentication.
    """
    if limit < 1 or limit > MAX_AUDIT_LIMIT:
        raise_invalid_parameter("limit", f"limit must be between 1 and {MAX_AUDIT_LIMIT}", limit)

    try:
        service = ReconciliationService(db)
        records = await service.get_audit_trail(
            transaction_id=transaction_id,
            ledger_entry_id=ledger_entry_id,
            limit=limit
        )
        return {"records": records, "count": len(records)}

    except Exception as e:
        logger.error(f"Failed to get audit trail: {e}")
        capture_exception(e, endpoint="audit")
        raise HTTPException(status_code=500, detail="Failed to get audit trail")
