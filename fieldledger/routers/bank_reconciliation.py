"""
FieldLedger - Bank Reconciliation API Router

API endpoints for reconciling a bank statement against the ledger:
- Reconciliation lifecycle (start, complete, cancel, rollback)
- Clearing postings
- Bank statement line import and matching (manual and auto)
- Adjustments (bank fees, interest, NSF, corrections)
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fieldledger.database import get_db
from fieldledger.dependencies import Actor, get_current_actor
from fieldledger.models.bank_reconciliation import (
    AdjustmentType,
    MatchConfidenceLevel,
    ReconciliationStatus,
)
from fieldledger.services.adjustment_service import get_adjustment_service
from fieldledger.services.bank_reconciliation_service import get_bank_reconciliation_service
from fieldledger.services.matching_engine import get_matching_engine
from fieldledger.services.statement_import_service import (
    ParsedBankLine,
    get_statement_import_service,
)
from fieldledger.schemas.bank_reconciliation import (
    ReconciliationStart, ReconciliationResponse, ReconciliationSummaryResponse,
    LedgerPostingResponse,
    BankLineImportRequest, ImportResultResponse, BankStatementLineResponse,
    ManualMatchRequest, AutoMatchSuggestionResponse,
    ApplySuggestionsRequest, ApplyResultResponse,
    AdjustmentCreate, AdjustmentResponse, SuggestedAccountsResponse,
)

router = APIRouter(prefix="/bank-reconciliation", tags=["Bank Reconciliation"])

CONFIDENCE_RANK = {
    MatchConfidenceLevel.LOW: 1,
    MatchConfidenceLevel.MEDIUM: 2,
    MatchConfidenceLevel.HIGH: 3,
}


# =============================================================================
# RECONCILIATION ENDPOINTS
# =============================================================================

@router.get("/reconciliations", response_model=List[ReconciliationResponse])
async def list_reconciliations(
    account_id: Optional[uuid.UUID] = Query(None, description="Filter by account"),
    status_filter: Optional[ReconciliationStatus] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None, description="Statement period overlaps from"),
    end_date: Optional[date] = Query(None, description="Statement period overlaps to"),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """List reconciliations, newest first."""
    service = get_bank_reconciliation_service(db)
    return await service.get_reconciliations(
        account_id=account_id,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
    )


@router.post(
    "/reconciliations",
    response_model=ReconciliationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_reconciliation(
    data: ReconciliationStart,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Start a reconciliation for an account and statement period."""
    service = get_bank_reconciliation_service(db)
    return await service.start_reconciliation(
        account_id=data.account_id,
        statement_start_date=data.statement_start_date,
        statement_end_date=data.statement_end_date,
        statement_ending_balance=data.statement_ending_balance,
        notes=data.notes,
        reconciliation_date=data.reconciliation_date,
        actor_id=actor.id,
    )


@router.get("/reconciliations/{reconciliation_id}", response_model=ReconciliationResponse)
async def get_reconciliation(
    reconciliation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    service = get_bank_reconciliation_service(db)
    return await service.get_reconciliation(reconciliation_id)


@router.get(
    "/reconciliations/{reconciliation_id}/summary",
    response_model=ReconciliationSummaryResponse,
)
async def get_reconciliation_summary(
    reconciliation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Reconciliation with account details and item counts."""
    service = get_bank_reconciliation_service(db)
    return await service.get_summary(reconciliation_id)


@router.get(
    "/accounts/{account_id}/last-reconciliation",
    response_model=Optional[ReconciliationResponse],
)
async def get_last_reconciliation(
    account_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Most recent completed reconciliation of an account, or null."""
    service = get_bank_reconciliation_service(db)
    return await service.get_last_completed(account_id)


@router.post(
    "/reconciliations/{reconciliation_id}/complete",
    response_model=ReconciliationResponse,
)
async def complete_reconciliation(
    reconciliation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Complete a reconciliation whose difference is within tolerance."""
    service = get_bank_reconciliation_service(db)
    return await service.complete_reconciliation(reconciliation_id, actor_id=actor.id)


@router.post(
    "/reconciliations/{reconciliation_id}/cancel",
    response_model=ReconciliationResponse,
)
async def cancel_reconciliation(
    reconciliation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Cancel an in-progress reconciliation, releasing its postings and lines."""
    service = get_bank_reconciliation_service(db)
    return await service.cancel_reconciliation(reconciliation_id, actor_id=actor.id)


@router.post(
    "/reconciliations/{reconciliation_id}/rollback",
    response_model=ReconciliationResponse,
)
async def rollback_reconciliation(
    reconciliation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Roll back a completed reconciliation."""
    service = get_bank_reconciliation_service(db)
    return await service.rollback_reconciliation(reconciliation_id, actor_id=actor.id)


# =============================================================================
# POSTING ENDPOINTS
# =============================================================================

@router.get(
    "/reconciliations/{reconciliation_id}/postings",
    response_model=List[LedgerPostingResponse],
)
async def list_reconciliation_postings(
    reconciliation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Cleared postings plus uncleared candidates up to the statement end date."""
    service = get_bank_reconciliation_service(db)
    return await service.get_postings(reconciliation_id)


@router.post(
    "/reconciliations/{reconciliation_id}/postings/{posting_id}/toggle",
    response_model=ReconciliationResponse,
)
async def toggle_posting_cleared(
    reconciliation_id: uuid.UUID,
    posting_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Clear or unclear a posting; returns the re-derived reconciliation."""
    service = get_bank_reconciliation_service(db)
    return await service.toggle_cleared(reconciliation_id, posting_id, actor_id=actor.id)


# =============================================================================
# BANK STATEMENT LINE ENDPOINTS
# =============================================================================

@router.get(
    "/reconciliations/{reconciliation_id}/bank-lines",
    response_model=List[BankStatementLineResponse],
)
async def list_bank_lines(
    reconciliation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    service = get_bank_reconciliation_service(db)
    return await service.get_bank_lines(reconciliation_id)


@router.post(
    "/reconciliations/{reconciliation_id}/bank-lines",
    response_model=ImportResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def import_bank_lines(
    reconciliation_id: uuid.UUID,
    data: BankLineImportRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Import parsed bank statement lines as unmatched lines."""
    service = get_statement_import_service(db)
    lines = [
        ParsedBankLine(
            transaction_date=line.transaction_date,
            description=line.description,
            amount=line.amount,
            check_number=line.check_number,
            reference_number=line.reference_number,
            balance=line.balance,
        )
        for line in data.lines
    ]
    return await service.import_lines(reconciliation_id, lines, actor_id=actor.id)


@router.post("/bank-lines/{line_id}/match", response_model=BankStatementLineResponse)
async def match_bank_line(
    line_id: uuid.UUID,
    data: ManualMatchRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Manually match a bank line to a posting."""
    engine = get_matching_engine(db)
    return await engine.match(line_id, data.posting_id, actor_id=actor.id, is_auto=False)


@router.post("/bank-lines/{line_id}/unmatch", response_model=BankStatementLineResponse)
async def unmatch_bank_line(
    line_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    engine = get_matching_engine(db)
    return await engine.unmatch(line_id, actor_id=actor.id)


# =============================================================================
# AUTO-MATCH ENDPOINTS
# =============================================================================

@router.get(
    "/reconciliations/{reconciliation_id}/auto-match",
    response_model=List[AutoMatchSuggestionResponse],
)
async def get_auto_match_suggestions(
    reconciliation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Advisory match suggestions. Nothing is changed."""
    engine = get_matching_engine(db)
    return await engine.get_suggestions(reconciliation_id)


@router.post(
    "/reconciliations/{reconciliation_id}/auto-match/apply",
    response_model=ApplyResultResponse,
)
async def apply_auto_match(
    reconciliation_id: uuid.UUID,
    data: ApplySuggestionsRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Apply suggestions independently; failures are reported, not rolled into the others."""
    engine = get_matching_engine(db)

    suggestions = data.suggestions
    if suggestions is None:
        minimum = CONFIDENCE_RANK[data.min_confidence]
        suggestions = [
            s for s in await engine.get_suggestions(reconciliation_id)
            if CONFIDENCE_RANK[s.confidence] >= minimum
        ]
    else:
        # Validates the reconciliation exists
        await engine.reconciliations.get_reconciliation(reconciliation_id)

    return await engine.apply_all(suggestions, actor_id=actor.id)


# =============================================================================
# ADJUSTMENT ENDPOINTS
# =============================================================================

@router.get(
    "/reconciliations/{reconciliation_id}/adjustments",
    response_model=List[AdjustmentResponse],
)
async def list_adjustments(
    reconciliation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    service = get_bank_reconciliation_service(db)
    return await service.get_adjustments(reconciliation_id)


@router.post(
    "/reconciliations/{reconciliation_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_adjustment(
    reconciliation_id: uuid.UUID,
    data: AdjustmentCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Post an adjustment journal entry and clear its cash side."""
    service = get_adjustment_service(db)
    return await service.create_adjustment(
        reconciliation_id=reconciliation_id,
        adjustment_type=data.adjustment_type,
        description=data.description,
        amount=data.amount,
        debit_account_id=data.debit_account_id,
        credit_account_id=data.credit_account_id,
        entry_date=data.entry_date,
        actor_id=actor.id,
    )


@router.get(
    "/reconciliations/{reconciliation_id}/adjustments/suggested-accounts",
    response_model=SuggestedAccountsResponse,
)
async def get_suggested_adjustment_accounts(
    reconciliation_id: uuid.UUID,
    adjustment_type: AdjustmentType = Query(..., description="Adjustment type"),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Default debit/credit accounts for the adjustment form."""
    service = get_adjustment_service(db)
    suggested = await service.suggest_accounts(reconciliation_id, adjustment_type)
    return SuggestedAccountsResponse(
        adjustment_type=adjustment_type,
        debit_account_id=suggested.debit_account_id,
        credit_account_id=suggested.credit_account_id,
    )
