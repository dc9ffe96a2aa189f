"""
FieldLedger - Schemas Package

Pydantic schemas for request/response validation.
"""

from fieldledger.schemas.bank_reconciliation import (
    # Reconciliation
    ReconciliationStart,
    ReconciliationResponse,
    ReconciliationSummaryResponse,
    # Ledger Posting
    LedgerPostingResponse,
    # Bank Statement Lines
    ParsedBankLineSchema,
    BankLineImportRequest,
    ImportResultResponse,
    BankStatementLineResponse,
    # Matching
    ManualMatchRequest,
    AutoMatchSuggestionResponse,
    SuggestionToApply,
    ApplySuggestionsRequest,
    ApplyResultResponse,
    # Adjustments
    AdjustmentCreate,
    AdjustmentResponse,
    SuggestedAccountsResponse,
)
from fieldledger.schemas.cash_flow import (
    CashFlowLineItemResponse,
    CashFlowSectionResponse,
    CashFlowStatementResponse,
)
