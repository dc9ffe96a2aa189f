"""
FieldLedger - Bank Reconciliation Schemas

Pydantic schemas for bank reconciliation API requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from fieldledger.models.bank_reconciliation import (
    AdjustmentType,
    MatchConfidenceLevel,
    MatchStatus,
    ReconciliationStatus,
)
from fieldledger.models.ledger import PostingReferenceType


# ===========================================
# RECONCILIATION SCHEMAS
# ===========================================

class ReconciliationStart(BaseModel):
    """Schema for starting a reconciliation."""
    account_id: UUID
    statement_start_date: date
    statement_end_date: date
    statement_ending_balance: Decimal = Field(..., max_digits=18, decimal_places=2)
    reconciliation_date: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_dates(self) -> "ReconciliationStart":
        if self.statement_start_date > self.statement_end_date:
            raise ValueError("Statement start date must be before or equal to statement end date")
        return self


class ReconciliationResponse(BaseModel):
    """Schema for reconciliation response."""
    id: UUID
    account_id: UUID
    reconciliation_date: date
    statement_start_date: date
    statement_end_date: date
    statement_ending_balance: Decimal
    calculated_book_balance: Decimal
    cleared_balance: Decimal
    difference: Decimal
    status: ReconciliationStatus
    notes: Optional[str] = None

    created_by_id: Optional[UUID] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    completed_by_id: Optional[UUID] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by_id: Optional[UUID] = None
    rolled_back_at: Optional[datetime] = None
    rolled_back_by_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class ReconciliationSummaryResponse(BaseModel):
    """Reconciliation with account details and item counts."""
    id: UUID
    account_id: UUID
    account_number: str
    account_name: str
    statement_start_date: date
    statement_end_date: date
    statement_ending_balance: Decimal
    calculated_book_balance: Decimal
    cleared_balance: Decimal
    difference: Decimal
    status: ReconciliationStatus
    created_by_id: Optional[UUID] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    completed_by_id: Optional[UUID] = None
    cleared_entries_count: int
    bank_lines_count: int
    matched_lines_count: int
    adjustments_count: int

    class Config:
        from_attributes = True


# ===========================================
# LEDGER POSTING SCHEMAS
# ===========================================

class LedgerPostingResponse(BaseModel):
    """Ledger posting as seen from a reconciliation."""
    id: UUID
    entry_number: str
    entry_date: date
    account_id: UUID
    description: str
    reference_type: PostingReferenceType
    reference_id: Optional[UUID] = None
    debit_amount: Decimal
    credit_amount: Decimal
    net_amount: Decimal
    reconciliation_id: Optional[UUID] = None
    is_cleared: bool
    cleared_at: Optional[datetime] = None
    cleared_by_id: Optional[UUID] = None

    class Config:
        from_attributes = True


# ===========================================
# BANK STATEMENT LINE SCHEMAS
# ===========================================

class ParsedBankLineSchema(BaseModel):
    """A bank line as produced by a statement parser."""
    transaction_date: date
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., max_digits=18, decimal_places=2)
    check_number: Optional[str] = Field(None, max_length=100)
    reference_number: Optional[str] = Field(None, max_length=100)
    balance: Optional[Decimal] = Field(None, max_digits=18, decimal_places=2)


class BankLineImportRequest(BaseModel):
    """Schema for importing parsed bank lines into a reconciliation."""
    lines: List[ParsedBankLineSchema] = Field(..., min_length=1)


class ImportResultResponse(BaseModel):
    imported: int
    failed: int
    errors: List[str] = []

    class Config:
        from_attributes = True


class BankStatementLineResponse(BaseModel):
    """Schema for bank statement line response."""
    id: UUID
    reconciliation_id: UUID
    external_transaction_id: Optional[str] = None
    transaction_date: date
    description: str
    amount: Decimal
    balance: Optional[Decimal] = None
    match_status: MatchStatus
    matched_posting_id: Optional[UUID] = None
    matched_at: Optional[datetime] = None
    matched_by_id: Optional[UUID] = None

    class Config:
        from_attributes = True


# ===========================================
# MATCHING SCHEMAS
# ===========================================

class ManualMatchRequest(BaseModel):
    """Schema for matching a bank line to a posting."""
    posting_id: UUID


class AutoMatchSuggestionResponse(BaseModel):
    """Advisory pairing of a bank line with a posting."""
    bank_line_id: UUID
    posting_id: UUID
    score: Decimal
    confidence: MatchConfidenceLevel
    days_apart: int
    bank_line_date: Optional[date] = None
    bank_line_description: Optional[str] = None
    amount: Optional[Decimal] = None
    posting_date: Optional[date] = None
    posting_description: Optional[str] = None
    entry_number: Optional[str] = None

    class Config:
        from_attributes = True


class SuggestionToApply(BaseModel):
    bank_line_id: UUID
    posting_id: UUID


class ApplySuggestionsRequest(BaseModel):
    """
    Suggestions to apply as auto matches.

    When suggestions is omitted, current suggestions at or above
    min_confidence are generated and applied.
    """
    suggestions: Optional[List[SuggestionToApply]] = None
    min_confidence: MatchConfidenceLevel = MatchConfidenceLevel.HIGH


class ApplyResultResponse(BaseModel):
    matched: int
    failed: int
    errors: List[str] = []

    class Config:
        from_attributes = True


# ===========================================
# ADJUSTMENT SCHEMAS
# ===========================================

class AdjustmentCreate(BaseModel):
    """Schema for creating a reconciliation adjustment."""
    adjustment_type: AdjustmentType
    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    debit_account_id: UUID
    credit_account_id: UUID
    entry_date: Optional[date] = None

    @model_validator(mode="after")
    def validate_accounts(self) -> "AdjustmentCreate":
        if self.debit_account_id == self.credit_account_id:
            raise ValueError("Debit and credit accounts must be different")
        return self


class AdjustmentResponse(BaseModel):
    """Schema for adjustment response."""
    id: UUID
    reconciliation_id: UUID
    posting_id: Optional[UUID] = None
    adjustment_type: AdjustmentType
    description: str
    amount: Decimal
    debit_account_id: UUID
    credit_account_id: UUID
    created_by_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SuggestedAccountsResponse(BaseModel):
    adjustment_type: AdjustmentType
    debit_account_id: Optional[UUID] = None
    credit_account_id: Optional[UUID] = None
