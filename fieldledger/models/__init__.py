"""
FieldLedger - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from fieldledger.models.base import BaseModel, TimestampMixin, AuditMixin
from fieldledger.models.ledger import (
    Account,
    AccountType,
    CashFlowSection,
    LedgerPosting,
    NormalBalance,
    PostingReferenceType,
    signed_amount,
)
from fieldledger.models.bank_reconciliation import (
    AdjustmentType,
    BankReconciliation,
    BankStatementLine,
    MatchConfidenceLevel,
    MatchStatus,
    ReconciliationAdjustment,
    ReconciliationStatus,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    # Ledger
    "Account",
    "AccountType",
    "CashFlowSection",
    "LedgerPosting",
    "NormalBalance",
    "PostingReferenceType",
    "signed_amount",
    # Bank Reconciliation
    "AdjustmentType",
    "BankReconciliation",
    "BankStatementLine",
    "MatchConfidenceLevel",
    "MatchStatus",
    "ReconciliationAdjustment",
    "ReconciliationStatus",
]
