"""
FieldLedger - Bank Reconciliation Models

Models for reconciling a bank statement against the general ledger:
- BankReconciliation: one statement-period reconciliation of one cash account
- BankStatementLine: a transaction as reported by the bank
- ReconciliationAdjustment: a journal-entry-backed correction (bank fee, NSF, ...)

Workflow: in_progress -> completed | cancelled, completed -> rolled_back.
Only one reconciliation per account may be in progress at a time.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Date, DateTime, ForeignKey, Numeric, String, Text, Uuid,
    Enum as SQLEnum, Index, CheckConstraint, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldledger.models.base import BaseModel, AuditMixin

if TYPE_CHECKING:
    from fieldledger.models.ledger import Account, LedgerPosting


# =============================================================================
# ENUMS
# =============================================================================

class ReconciliationStatus(str, Enum):
    """Bank reconciliation status."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled_back"


class MatchStatus(str, Enum):
    """Bank statement line matching status."""
    UNMATCHED = "unmatched"
    MANUALLY_MATCHED = "manually_matched"
    AUTO_MATCHED = "auto_matched"


class MatchConfidenceLevel(str, Enum):
    """Confidence level for automatic matches."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AdjustmentType(str, Enum):
    """Type of reconciliation adjustment."""
    BANK_FEE = "bank_fee"
    INTEREST_INCOME = "interest_income"
    NSF = "nsf"  # Returned check / non-sufficient funds
    CORRECTION = "correction"
    OTHER = "other"


# ===========================================
# BANK RECONCILIATION
# ===========================================

class BankReconciliation(BaseModel, AuditMixin):
    """
    One statement-period reconciliation attempt for one cash account.

    cleared_balance and difference are snapshots re-derived from the
    postings pointing at this reconciliation after every change; they are
    never adjusted incrementally.
    """

    __tablename__ = "bank_reconciliations"

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chart_of_accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Statement Period
    reconciliation_date: Mapped[date] = mapped_column(Date, nullable=False)
    statement_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    statement_end_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Balances
    statement_ending_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=False,
    )
    calculated_book_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Ledger balance at statement end date, snapshot at start",
    )
    cleared_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    difference: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
        comment="statement_ending_balance - cleared_balance",
    )

    # Status
    status: Mapped[ReconciliationStatus] = mapped_column(
        SQLEnum(ReconciliationStatus),
        default=ReconciliationStatus.IN_PROGRESS,
        nullable=False,
    )

    # Workflow
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    rolled_back_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rolled_back_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    account: Mapped["Account"] = relationship("Account", lazy="joined")
    cleared_postings: Mapped[List["LedgerPosting"]] = relationship(
        "LedgerPosting",
        back_populates="reconciliation",
    )
    bank_lines: Mapped[List["BankStatementLine"]] = relationship(
        "BankStatementLine",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
        order_by="BankStatementLine.transaction_date",
    )
    adjustments: Mapped[List["ReconciliationAdjustment"]] = relationship(
        "ReconciliationAdjustment",
        back_populates="reconciliation",
    )

    __table_args__ = (
        # SQLEnum persists member names, hence 'IN_PROGRESS'
        Index(
            'uq_reconciliation_in_progress_account',
            'account_id',
            unique=True,
            postgresql_where=text("status = 'IN_PROGRESS'"),
            sqlite_where=text("status = 'IN_PROGRESS'"),
        ),
        Index('ix_reconciliation_account_status', 'account_id', 'status'),
    )

    @property
    def is_in_progress(self) -> bool:
        return self.status == ReconciliationStatus.IN_PROGRESS

    def __repr__(self) -> str:
        return (
            f"<BankReconciliation(id={self.id}, account={self.account_id}, "
            f"end={self.statement_end_date}, status={self.status.value})>"
        )


# ===========================================
# BANK STATEMENT LINE
# ===========================================

class BankStatementLine(BaseModel):
    """
    Individual transaction from an imported bank statement.

    Positive amounts are deposits, negative amounts are withdrawals.
    """

    __tablename__ = "bank_statement_lines"

    reconciliation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_reconciliations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    external_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True,
        comment="Check or reference number from the statement file",
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=False,
    )
    balance: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=18, scale=2), nullable=True,
        comment="Running balance as reported by the bank",
    )

    # Matching
    match_status: Mapped[MatchStatus] = mapped_column(
        SQLEnum(MatchStatus),
        default=MatchStatus.UNMATCHED,
        nullable=False,
    )
    matched_posting_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_postings.id", ondelete="SET NULL"),
        nullable=True,
    )
    matched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    matched_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    reconciliation: Mapped["BankReconciliation"] = relationship(
        "BankReconciliation", back_populates="bank_lines",
    )

    @property
    def is_matched(self) -> bool:
        return self.match_status != MatchStatus.UNMATCHED

    def __repr__(self) -> str:
        return f"<BankStatementLine(id={self.id}, date={self.transaction_date}, amount={self.amount})>"


# ===========================================
# RECONCILIATION ADJUSTMENT
# ===========================================

class ReconciliationAdjustment(BaseModel, AuditMixin):
    """
    Adjustment posted during a reconciliation (bank fee, interest, NSF, ...).

    Backed by a two-sided journal entry; posting_id is the side on the
    reconciliation's own account, which is cleared when the adjustment is made.
    """

    __tablename__ = "reconciliation_adjustments"

    reconciliation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_reconciliations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    posting_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_postings.id", ondelete="SET NULL"),
        nullable=True,
    )

    adjustment_type: Mapped[AdjustmentType] = mapped_column(
        SQLEnum(AdjustmentType),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=False,
    )
    debit_account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chart_of_accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    credit_account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chart_of_accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Relationships
    reconciliation: Mapped["BankReconciliation"] = relationship(
        "BankReconciliation", back_populates="adjustments",
    )

    __table_args__ = (
        CheckConstraint('amount > 0', name='positive_amount'),
        CheckConstraint('debit_account_id <> credit_account_id', name='distinct_accounts'),
    )

    def __repr__(self) -> str:
        return f"<ReconciliationAdjustment({self.adjustment_type.value}: {self.amount})>"
