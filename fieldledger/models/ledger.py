"""
FieldLedger - Chart of Accounts & Ledger Posting Models

The general ledger is owned by the posting side of the application. This
core reads accounts and postings, and only ever writes the reconciliation
fields of a posting (reconciliation_id, cleared_at, cleared_by_id) plus the
two-sided postings created for reconciliation adjustments.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum, Index, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldledger.models.base import BaseModel, AuditMixin

if TYPE_CHECKING:
    from fieldledger.models.bank_reconciliation import BankReconciliation


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, Enum):
    """Main account types."""
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    INCOME = "income"  # Alias for revenue
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Normal balance direction."""
    DEBIT = "debit"
    CREDIT = "credit"


class CashFlowSection(str, Enum):
    """Cash flow statement section an account reports under."""
    OPERATING = "operating"
    INVESTING = "investing"
    FINANCING = "financing"
    NON_CASH = "non_cash"


class PostingReferenceType(str, Enum):
    """Source document type of a ledger posting."""
    MANUAL = "manual"
    INVOICE = "invoice"
    PAYMENT = "payment"
    ADJUSTMENT = "adjustment"


def signed_amount(
    debit_amount: Optional[Decimal],
    credit_amount: Optional[Decimal],
    normal_balance: NormalBalance,
) -> Decimal:
    """Net amount of a posting in the direction of its account's normal balance."""
    debit = debit_amount or Decimal("0.00")
    credit = credit_amount or Decimal("0.00")
    if normal_balance == NormalBalance.DEBIT:
        return debit - credit
    return credit - debit


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

class Account(BaseModel, AuditMixin):
    """
    Chart of Accounts entry.

    Cash accounts (is_cash_account) are the ones a bank statement is
    reconciled against and the ones a cash flow statement is built around.
    """

    __tablename__ = "chart_of_accounts"

    # Account Identification
    account_code: Mapped[str] = mapped_column(
        String(20), nullable=False, unique=True,
        comment="Unique account code (e.g., 1000, 1100, 2000)",
    )
    account_name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Classification
    account_type: Mapped[AccountType] = mapped_column(
        SQLEnum(AccountType), nullable=False,
    )
    account_subtype: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True,
        comment="Free-text subtype, e.g. 'Fixed Asset', 'long_term_debt'",
    )
    normal_balance: Mapped[NormalBalance] = mapped_column(
        SQLEnum(NormalBalance), nullable=False,
    )

    # Cash Flow Reporting
    is_cash_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cash_flow_section: Mapped[Optional[CashFlowSection]] = mapped_column(
        SQLEnum(CashFlowSection), nullable=True,
        comment="Overrides the section derived from type/subtype",
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Account({self.account_code}: {self.account_name})>"


# =============================================================================
# LEDGER POSTINGS
# =============================================================================

class LedgerPosting(BaseModel, AuditMixin):
    """
    One side of a journal entry against one account.

    All sides of a journal entry share an entry_number. Exactly one of
    debit_amount / credit_amount is non-zero.
    """

    __tablename__ = "ledger_postings"

    entry_number: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True,
        comment="Journal entry number shared by all sides (e.g., JE-2026-00001)",
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chart_of_accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    debit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # Source
    reference_type: Mapped[PostingReferenceType] = mapped_column(
        SQLEnum(PostingReferenceType),
        default=PostingReferenceType.MANUAL,
        nullable=False,
    )
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    fiscal_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    fiscal_period: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Reconciliation (the only fields this core mutates on existing postings)
    reconciliation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_reconciliations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    cleared_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cleared_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    account: Mapped["Account"] = relationship("Account", lazy="joined")
    reconciliation: Mapped[Optional["BankReconciliation"]] = relationship(
        "BankReconciliation", back_populates="cleared_postings",
    )

    __table_args__ = (
        Index('ix_posting_account_date', 'account_id', 'entry_date'),
        CheckConstraint(
            '(debit_amount > 0 AND credit_amount = 0) OR (credit_amount > 0 AND debit_amount = 0) OR (debit_amount = 0 AND credit_amount = 0)',
            name='debit_or_credit'
        ),
    )

    @property
    def net_amount(self) -> Decimal:
        """Signed amount using the account's normal balance."""
        return signed_amount(self.debit_amount, self.credit_amount, self.account.normal_balance)

    @property
    def is_cleared(self) -> bool:
        return self.reconciliation_id is not None

    def __repr__(self) -> str:
        return f"<LedgerPosting({self.entry_number} DR: {self.debit_amount}, CR: {self.credit_amount})>"
