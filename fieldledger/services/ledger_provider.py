"""
FieldLedger - Ledger Balance Provider

Read-only access to the general ledger used by reconciliation and cash flow:
posted balances as of a date, and the postings of every journal entry that
touched a set of accounts in a date range.

Results are returned as typed records so callers never depend on the shape
of ad hoc joined rows.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from fieldledger.models.ledger import (
    Account,
    AccountType,
    CashFlowSection,
    LedgerPosting,
    NormalBalance,
    signed_amount,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PostingRecord:
    """One posting joined with the account facts cash flow and matching need."""
    posting_id: uuid.UUID
    entry_number: str
    entry_date: date
    account_id: uuid.UUID
    account_name: str
    debit_amount: Decimal
    credit_amount: Decimal
    description: str
    account_type: AccountType
    account_subtype: Optional[str]
    is_cash_account: bool
    cash_flow_section: Optional[CashFlowSection]
    normal_balance: NormalBalance

    @property
    def net_amount(self) -> Decimal:
        return signed_amount(self.debit_amount, self.credit_amount, self.normal_balance)


class LedgerBalanceProvider(Protocol):
    """What the reconciliation and cash flow services need from the ledger."""

    async def balance(self, account_ids: Sequence[uuid.UUID], as_of_date: date) -> Decimal:
        ...

    async def postings_in_range(
        self,
        start_date: date,
        end_date: date,
        account_ids: Sequence[uuid.UUID],
    ) -> List[PostingRecord]:
        ...

    async def unreconciled_postings(
        self,
        account_id: uuid.UUID,
        end_date: Optional[date] = None,
    ) -> List[PostingRecord]:
        ...

    async def cash_account_ids(self) -> List[uuid.UUID]:
        ...


def _record(posting: LedgerPosting, account: Account) -> PostingRecord:
    return PostingRecord(
        posting_id=posting.id,
        entry_number=posting.entry_number,
        entry_date=posting.entry_date,
        account_id=posting.account_id,
        account_name=account.account_name,
        debit_amount=posting.debit_amount or Decimal("0.00"),
        credit_amount=posting.credit_amount or Decimal("0.00"),
        description=posting.description or "",
        account_type=account.account_type,
        account_subtype=account.account_subtype,
        is_cash_account=account.is_cash_account,
        cash_flow_section=account.cash_flow_section,
        normal_balance=account.normal_balance,
    )


class SQLLedgerBalanceProvider:
    """LedgerBalanceProvider over the application's own ledger tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def balance(self, account_ids: Sequence[uuid.UUID], as_of_date: date) -> Decimal:
        """
        Posted balance of the given accounts as of a date (inclusive).

        Each account contributes in the direction of its normal balance.
        """
        if not account_ids:
            return Decimal("0.00")

        signed = case(
            (
                Account.normal_balance == NormalBalance.DEBIT,
                LedgerPosting.debit_amount - LedgerPosting.credit_amount,
            ),
            else_=LedgerPosting.credit_amount - LedgerPosting.debit_amount,
        )
        result = await self.db.execute(
            select(func.coalesce(func.sum(signed), 0))
            .select_from(LedgerPosting)
            .join(Account, Account.id == LedgerPosting.account_id)
            .where(
                LedgerPosting.account_id.in_(list(account_ids)),
                LedgerPosting.entry_date <= as_of_date,
            )
        )
        return Decimal(str(result.scalar() or 0)).quantize(Decimal("0.01"))

    async def postings_in_range(
        self,
        start_date: date,
        end_date: date,
        account_ids: Sequence[uuid.UUID],
    ) -> List[PostingRecord]:
        """
        Every posting of every journal entry that touches one of account_ids
        within [start_date, end_date], ordered by entry date and number.
        """
        if not account_ids:
            return []

        touching = (
            select(LedgerPosting.entry_number)
            .where(
                LedgerPosting.account_id.in_(list(account_ids)),
                LedgerPosting.entry_date >= start_date,
                LedgerPosting.entry_date <= end_date,
            )
            .distinct()
        )
        result = await self.db.execute(
            select(LedgerPosting, Account)
            .join(Account, Account.id == LedgerPosting.account_id)
            .where(
                LedgerPosting.entry_number.in_(touching),
                LedgerPosting.entry_date >= start_date,
                LedgerPosting.entry_date <= end_date,
            )
            .order_by(
                LedgerPosting.entry_date,
                LedgerPosting.entry_number,
                LedgerPosting.created_at,
            )
        )
        return [_record(posting, account) for posting, account in result.unique().all()]

    async def unreconciled_postings(
        self,
        account_id: uuid.UUID,
        end_date: Optional[date] = None,
    ) -> List[PostingRecord]:
        """Uncleared postings on one account, optionally dated on/before end_date."""
        query = (
            select(LedgerPosting, Account)
            .join(Account, Account.id == LedgerPosting.account_id)
            .where(
                LedgerPosting.account_id == account_id,
                LedgerPosting.reconciliation_id.is_(None),
            )
        )
        if end_date is not None:
            query = query.where(LedgerPosting.entry_date <= end_date)
        query = query.order_by(LedgerPosting.entry_date, LedgerPosting.entry_number)

        result = await self.db.execute(query)
        return [_record(posting, account) for posting, account in result.unique().all()]

    async def cash_account_ids(self) -> List[uuid.UUID]:
        """Active accounts flagged as cash accounts."""
        result = await self.db.execute(
            select(Account.id)
            .where(Account.is_cash_account.is_(True), Account.is_active.is_(True))
            .order_by(Account.account_code)
        )
        return list(result.scalars().all())


def get_ledger_provider(db: AsyncSession) -> SQLLedgerBalanceProvider:
    """Factory function for the SQL ledger provider."""
    return SQLLedgerBalanceProvider(db)
