"""
FieldLedger - Reconciliation Adjustment Service

Creates the balanced two-sided journal entry behind a reconciling
adjustment (bank fee, interest, NSF, correction) and clears its cash side
under the reconciliation in the same transaction.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from fieldledger.database import atomic
from fieldledger.models.ledger import (
    Account,
    AccountType,
    LedgerPosting,
    PostingReferenceType,
)
from fieldledger.models.bank_reconciliation import (
    AdjustmentType,
    ReconciliationAdjustment,
    ReconciliationStatus,
)
from fieldledger.services.bank_reconciliation_service import BankReconciliationService
from fieldledger.utils.error_handling import (
    ErrorCode,
    NotFoundException,
    ValidationException,
    require_actor,
    validate_amount,
)

logger = logging.getLogger(__name__)


@dataclass
class SuggestedAccounts:
    """Default debit/credit accounts for an adjustment type."""
    debit_account_id: Optional[uuid.UUID] = None
    credit_account_id: Optional[uuid.UUID] = None


class AdjustmentService:
    """Service for reconciliation adjustments."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.reconciliations = BankReconciliationService(db)

    async def _generate_entry_number(self, entry_date: date) -> str:
        """
        Generate unique journal entry number.

        Numbers follow the highest suffix already used that year, so gaps
        and externally posted JE- numbers are never reused.
        """
        year = entry_date.year
        prefix = f"JE-{year}-"

        result = await self.db.execute(
            select(LedgerPosting.entry_number)
            .where(LedgerPosting.entry_number.like(f"{prefix}%"))
            .distinct()
        )
        highest = 0
        for number in result.scalars().all():
            suffix = number[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))

        return f"{prefix}{str(highest + 1).zfill(5)}"

    async def create_adjustment(
        self,
        reconciliation_id: uuid.UUID,
        adjustment_type: AdjustmentType,
        description: str,
        amount: Decimal,
        debit_account_id: uuid.UUID,
        credit_account_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        entry_date: Optional[date] = None,
    ) -> ReconciliationAdjustment:
        """
        Create an adjustment.

        Inserts a debit and a credit posting under one new entry number,
        clears the side on the reconciliation's account, records the
        adjustment and re-derives the cleared balance. Everything commits
        together or nothing does. entry_date defaults to the statement end date.
        """
        actor_id = require_actor(actor_id)
        amount = validate_amount(amount).quantize(Decimal("0.01"))
        if debit_account_id == credit_account_id:
            raise ValidationException(
                "Debit and credit accounts must be different",
                field="credit_account_id",
                code=ErrorCode.INVALID_ACCOUNT,
            )

        async with atomic(self.db, "create reconciliation adjustment"):
            reconciliation = await self.reconciliations.get_reconciliation(
                reconciliation_id, for_update=True,
            )
            self.reconciliations.require_status(
                reconciliation, ReconciliationStatus.IN_PROGRESS, "add adjustments to",
            )

            if reconciliation.account_id not in (debit_account_id, credit_account_id):
                raise ValidationException(
                    "One side of the adjustment must be the reconciliation's account",
                    code=ErrorCode.INVALID_ACCOUNT,
                    details={"reconciliation_account_id": reconciliation.account_id},
                )
            for account_id in (debit_account_id, credit_account_id):
                if await self.db.get(Account, account_id) is None:
                    raise NotFoundException("Account", account_id, code=ErrorCode.ACCOUNT_NOT_FOUND)

            entry_date = entry_date or reconciliation.statement_end_date
            entry_number = await self._generate_entry_number(entry_date)
            common = dict(
                entry_number=entry_number,
                entry_date=entry_date,
                description=description,
                reference_type=PostingReferenceType.ADJUSTMENT,
                reference_id=reconciliation.id,
                fiscal_year=entry_date.year,
                fiscal_period=entry_date.month,
                created_by_id=actor_id,
            )
            debit_posting = LedgerPosting(
                account_id=debit_account_id,
                debit_amount=amount,
                credit_amount=Decimal("0.00"),
                **common,
            )
            credit_posting = LedgerPosting(
                account_id=credit_account_id,
                debit_amount=Decimal("0.00"),
                credit_amount=amount,
                **common,
            )
            self.db.add_all([debit_posting, credit_posting])

            cash_posting = (
                debit_posting if debit_account_id == reconciliation.account_id else credit_posting
            )
            self.reconciliations.mark_cleared(cash_posting, reconciliation.id, actor_id)
            await self.db.flush()

            adjustment = ReconciliationAdjustment(
                reconciliation_id=reconciliation.id,
                posting_id=cash_posting.id,
                adjustment_type=adjustment_type,
                description=description,
                amount=amount,
                debit_account_id=debit_account_id,
                credit_account_id=credit_account_id,
                created_by_id=actor_id,
            )
            self.db.add(adjustment)

            await self.reconciliations.rederive_balances(reconciliation)

        logger.info(
            f"Created {adjustment_type.value} adjustment {entry_number} of {amount} "
            f"on reconciliation {reconciliation.id}; difference now {reconciliation.difference}"
        )
        return adjustment

    async def _first_account(self, *conditions) -> Optional[uuid.UUID]:
        result = await self.db.execute(
            select(Account.id)
            .where(Account.is_active.is_(True), *conditions)
            .order_by(Account.account_code)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def suggest_accounts(
        self,
        reconciliation_id: uuid.UUID,
        adjustment_type: AdjustmentType,
    ) -> SuggestedAccounts:
        """Default accounts for the adjustment form."""
        reconciliation = await self.reconciliations.get_reconciliation(reconciliation_id)
        cash_account_id = reconciliation.account_id

        if adjustment_type == AdjustmentType.BANK_FEE:
            expense_id = await self._first_account(
                Account.account_type == AccountType.EXPENSE,
                func.lower(Account.account_name).contains("bank"),
            )
            return SuggestedAccounts(debit_account_id=expense_id, credit_account_id=cash_account_id)

        if adjustment_type == AdjustmentType.INTEREST_INCOME:
            income_id = await self._first_account(
                or_(
                    Account.account_type == AccountType.REVENUE,
                    Account.account_type == AccountType.INCOME,
                ),
                func.lower(Account.account_name).contains("interest"),
            )
            return SuggestedAccounts(debit_account_id=cash_account_id, credit_account_id=income_id)

        if adjustment_type == AdjustmentType.NSF:
            receivable_id = await self._first_account(
                func.lower(Account.account_name).contains("receivable"),
            )
            return SuggestedAccounts(debit_account_id=receivable_id, credit_account_id=cash_account_id)

        return SuggestedAccounts(debit_account_id=cash_account_id)


def get_adjustment_service(db: AsyncSession) -> AdjustmentService:
    """Factory function for AdjustmentService."""
    return AdjustmentService(db)
