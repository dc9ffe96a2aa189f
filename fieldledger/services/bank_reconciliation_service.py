"""
FieldLedger - Bank Reconciliation Service

Owns the lifecycle of a reconciliation session:
- Start (one in-progress reconciliation per account)
- Clear / unclear ledger postings
- Complete with balance-tolerance gating
- Cancel and rollback as single atomic units
- Read models: postings, bank lines, adjustments, summary

cleared_balance and difference are always re-derived from the postings
currently pointing at the reconciliation, never maintained incrementally.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update, delete, func, case, or_
from sqlalchemy.ext.asyncio import AsyncSession

from fieldledger.config import settings
from fieldledger.database import atomic
from fieldledger.models.base import utcnow
from fieldledger.models.ledger import Account, LedgerPosting, NormalBalance
from fieldledger.models.bank_reconciliation import (
    BankReconciliation,
    BankStatementLine,
    MatchStatus,
    ReconciliationAdjustment,
    ReconciliationStatus,
)
from fieldledger.services.ledger_provider import (
    LedgerBalanceProvider,
    SQLLedgerBalanceProvider,
)
from fieldledger.utils.error_handling import (
    ConflictException,
    ErrorCode,
    InvalidStateException,
    NotFoundException,
    ReconciliationOutOfBalanceException,
    ValidationException,
    require_actor,
    validate_date_range,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


@dataclass
class ReconciliationSummary:
    """Reconciliation joined with its account and item counts."""
    id: uuid.UUID
    account_id: uuid.UUID
    account_number: str
    account_name: str
    statement_start_date: date
    statement_end_date: date
    statement_ending_balance: Decimal
    calculated_book_balance: Decimal
    cleared_balance: Decimal
    difference: Decimal
    status: ReconciliationStatus
    created_by_id: Optional[uuid.UUID]
    created_at: datetime
    completed_at: Optional[datetime]
    completed_by_id: Optional[uuid.UUID]
    cleared_entries_count: int
    bank_lines_count: int
    matched_lines_count: int
    adjustments_count: int


class BankReconciliationService:
    """Service for reconciliation session operations."""

    def __init__(
        self,
        db: AsyncSession,
        ledger: Optional[LedgerBalanceProvider] = None,
    ):
        self.db = db
        self.ledger = ledger or SQLLedgerBalanceProvider(db)

    # ===========================================
    # LOADING & GUARDS
    # ===========================================

    async def get_reconciliation(
        self,
        reconciliation_id: uuid.UUID,
        for_update: bool = False,
    ) -> BankReconciliation:
        """Get a reconciliation by ID or raise NotFoundException."""
        query = select(BankReconciliation).where(BankReconciliation.id == reconciliation_id)
        if for_update:
            query = query.with_for_update(of=BankReconciliation)
        result = await self.db.execute(query)
        reconciliation = result.unique().scalar_one_or_none()
        if reconciliation is None:
            raise NotFoundException(
                "Reconciliation", reconciliation_id,
                code=ErrorCode.RECONCILIATION_NOT_FOUND,
            )
        return reconciliation

    async def get_posting(
        self,
        posting_id: uuid.UUID,
        for_update: bool = False,
    ) -> LedgerPosting:
        query = select(LedgerPosting).where(LedgerPosting.id == posting_id)
        if for_update:
            query = query.with_for_update(of=LedgerPosting)
        result = await self.db.execute(query)
        posting = result.unique().scalar_one_or_none()
        if posting is None:
            raise NotFoundException(
                "Ledger posting", posting_id,
                code=ErrorCode.POSTING_NOT_FOUND,
            )
        return posting

    @staticmethod
    def require_status(
        reconciliation: BankReconciliation,
        required: ReconciliationStatus,
        action: str,
    ) -> None:
        if reconciliation.status != required:
            logger.warning(
                f"Rejected {action} on reconciliation {reconciliation.id}: "
                f"status is {reconciliation.status.value}"
            )
            raise InvalidStateException("Reconciliation", reconciliation.status, required, action)

    @staticmethod
    def require_posting_on_account(
        reconciliation: BankReconciliation,
        posting: LedgerPosting,
    ) -> None:
        if posting.account_id != reconciliation.account_id:
            raise ValidationException(
                "Posting is not on the reconciliation's account",
                field="posting_id",
                code=ErrorCode.INVALID_ACCOUNT,
                details={
                    "posting_account_id": posting.account_id,
                    "reconciliation_account_id": reconciliation.account_id,
                },
            )

    # ===========================================
    # CLEARED BALANCE
    # ===========================================

    async def compute_cleared_balance(self, reconciliation_id: uuid.UUID) -> Decimal:
        """Sum of net signed amounts of every posting cleared under the reconciliation."""
        # Pending clear/unclear changes must be visible to the aggregate
        await self.db.flush()

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
            .where(LedgerPosting.reconciliation_id == reconciliation_id)
        )
        return Decimal(str(result.scalar() or 0)).quantize(CENT)

    async def rederive_balances(self, reconciliation: BankReconciliation) -> BankReconciliation:
        """Re-derive cleared_balance and difference onto the reconciliation (not committed)."""
        cleared = await self.compute_cleared_balance(reconciliation.id)
        reconciliation.cleared_balance = cleared
        reconciliation.difference = (
            Decimal(reconciliation.statement_ending_balance) - cleared
        ).quantize(CENT)
        return reconciliation

    async def refresh_balances(self, reconciliation_id: uuid.UUID) -> BankReconciliation:
        """Re-derive and persist cleared balance / difference."""
        async with atomic(self.db, "refresh reconciliation balances"):
            reconciliation = await self.get_reconciliation(reconciliation_id, for_update=True)
            await self.rederive_balances(reconciliation)
        return reconciliation

    @staticmethod
    def mark_cleared(
        posting: LedgerPosting,
        reconciliation_id: uuid.UUID,
        actor_id: uuid.UUID,
    ) -> None:
        posting.reconciliation_id = reconciliation_id
        posting.cleared_at = utcnow()
        posting.cleared_by_id = actor_id

    @staticmethod
    def mark_uncleared(posting: LedgerPosting) -> None:
        posting.reconciliation_id = None
        posting.cleared_at = None
        posting.cleared_by_id = None

    # ===========================================
    # LIFECYCLE
    # ===========================================

    async def start_reconciliation(
        self,
        account_id: uuid.UUID,
        statement_start_date: date,
        statement_end_date: date,
        statement_ending_balance: Decimal,
        actor_id: Optional[uuid.UUID],
        notes: Optional[str] = None,
        reconciliation_date: Optional[date] = None,
    ) -> BankReconciliation:
        """
        Start a reconciliation for one account and statement period.

        The book balance is snapshot as of the statement end date. Fails with
        a conflict if the account already has a reconciliation in progress.
        """
        actor_id = require_actor(actor_id)
        validate_date_range(statement_start_date, statement_end_date)

        account = await self.db.get(Account, account_id)
        if account is None:
            raise NotFoundException("Account", account_id, code=ErrorCode.ACCOUNT_NOT_FOUND)

        existing = await self.db.execute(
            select(BankReconciliation.id).where(
                BankReconciliation.account_id == account_id,
                BankReconciliation.status == ReconciliationStatus.IN_PROGRESS,
            )
        )
        existing_id = existing.scalar_one_or_none()
        if existing_id is not None:
            raise ConflictException(
                f"Account {account.account_code} already has a reconciliation in progress",
                resource_type="Reconciliation",
                code=ErrorCode.RECONCILIATION_IN_PROGRESS,
                details={"existing_reconciliation_id": existing_id},
            )

        book_balance = await self.ledger.balance([account_id], statement_end_date)
        ending_balance = Decimal(str(statement_ending_balance)).quantize(CENT)

        reconciliation = BankReconciliation(
            account_id=account_id,
            reconciliation_date=reconciliation_date or statement_end_date,
            statement_start_date=statement_start_date,
            statement_end_date=statement_end_date,
            statement_ending_balance=ending_balance,
            calculated_book_balance=book_balance,
            cleared_balance=ZERO,
            difference=ending_balance,
            status=ReconciliationStatus.IN_PROGRESS,
            notes=notes,
            created_by_id=actor_id,
        )

        async with atomic(
            self.db,
            "start reconciliation",
            conflict_message=f"Account {account.account_code} already has a reconciliation in progress",
        ):
            self.db.add(reconciliation)

        logger.info(
            f"Started reconciliation {reconciliation.id} for account {account.account_code} "
            f"({statement_start_date} to {statement_end_date}), book balance {book_balance}"
        )
        return reconciliation

    async def toggle_cleared(
        self,
        reconciliation_id: uuid.UUID,
        posting_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
    ) -> BankReconciliation:
        """
        Flip a posting's cleared state within an in-progress reconciliation.

        Unassigned postings are cleared under this reconciliation; postings
        already cleared under it are uncleared. A posting cleared under a
        different reconciliation is a conflict.
        """
        actor_id = require_actor(actor_id)

        async with atomic(self.db, "toggle cleared posting"):
            reconciliation = await self.get_reconciliation(reconciliation_id, for_update=True)
            self.require_status(reconciliation, ReconciliationStatus.IN_PROGRESS, "update")

            posting = await self.get_posting(posting_id, for_update=True)
            self.require_posting_on_account(reconciliation, posting)

            if posting.reconciliation_id is None:
                self.mark_cleared(posting, reconciliation.id, actor_id)
            elif posting.reconciliation_id == reconciliation.id:
                self.mark_uncleared(posting)
                # A bank line matched to this posting no longer has a cleared counterpart
                await self.db.execute(
                    update(BankStatementLine)
                    .where(
                        BankStatementLine.reconciliation_id == reconciliation.id,
                        BankStatementLine.matched_posting_id == posting.id,
                    )
                    .values(
                        match_status=MatchStatus.UNMATCHED,
                        matched_posting_id=None,
                        matched_at=None,
                        matched_by_id=None,
                    )
                    .execution_options(synchronize_session="fetch")
                )
            else:
                raise ConflictException(
                    "Posting is already cleared under another reconciliation",
                    resource_type="LedgerPosting",
                    code=ErrorCode.ALREADY_CLEARED,
                    details={"reconciliation_id": posting.reconciliation_id},
                )

            await self.rederive_balances(reconciliation)

        logger.debug(
            f"Reconciliation {reconciliation.id}: posting {posting.id} "
            f"{'cleared' if posting.reconciliation_id else 'uncleared'}, "
            f"difference now {reconciliation.difference}"
        )
        return reconciliation

    async def complete_reconciliation(
        self,
        reconciliation_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
    ) -> BankReconciliation:
        """
        Complete a reconciliation.

        The balance is re-derived first; completion requires
        |difference| <= the configured tolerance.
        """
        actor_id = require_actor(actor_id)
        tolerance = Decimal(str(settings.reconciliation_tolerance))

        async with atomic(self.db, "complete reconciliation"):
            reconciliation = await self.get_reconciliation(reconciliation_id, for_update=True)
            self.require_status(reconciliation, ReconciliationStatus.IN_PROGRESS, "complete")

            await self.rederive_balances(reconciliation)
            if abs(reconciliation.difference) > tolerance:
                logger.warning(
                    f"Reconciliation {reconciliation.id} out of balance by "
                    f"{reconciliation.difference} (tolerance {tolerance})"
                )
                raise ReconciliationOutOfBalanceException(
                    difference=reconciliation.difference,
                    tolerance=tolerance,
                    cleared_balance=reconciliation.cleared_balance,
                )

            reconciliation.status = ReconciliationStatus.COMPLETED
            reconciliation.completed_at = utcnow()
            reconciliation.completed_by_id = actor_id

        logger.info(f"Completed reconciliation {reconciliation.id}")
        return reconciliation

    async def _release(
        self,
        reconciliation: BankReconciliation,
    ) -> None:
        """Unclear every posting and delete every bank line of a reconciliation."""
        await self.db.execute(
            update(LedgerPosting)
            .where(LedgerPosting.reconciliation_id == reconciliation.id)
            .values(reconciliation_id=None, cleared_at=None, cleared_by_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.execute(
            delete(BankStatementLine)
            .where(BankStatementLine.reconciliation_id == reconciliation.id)
            .execution_options(synchronize_session="fetch")
        )

    async def cancel_reconciliation(
        self,
        reconciliation_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
    ) -> BankReconciliation:
        """
        Cancel an in-progress reconciliation.

        Unclearing postings, deleting bank lines and the status change happen
        in one transaction: on failure the reconciliation stays in progress
        with its postings still cleared.
        """
        actor_id = require_actor(actor_id)

        async with atomic(self.db, "cancel reconciliation"):
            reconciliation = await self.get_reconciliation(reconciliation_id, for_update=True)
            self.require_status(reconciliation, ReconciliationStatus.IN_PROGRESS, "cancel")

            await self._release(reconciliation)
            reconciliation.status = ReconciliationStatus.CANCELLED
            reconciliation.cancelled_at = utcnow()
            reconciliation.cancelled_by_id = actor_id
            await self.rederive_balances(reconciliation)

        logger.info(f"Cancelled reconciliation {reconciliation.id}")
        return reconciliation

    async def rollback_reconciliation(
        self,
        reconciliation_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
    ) -> BankReconciliation:
        """
        Roll back a completed reconciliation.

        Same atomic unit as cancel. Postings stay in the ledger, uncleared;
        adjustment records are kept.
        """
        actor_id = require_actor(actor_id)

        async with atomic(self.db, "roll back reconciliation"):
            reconciliation = await self.get_reconciliation(reconciliation_id, for_update=True)
            self.require_status(reconciliation, ReconciliationStatus.COMPLETED, "roll back")

            await self._release(reconciliation)
            reconciliation.status = ReconciliationStatus.ROLLED_BACK
            reconciliation.rolled_back_at = utcnow()
            reconciliation.rolled_back_by_id = actor_id
            await self.rederive_balances(reconciliation)

        logger.info(f"Rolled back reconciliation {reconciliation.id}")
        return reconciliation

    # ===========================================
    # READ OPERATIONS
    # ===========================================

    async def get_reconciliations(
        self,
        account_id: Optional[uuid.UUID] = None,
        status: Optional[ReconciliationStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[BankReconciliation]:
        """
        List reconciliations, newest first.

        start_date / end_date select reconciliations whose statement period
        overlaps the range.
        """
        query = select(BankReconciliation)
        if account_id:
            query = query.where(BankReconciliation.account_id == account_id)
        if status:
            query = query.where(BankReconciliation.status == status)
        if start_date:
            query = query.where(BankReconciliation.statement_end_date >= start_date)
        if end_date:
            query = query.where(BankReconciliation.statement_start_date <= end_date)
        query = query.order_by(BankReconciliation.created_at.desc())

        result = await self.db.execute(query)
        return list(result.unique().scalars().all())

    async def get_last_completed(self, account_id: uuid.UUID) -> Optional[BankReconciliation]:
        """Most recent completed reconciliation of an account by statement end date."""
        result = await self.db.execute(
            select(BankReconciliation)
            .where(
                BankReconciliation.account_id == account_id,
                BankReconciliation.status == ReconciliationStatus.COMPLETED,
            )
            .order_by(BankReconciliation.statement_end_date.desc())
            .limit(1)
        )
        return result.unique().scalar_one_or_none()

    async def get_postings(self, reconciliation_id: uuid.UUID) -> List[LedgerPosting]:
        """
        Postings cleared under the reconciliation plus uncleared postings on
        its account dated on/before the statement end date.
        """
        reconciliation = await self.get_reconciliation(reconciliation_id)
        result = await self.db.execute(
            select(LedgerPosting)
            .where(
                or_(
                    LedgerPosting.reconciliation_id == reconciliation.id,
                    (LedgerPosting.account_id == reconciliation.account_id)
                    & LedgerPosting.reconciliation_id.is_(None)
                    & (LedgerPosting.entry_date <= reconciliation.statement_end_date),
                )
            )
            .order_by(LedgerPosting.entry_date, LedgerPosting.entry_number)
        )
        return list(result.unique().scalars().all())

    async def get_bank_lines(self, reconciliation_id: uuid.UUID) -> List[BankStatementLine]:
        await self.get_reconciliation(reconciliation_id)
        result = await self.db.execute(
            select(BankStatementLine)
            .where(BankStatementLine.reconciliation_id == reconciliation_id)
            .order_by(BankStatementLine.transaction_date, BankStatementLine.created_at)
        )
        return list(result.scalars().all())

    async def get_adjustments(self, reconciliation_id: uuid.UUID) -> List[ReconciliationAdjustment]:
        await self.get_reconciliation(reconciliation_id)
        result = await self.db.execute(
            select(ReconciliationAdjustment)
            .where(ReconciliationAdjustment.reconciliation_id == reconciliation_id)
            .order_by(ReconciliationAdjustment.created_at)
        )
        return list(result.scalars().all())

    async def get_summary(self, reconciliation_id: uuid.UUID) -> ReconciliationSummary:
        """Reconciliation with account details and item counts."""
        reconciliation = await self.get_reconciliation(reconciliation_id)
        account = await self.db.get(Account, reconciliation.account_id)

        cleared_count = await self.db.scalar(
            select(func.count(LedgerPosting.id))
            .where(LedgerPosting.reconciliation_id == reconciliation.id)
        )
        line_counts = await self.db.execute(
            select(
                func.count(BankStatementLine.id),
                func.coalesce(
                    func.sum(
                        case((BankStatementLine.match_status != MatchStatus.UNMATCHED, 1), else_=0)
                    ),
                    0,
                ),
            )
            .where(BankStatementLine.reconciliation_id == reconciliation.id)
        )
        lines_count, matched_count = line_counts.one()
        adjustments_count = await self.db.scalar(
            select(func.count(ReconciliationAdjustment.id))
            .where(ReconciliationAdjustment.reconciliation_id == reconciliation.id)
        )

        return ReconciliationSummary(
            id=reconciliation.id,
            account_id=reconciliation.account_id,
            account_number=account.account_code if account else "",
            account_name=account.account_name if account else "",
            statement_start_date=reconciliation.statement_start_date,
            statement_end_date=reconciliation.statement_end_date,
            statement_ending_balance=reconciliation.statement_ending_balance,
            calculated_book_balance=reconciliation.calculated_book_balance,
            cleared_balance=reconciliation.cleared_balance,
            difference=reconciliation.difference,
            status=reconciliation.status,
            created_by_id=reconciliation.created_by_id,
            created_at=reconciliation.created_at,
            completed_at=reconciliation.completed_at,
            completed_by_id=reconciliation.completed_by_id,
            cleared_entries_count=int(cleared_count or 0),
            bank_lines_count=int(lines_count or 0),
            matched_lines_count=int(matched_count or 0),
            adjustments_count=int(adjustments_count or 0),
        )


def get_bank_reconciliation_service(db: AsyncSession) -> BankReconciliationService:
    """Factory function for BankReconciliationService."""
    return BankReconciliationService(db)
