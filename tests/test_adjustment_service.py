"""
FieldLedger - Reconciliation Adjustment Tests
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select

from fieldledger.models import (
    AdjustmentType,
    LedgerPosting,
    PostingReferenceType,
)
from fieldledger.services.adjustment_service import AdjustmentService
from fieldledger.services.bank_reconciliation_service import BankReconciliationService
from fieldledger.utils.error_handling import (
    ConflictException,
    ErrorCode,
    InvalidAmountException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)


async def _start_cleared(db_session, scenario, actor_id, ending_balance="9975.00"):
    """Start a reconciliation with all three scenario postings cleared."""
    service = BankReconciliationService(db_session)
    reconciliation = await service.start_reconciliation(
        account_id=scenario.accounts.checking,
        statement_start_date=scenario.start,
        statement_end_date=scenario.end,
        statement_ending_balance=Decimal(ending_balance),
        actor_id=actor_id,
    )
    reconciliation_id = reconciliation.id
    for posting_id in (
        scenario.customer_payment, scenario.equipment_purchase, scenario.loan_proceeds,
    ):
        await service.toggle_cleared(reconciliation_id, posting_id, actor_id)
    return service, reconciliation_id


async def _adjustment_postings(db_session, entry_number=None):
    query = select(LedgerPosting).where(
        LedgerPosting.reference_type == PostingReferenceType.ADJUSTMENT,
    )
    if entry_number:
        query = query.where(LedgerPosting.entry_number == entry_number)
    result = await db_session.execute(query.order_by(LedgerPosting.debit_amount.desc()))
    return list(result.unique().scalars().all())


class TestCreateAdjustment:
    """Test cases for AdjustmentService.create_adjustment."""

    @pytest.mark.asyncio
    async def test_bank_fee_adjustment(self, db_session, scenario, actor_id):
        """A $25 fee posts two sides under one entry and clears the cash side."""
        service, reconciliation_id = await _start_cleared(db_session, scenario, actor_id)
        adjustments = AdjustmentService(db_session)

        adjustment = await adjustments.create_adjustment(
            reconciliation_id=reconciliation_id,
            adjustment_type=AdjustmentType.BANK_FEE,
            description="Monthly service fee",
            amount=Decimal("25.00"),
            debit_account_id=scenario.accounts.bank_fees,
            credit_account_id=scenario.accounts.checking,
            actor_id=actor_id,
        )

        postings = await _adjustment_postings(db_session)
        assert len(postings) == 2
        debit, credit = postings
        assert debit.entry_number == credit.entry_number == "JE-2026-00001"
        assert debit.account_id == scenario.accounts.bank_fees
        assert debit.debit_amount == Decimal("25.00")
        assert credit.account_id == scenario.accounts.checking
        assert credit.credit_amount == Decimal("25.00")
        assert debit.entry_date == credit.entry_date == scenario.end
        assert credit.fiscal_year == 2026
        assert credit.fiscal_period == 3

        # Only the checking side is cleared
        assert credit.reconciliation_id == reconciliation_id
        assert credit.cleared_by_id == actor_id
        assert debit.reconciliation_id is None

        assert adjustment.posting_id == credit.id
        assert adjustment.amount == Decimal("25.00")
        assert adjustment.created_by_id == actor_id

        reconciliation = await service.get_reconciliation(reconciliation_id)
        assert reconciliation.cleared_balance == Decimal("9975.00")
        assert reconciliation.difference == Decimal("0.00")

        completed = await service.complete_reconciliation(reconciliation_id, actor_id)
        assert completed.difference == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_interest_income_increases_cleared_balance(self, db_session, scenario, actor_id):
        service, reconciliation_id = await _start_cleared(
            db_session, scenario, actor_id, ending_balance="10003.10",
        )

        await AdjustmentService(db_session).create_adjustment(
            reconciliation_id=reconciliation_id,
            adjustment_type=AdjustmentType.INTEREST_INCOME,
            description="Interest earned",
            amount=Decimal("3.10"),
            debit_account_id=scenario.accounts.checking,
            credit_account_id=scenario.accounts.interest_income,
            actor_id=actor_id,
        )

        reconciliation = await service.get_reconciliation(reconciliation_id)
        assert reconciliation.cleared_balance == Decimal("10003.10")
        assert reconciliation.difference == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_entry_numbers_increment(self, db_session, scenario, actor_id):
        _, reconciliation_id = await _start_cleared(db_session, scenario, actor_id)
        adjustments = AdjustmentService(db_session)

        for amount in ("10.00", "15.00"):
            await adjustments.create_adjustment(
                reconciliation_id=reconciliation_id,
                adjustment_type=AdjustmentType.BANK_FEE,
                description="Fee",
                amount=Decimal(amount),
                debit_account_id=scenario.accounts.bank_fees,
                credit_account_id=scenario.accounts.checking,
                actor_id=actor_id,
            )

        numbers = {posting.entry_number for posting in await _adjustment_postings(db_session)}
        assert numbers == {"JE-2026-00001", "JE-2026-00002"}

    @pytest.mark.asyncio
    async def test_entry_numbers_skip_past_existing_entries(
        self, db_session, scenario, post_entry, actor_id,
    ):
        """A gapped JE- number already in the ledger is never reused."""
        await post_entry(
            date(2026, 3, 10), scenario.accounts.checking, scenario.accounts.revenue,
            "300.00", "Prior deposit", entry_number="JE-2026-00002",
        )
        _, reconciliation_id = await _start_cleared(db_session, scenario, actor_id)
        adjustments = AdjustmentService(db_session)

        for amount in ("25.00", "10.00"):
            await adjustments.create_adjustment(
                reconciliation_id=reconciliation_id,
                adjustment_type=AdjustmentType.BANK_FEE,
                description="Fee",
                amount=Decimal(amount),
                debit_account_id=scenario.accounts.bank_fees,
                credit_account_id=scenario.accounts.checking,
                actor_id=actor_id,
            )

        result = await db_session.execute(
            select(LedgerPosting).where(LedgerPosting.entry_number == "JE-2026-00002")
        )
        prior = list(result.unique().scalars().all())
        assert len(prior) == 2
        assert {p.description for p in prior} == {"Prior deposit"}

        by_number = {}
        for posting in await _adjustment_postings(db_session):
            by_number.setdefault(posting.entry_number, []).append(posting)
        assert sorted(by_number) == ["JE-2026-00003", "JE-2026-00004"]
        for postings in by_number.values():
            assert len(postings) == 2
            assert sum(p.debit_amount for p in postings) == sum(p.credit_amount for p in postings)

    @pytest.mark.asyncio
    async def test_failure_after_posting_writes_nothing(
        self, db_session, scenario, actor_id, monkeypatch,
    ):
        """Postings, clearing and the adjustment record commit together or not at all."""
        _, reconciliation_id = await _start_cleared(db_session, scenario, actor_id)
        adjustments = AdjustmentService(db_session)

        async def failing_rederive(reconciliation):
            raise ConflictException("simulated failure after postings were written")

        monkeypatch.setattr(adjustments.reconciliations, "rederive_balances", failing_rederive)

        with pytest.raises(ConflictException):
            await adjustments.create_adjustment(
                reconciliation_id=reconciliation_id,
                adjustment_type=AdjustmentType.BANK_FEE,
                description="Monthly service fee",
                amount=Decimal("25.00"),
                debit_account_id=scenario.accounts.bank_fees,
                credit_account_id=scenario.accounts.checking,
                actor_id=actor_id,
            )

        service = BankReconciliationService(db_session)
        assert await _adjustment_postings(db_session) == []
        assert await service.get_adjustments(reconciliation_id) == []
        reconciliation = await service.get_reconciliation(reconciliation_id)
        assert reconciliation.cleared_balance == Decimal("10000.00")
        assert reconciliation.difference == Decimal("-25.00")
        assert await service.compute_cleared_balance(reconciliation_id) == Decimal("10000.00")

    @pytest.mark.asyncio
    async def test_listed_on_reconciliation(self, db_session, scenario, actor_id):
        service, reconciliation_id = await _start_cleared(db_session, scenario, actor_id)
        await AdjustmentService(db_session).create_adjustment(
            reconciliation_id=reconciliation_id,
            adjustment_type=AdjustmentType.NSF,
            description="Returned check",
            amount=Decimal("120.00"),
            debit_account_id=scenario.accounts.receivable,
            credit_account_id=scenario.accounts.checking,
            actor_id=actor_id,
        )

        listed = await service.get_adjustments(reconciliation_id)
        summary = await service.get_summary(reconciliation_id)

        assert [a.adjustment_type for a in listed] == [AdjustmentType.NSF]
        assert summary.adjustments_count == 1
        assert summary.cleared_entries_count == 4

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, db_session, scenario, actor_id):
        _, reconciliation_id = await _start_cleared(db_session, scenario, actor_id)

        with pytest.raises(InvalidAmountException):
            await AdjustmentService(db_session).create_adjustment(
                reconciliation_id=reconciliation_id,
                adjustment_type=AdjustmentType.BANK_FEE,
                description="Fee",
                amount=Decimal("0.00"),
                debit_account_id=scenario.accounts.bank_fees,
                credit_account_id=scenario.accounts.checking,
                actor_id=actor_id,
            )

    @pytest.mark.asyncio
    async def test_same_accounts_rejected(self, db_session, scenario, actor_id):
        _, reconciliation_id = await _start_cleared(db_session, scenario, actor_id)

        with pytest.raises(ValidationException):
            await AdjustmentService(db_session).create_adjustment(
                reconciliation_id=reconciliation_id,
                adjustment_type=AdjustmentType.CORRECTION,
                description="Oops",
                amount=Decimal("5.00"),
                debit_account_id=scenario.accounts.checking,
                credit_account_id=scenario.accounts.checking,
                actor_id=actor_id,
            )

    @pytest.mark.asyncio
    async def test_must_touch_reconciliation_account(self, db_session, scenario, actor_id):
        service, reconciliation_id = await _start_cleared(db_session, scenario, actor_id)

        with pytest.raises(ValidationException) as exc_info:
            await AdjustmentService(db_session).create_adjustment(
                reconciliation_id=reconciliation_id,
                adjustment_type=AdjustmentType.OTHER,
                description="Reclass",
                amount=Decimal("5.00"),
                debit_account_id=scenario.accounts.bank_fees,
                credit_account_id=scenario.accounts.revenue,
                actor_id=actor_id,
            )

        assert exc_info.value.code == ErrorCode.INVALID_ACCOUNT
        assert await _adjustment_postings(db_session) == []
        assert await service.get_adjustments(reconciliation_id) == []

    @pytest.mark.asyncio
    async def test_unknown_account_writes_nothing(self, db_session, scenario, actor_id):
        _, reconciliation_id = await _start_cleared(db_session, scenario, actor_id)

        with pytest.raises(NotFoundException):
            await AdjustmentService(db_session).create_adjustment(
                reconciliation_id=reconciliation_id,
                adjustment_type=AdjustmentType.BANK_FEE,
                description="Fee",
                amount=Decimal("25.00"),
                debit_account_id=uuid4(),
                credit_account_id=scenario.accounts.checking,
                actor_id=actor_id,
            )

        assert await _adjustment_postings(db_session) == []

    @pytest.mark.asyncio
    async def test_completed_reconciliation_rejected(self, db_session, scenario, actor_id):
        service, reconciliation_id = await _start_cleared(
            db_session, scenario, actor_id, ending_balance="10000.00",
        )
        await service.complete_reconciliation(reconciliation_id, actor_id)

        with pytest.raises(InvalidStateException):
            await AdjustmentService(db_session).create_adjustment(
                reconciliation_id=reconciliation_id,
                adjustment_type=AdjustmentType.BANK_FEE,
                description="Late fee",
                amount=Decimal("25.00"),
                debit_account_id=scenario.accounts.bank_fees,
                credit_account_id=scenario.accounts.checking,
                actor_id=actor_id,
            )

        assert await _adjustment_postings(db_session) == []


class TestSuggestedAccounts:
    """Test cases for default adjustment accounts."""

    @pytest.mark.asyncio
    async def test_defaults_per_type(self, db_session, scenario, actor_id):
        _, reconciliation_id = await _start_cleared(db_session, scenario, actor_id)
        adjustments = AdjustmentService(db_session)
        checking = scenario.accounts.checking

        bank_fee = await adjustments.suggest_accounts(reconciliation_id, AdjustmentType.BANK_FEE)
        assert (bank_fee.debit_account_id, bank_fee.credit_account_id) == (
            scenario.accounts.bank_fees, checking,
        )

        interest = await adjustments.suggest_accounts(reconciliation_id, AdjustmentType.INTEREST_INCOME)
        assert (interest.debit_account_id, interest.credit_account_id) == (
            checking, scenario.accounts.interest_income,
        )

        nsf = await adjustments.suggest_accounts(reconciliation_id, AdjustmentType.NSF)
        assert (nsf.debit_account_id, nsf.credit_account_id) == (
            scenario.accounts.receivable, checking,
        )

        correction = await adjustments.suggest_accounts(reconciliation_id, AdjustmentType.CORRECTION)
        assert (correction.debit_account_id, correction.credit_account_id) == (checking, None)
