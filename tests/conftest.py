"""
FieldLedger - Test Configuration

Pytest fixtures and configuration.

Every test gets a fresh in-memory SQLite database. Fixtures hand back ids
rather than ORM instances: a failed operation rolls the session back and
expires every loaded object, so tests re-read state through the services.
"""

import os

# Settings are read at import time; configure before importing the app
os.environ["DATABASE_URL_ASYNC"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["APP_ENV"] = "testing"
os.environ["DEBUG"] = "false"

import itertools
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fieldledger.database import Base, get_async_session
from fieldledger.models import (
    Account,
    AccountType,
    CashFlowSection,
    LedgerPosting,
    NormalBalance,
)
from fieldledger.utils.security import create_access_token
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# ACTOR FIXTURES
# ===========================================

@pytest.fixture
def actor_id():
    return uuid4()


@pytest.fixture
def auth_headers(actor_id) -> dict:
    """Authorization headers for the test actor."""
    token = create_access_token({"sub": str(actor_id), "email": "bookkeeper@example.com"})
    return {"Authorization": f"Bearer {token}"}


# ===========================================
# DATA FIXTURES
# ===========================================

def _account(
    code: str,
    name: str,
    account_type: AccountType,
    normal_balance: NormalBalance,
    subtype: str = None,
    is_cash: bool = False,
    section: CashFlowSection = None,
) -> Account:
    return Account(
        id=uuid4(),
        account_code=code,
        account_name=name,
        account_type=account_type,
        account_subtype=subtype,
        normal_balance=normal_balance,
        is_cash_account=is_cash,
        cash_flow_section=section,
        is_active=True,
    )


@pytest_asyncio.fixture
async def accounts(db_session: AsyncSession) -> SimpleNamespace:
    """A small chart of accounts; returns account ids by role."""
    rows = {
        "checking": _account("1000", "Operating Checking", AccountType.ASSET, NormalBalance.DEBIT, "Cash", True),
        "savings": _account("1010", "Savings", AccountType.ASSET, NormalBalance.DEBIT, "Cash", True),
        "receivable": _account("1200", "Accounts Receivable", AccountType.ASSET, NormalBalance.DEBIT, "accounts_receivable"),
        "equipment": _account("1500", "Office Equipment", AccountType.ASSET, NormalBalance.DEBIT, "Fixed Asset"),
        "accumulated_depreciation": _account(
            "1590", "Accumulated Depreciation", AccountType.ASSET, NormalBalance.CREDIT,
            "Fixed Asset", section=CashFlowSection.NON_CASH,
        ),
        "loan": _account("2500", "Bank Loan", AccountType.LIABILITY, NormalBalance.CREDIT, "long_term_debt"),
        "owner_draws": _account("3100", "Owner Draws", AccountType.EQUITY, NormalBalance.DEBIT, "draw"),
        "revenue": _account("4000", "Service Revenue", AccountType.REVENUE, NormalBalance.CREDIT),
        "interest_income": _account("4100", "Interest Income", AccountType.REVENUE, NormalBalance.CREDIT),
        "bank_fees": _account("6100", "Bank Fees", AccountType.EXPENSE, NormalBalance.DEBIT),
        "payroll": _account("6200", "Payroll Wages", AccountType.EXPENSE, NormalBalance.DEBIT),
        "depreciation": _account("6300", "Depreciation Expense", AccountType.EXPENSE, NormalBalance.DEBIT),
    }
    db_session.add_all(rows.values())
    await db_session.commit()
    db_session.expunge_all()
    return SimpleNamespace(**{role: account.id for role, account in rows.items()})


@pytest.fixture
def post_entry(db_session: AsyncSession):
    """
    Post a balanced two-sided journal entry.

    Returns the ids of the debit and credit postings.
    """
    numbers = itertools.count(1)

    async def _post(
        entry_date: date,
        debit_account_id,
        credit_account_id,
        amount,
        description: str = "",
        entry_number: str = None,
    ) -> SimpleNamespace:
        entry_number = entry_number or f"GJ-{next(numbers):04d}"
        amount = Decimal(str(amount))
        debit = LedgerPosting(
            id=uuid4(),
            entry_number=entry_number,
            entry_date=entry_date,
            account_id=debit_account_id,
            debit_amount=amount,
            credit_amount=Decimal("0.00"),
            description=description,
        )
        credit = LedgerPosting(
            id=uuid4(),
            entry_number=entry_number,
            entry_date=entry_date,
            account_id=credit_account_id,
            debit_amount=Decimal("0.00"),
            credit_amount=amount,
            description=description,
        )
        db_session.add_all([debit, credit])
        await db_session.commit()
        db_session.expunge_all()
        return SimpleNamespace(entry_number=entry_number, debit=debit.id, credit=credit.id)

    return _post


@pytest_asyncio.fixture
async def scenario(accounts, post_entry) -> SimpleNamespace:
    """
    Checking account with three uncleared postings in March 2026:
    +5,000 customer payment, -2,000 equipment purchase, +7,000 loan proceeds.
    """
    customer = await post_entry(
        date(2026, 3, 5), accounts.checking, accounts.revenue, "5000.00", "Customer payment ACME",
    )
    equipment = await post_entry(
        date(2026, 3, 12), accounts.equipment, accounts.checking, "2000.00", "Laptop purchase",
    )
    loan = await post_entry(
        date(2026, 3, 20), accounts.checking, accounts.loan, "7000.00", "Loan proceeds",
    )
    return SimpleNamespace(
        accounts=accounts,
        customer_payment=customer.debit,
        equipment_purchase=equipment.credit,
        loan_proceeds=loan.debit,
        start=date(2026, 3, 1),
        end=date(2026, 3, 31),
    )
