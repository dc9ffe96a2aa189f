"""
FieldLedger - Cash Flow Service

Direct-method cash flow statement built from the journal entries that
touched the cash accounts in a period.

Each journal entry is classified as a whole into operating, investing or
financing by the non-cash accounts it touches (investing > financing >
operating), and contributes its total cash effect to that section under a
readable category label. Read-only and safe to re-run.
"""

import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from fieldledger.models.ledger import AccountType, CashFlowSection
from fieldledger.services.ledger_provider import (
    LedgerBalanceProvider,
    PostingRecord,
    SQLLedgerBalanceProvider,
)
from fieldledger.utils.error_handling import validate_date_range

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
BALANCE_TOLERANCE = Decimal("0.01")

SECTION_PRIORITY = {
    CashFlowSection.INVESTING: 3,
    CashFlowSection.FINANCING: 2,
    CashFlowSection.OPERATING: 1,
}

SECTION_TITLES = {
    CashFlowSection.OPERATING: "Cash Flows from Operating Activities",
    CashFlowSection.INVESTING: "Cash Flows from Investing Activities",
    CashFlowSection.FINANCING: "Cash Flows from Financing Activities",
}

INVESTING_SUBTYPES = (
    "fixed asset", "property", "equipment", "vehicle", "building", "long term investment",
)
FINANCING_SUBTYPES = ("long term debt", "loan", "note payable", "mortgage")
FINANCING_EQUITY_SUBTYPES = ("draw", "dividend", "distribution", "capital")


# ===========================================
# DATA CLASSES
# ===========================================

@dataclass
class EntryLine:
    account_id: uuid.UUID
    account_name: str
    account_type: AccountType
    account_subtype: Optional[str]
    cash_flow_section: Optional[CashFlowSection]
    amount: Decimal


@dataclass
class JournalEntryGroup:
    """All lines of one journal entry split into cash and non-cash sides."""
    entry_number: str
    entry_date: date
    cash_lines: List[EntryLine] = field(default_factory=list)
    non_cash_lines: List[EntryLine] = field(default_factory=list)

    @property
    def cash_change(self) -> Decimal:
        return sum((line.amount for line in self.cash_lines), ZERO)


@dataclass
class CashFlowLineItem:
    description: str
    amount: Decimal


@dataclass
class CashFlowStatementSection:
    title: str
    items: List[CashFlowLineItem] = field(default_factory=list)
    subtotal: Decimal = ZERO


@dataclass
class CashFlowStatement:
    start_date: date
    end_date: date
    beginning_cash: Decimal
    ending_cash: Decimal
    operating: CashFlowStatementSection
    investing: CashFlowStatementSection
    financing: CashFlowStatementSection
    net_change: Decimal
    unclassified_amount: Decimal
    is_balanced: bool = True
    discrepancy: Decimal = ZERO


# ===========================================
# CLASSIFICATION
# ===========================================

def _normalize(text: Optional[str]) -> str:
    return (text or "").lower().replace("_", " ").replace("-", " ")


def derive_section(account_type: AccountType, account_subtype: Optional[str]) -> CashFlowSection:
    """Section implied by an account's type and subtype."""
    subtype = _normalize(account_subtype)

    if any(pattern in subtype for pattern in INVESTING_SUBTYPES):
        return CashFlowSection.INVESTING

    if any(pattern in subtype for pattern in FINANCING_SUBTYPES):
        return CashFlowSection.FINANCING
    if account_type == AccountType.EQUITY and any(
        pattern in subtype for pattern in FINANCING_EQUITY_SUBTYPES
    ):
        return CashFlowSection.FINANCING

    return CashFlowSection.OPERATING


def classify_entry(entry: JournalEntryGroup) -> CashFlowSection:
    """
    Section of a whole journal entry.

    Cash-to-cash transfers and entries whose other lines are all non-cash
    (e.g. depreciation) fall back to operating.
    """
    section = CashFlowSection.OPERATING
    priority = 0

    for line in entry.non_cash_lines:
        if line.cash_flow_section == CashFlowSection.NON_CASH:
            continue
        line_section = line.cash_flow_section or derive_section(line.account_type, line.account_subtype)
        line_priority = SECTION_PRIORITY[line_section]
        if line_priority > priority:
            section = line_section
            priority = line_priority

    return section


def category_label(section: CashFlowSection, line: EntryLine) -> str:
    """Human-readable category for an entry, taken from its first non-cash line."""
    subtype = (line.account_subtype or "").lower()
    name = line.account_name.lower()
    account_type = line.account_type

    if section == CashFlowSection.OPERATING:
        if account_type in (AccountType.REVENUE, AccountType.INCOME):
            return "Cash received from customers"
        if account_type == AccountType.EXPENSE:
            if "payroll" in name or "wage" in name or "salary" in name:
                return "Cash paid for payroll"
            if "vendor" in name or "supplier" in name or "cost" in name:
                return "Cash paid to vendors"
            return "Cash paid for operating expenses"
        if "accounts receivable" in subtype:
            return "Collection of accounts receivable"
        if "accounts payable" in subtype:
            return "Payment of accounts payable"
        if "inventory" in subtype:
            return "Purchase of inventory"
        return "Other operating cash flows"

    if section == CashFlowSection.INVESTING:
        if "fixed asset" in subtype or "equipment" in subtype or "vehicle" in subtype:
            return "Purchase of property and equipment"
        if "sale" in name or "disposal" in name:
            return "Proceeds from sale of assets"
        return "Other investing activities"

    if section == CashFlowSection.FINANCING:
        if "loan" in subtype or "debt" in subtype or "loan" in name:
            return "Proceeds from (payments on) debt"
        if "draw" in name or "distribution" in name:
            return "Owner draws"
        if "capital" in name or "contribution" in name:
            return "Owner contributions"
        return "Other financing activities"

    return "Other cash flows"


def group_postings(
    postings: Iterable[PostingRecord],
    cash_account_ids: Sequence[uuid.UUID],
) -> List[JournalEntryGroup]:
    """
    Group postings into journal entries by entry number, splitting cash
    from non-cash lines. Entries without a cash line are dropped.
    """
    cash_ids = set(cash_account_ids)
    entries: "OrderedDict[str, JournalEntryGroup]" = OrderedDict()

    for posting in postings:
        entry = entries.get(posting.entry_number)
        if entry is None:
            entry = JournalEntryGroup(entry_number=posting.entry_number, entry_date=posting.entry_date)
            entries[posting.entry_number] = entry

        line = EntryLine(
            account_id=posting.account_id,
            account_name=posting.account_name,
            account_type=posting.account_type,
            account_subtype=posting.account_subtype,
            cash_flow_section=posting.cash_flow_section,
            amount=posting.net_amount,
        )
        if posting.account_id in cash_ids:
            entry.cash_lines.append(line)
        else:
            entry.non_cash_lines.append(line)

    return [entry for entry in entries.values() if entry.cash_lines]


def empty_statement(start_date: date, end_date: date) -> CashFlowStatement:
    return CashFlowStatement(
        start_date=start_date,
        end_date=end_date,
        beginning_cash=ZERO,
        ending_cash=ZERO,
        operating=CashFlowStatementSection(title=SECTION_TITLES[CashFlowSection.OPERATING]),
        investing=CashFlowStatementSection(title=SECTION_TITLES[CashFlowSection.INVESTING]),
        financing=CashFlowStatementSection(title=SECTION_TITLES[CashFlowSection.FINANCING]),
        net_change=ZERO,
        unclassified_amount=ZERO,
    )


def build_statement(
    start_date: date,
    end_date: date,
    beginning_cash: Decimal,
    ending_cash: Decimal,
    entries: Sequence[JournalEntryGroup],
) -> CashFlowStatement:
    """Assemble the statement from grouped entries and the boundary balances."""
    by_category: Dict[CashFlowSection, "OrderedDict[str, Decimal]"] = {
        section: OrderedDict() for section in SECTION_TITLES
    }
    unclassified = ZERO

    for entry in entries:
        # Cash-to-cash transfers cannot be attributed to a section
        if not entry.non_cash_lines:
            unclassified += entry.cash_change
            continue

        section = classify_entry(entry)
        label = category_label(section, entry.non_cash_lines[0])
        bucket = by_category[section]
        bucket[label] = bucket.get(label, ZERO) + entry.cash_change

    sections = {}
    for section, title in SECTION_TITLES.items():
        items = [
            CashFlowLineItem(description=label, amount=amount)
            for label, amount in by_category[section].items()
        ]
        sections[section] = CashFlowStatementSection(
            title=title,
            items=items,
            subtotal=sum((item.amount for item in items), ZERO),
        )

    net_change = (
        sections[CashFlowSection.OPERATING].subtotal
        + sections[CashFlowSection.INVESTING].subtotal
        + sections[CashFlowSection.FINANCING].subtotal
        + unclassified
    )
    discrepancy = (Decimal(beginning_cash) + net_change - Decimal(ending_cash)).quantize(Decimal("0.01"))

    return CashFlowStatement(
        start_date=start_date,
        end_date=end_date,
        beginning_cash=beginning_cash,
        ending_cash=ending_cash,
        operating=sections[CashFlowSection.OPERATING],
        investing=sections[CashFlowSection.INVESTING],
        financing=sections[CashFlowSection.FINANCING],
        net_change=net_change,
        unclassified_amount=unclassified,
        is_balanced=abs(discrepancy) <= BALANCE_TOLERANCE,
        discrepancy=discrepancy,
    )


# ===========================================
# SERVICE
# ===========================================

class CashFlowService:
    """Builds cash flow statements from the ledger."""

    def __init__(self, db: AsyncSession, ledger: Optional[LedgerBalanceProvider] = None):
        self.db = db
        self.ledger = ledger or SQLLedgerBalanceProvider(db)

    async def get_cash_flow_statement(
        self,
        start_date: date,
        end_date: date,
        account_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> CashFlowStatement:
        """
        Cash flow statement for [start_date, end_date].

        account_ids defaults to every active cash account. A statement whose
        beginning cash plus net change does not reach ending cash is flagged
        unbalanced and logged.
        """
        validate_date_range(start_date, end_date)

        cash_account_ids = list(account_ids) if account_ids else await self.ledger.cash_account_ids()
        if not cash_account_ids:
            return empty_statement(start_date, end_date)

        beginning_cash = await self.ledger.balance(cash_account_ids, start_date - timedelta(days=1))
        ending_cash = await self.ledger.balance(cash_account_ids, end_date)
        postings = await self.ledger.postings_in_range(start_date, end_date, cash_account_ids)

        entries = group_postings(postings, cash_account_ids)
        statement = build_statement(start_date, end_date, beginning_cash, ending_cash, entries)

        if not statement.is_balanced:
            logger.warning(
                f"Cash flow statement {start_date} to {end_date} does not balance: "
                f"beginning {beginning_cash} + net change {statement.net_change} "
                f"!= ending {ending_cash} (discrepancy {statement.discrepancy})"
            )
        return statement


def get_cash_flow_service(db: AsyncSession) -> CashFlowService:
    """Factory function for CashFlowService."""
    return CashFlowService(db)
