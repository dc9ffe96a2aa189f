"""
FieldLedger - Cash Flow Schemas
"""

from datetime import date
from decimal import Decimal
from typing import List

from pydantic import BaseModel


class CashFlowLineItemResponse(BaseModel):
    """Single labelled line in a cash flow section."""
    description: str
    amount: Decimal

    class Config:
        from_attributes = True


class CashFlowSectionResponse(BaseModel):
    """Section of cash flow statement."""
    title: str
    items: List[CashFlowLineItemResponse]
    subtotal: Decimal

    class Config:
        from_attributes = True


class CashFlowStatementResponse(BaseModel):
    """Cash flow statement (direct method)."""
    start_date: date
    end_date: date
    beginning_cash: Decimal
    ending_cash: Decimal

    operating: CashFlowSectionResponse
    investing: CashFlowSectionResponse
    financing: CashFlowSectionResponse

    net_change: Decimal
    unclassified_amount: Decimal

    # beginning_cash + net_change should equal ending_cash
    is_balanced: bool
    discrepancy: Decimal

    class Config:
        from_attributes = True
