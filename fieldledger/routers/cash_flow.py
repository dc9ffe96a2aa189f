"""
FieldLedger - Cash Flow API Router
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fieldledger.database import get_db
from fieldledger.dependencies import Actor, get_current_actor
from fieldledger.services.cash_flow_service import get_cash_flow_service
from fieldledger.schemas.cash_flow import CashFlowStatementResponse

router = APIRouter(prefix="/cash-flow", tags=["Cash Flow"])


@router.get("/statement", response_model=CashFlowStatementResponse)
async def get_cash_flow_statement(
    start_date: date = Query(..., description="Period start (inclusive)"),
    end_date: date = Query(..., description="Period end (inclusive)"),
    account_ids: Optional[List[uuid.UUID]] = Query(
        None, description="Cash accounts; defaults to every active cash account",
    ),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """
    Direct-method cash flow statement for a period.

    is_balanced is false when beginning cash plus net change does not
    reach ending cash; discrepancy carries the gap.
    """
    service = get_cash_flow_service(db)
    return await service.get_cash_flow_statement(start_date, end_date, account_ids)
