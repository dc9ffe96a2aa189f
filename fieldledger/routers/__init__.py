"""
FieldLedger - Routers Package

FastAPI route handlers.

Routers:
- bank_reconciliation: Reconciliation sessions, bank lines, matching, adjustments
- cash_flow: Cash flow statement
"""

from fieldledger.routers import bank_reconciliation, cash_flow

__all__ = ["bank_reconciliation", "cash_flow"]
