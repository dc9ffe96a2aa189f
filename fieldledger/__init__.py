"""
FieldLedger - Bank Reconciliation & Cash Flow Core

Reconciles bank statements against the general ledger and derives the
cash flow statement from cash account postings.
"""

__version__ = "1.0.0"
