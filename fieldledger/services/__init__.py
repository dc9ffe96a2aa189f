"""
FieldLedger - Services Package

Business logic services.
"""

from fieldledger.services.ledger_provider import (
    LedgerBalanceProvider,
    PostingRecord,
    SQLLedgerBalanceProvider,
    get_ledger_provider,
)
from fieldledger.services.bank_reconciliation_service import (
    BankReconciliationService,
    ReconciliationSummary,
    get_bank_reconciliation_service,
)
from fieldledger.services.matching_engine import (
    MatchingConfig,
    MatchingEngine,
    MatchSuggestion,
    get_matching_engine,
)
from fieldledger.services.adjustment_service import AdjustmentService, get_adjustment_service
from fieldledger.services.cash_flow_service import CashFlowService, get_cash_flow_service
from fieldledger.services.statement_import_service import (
    BankStatementParser,
    ParsedBankLine,
    ParseResult,
    StatementImportService,
    get_statement_import_service,
)

__all__ = [
    "LedgerBalanceProvider",
    "PostingRecord",
    "SQLLedgerBalanceProvider",
    "get_ledger_provider",
    "BankReconciliationService",
    "ReconciliationSummary",
    "get_bank_reconciliation_service",
    "MatchingConfig",
    "MatchingEngine",
    "MatchSuggestion",
    "get_matching_engine",
    "AdjustmentService",
    "get_adjustment_service",
    "CashFlowService",
    "get_cash_flow_service",
    "BankStatementParser",
    "ParsedBankLine",
    "ParseResult",
    "StatementImportService",
    "get_statement_import_service",
]
