"""
FieldLedger - Bank Statement Import Service

Glue between a bank statement parser and a reconciliation. Parsing
(delimited text, bank export formats) is done by an external parser that
satisfies BankStatementParser; this service validates the reconciliation
and inserts the parsed lines as unmatched bank statement lines.

Lines are inserted in chunks, one transaction per chunk, so a failure part
way through leaves every earlier chunk in place and no half-written chunk.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from fieldledger.config import settings
from fieldledger.database import atomic
from fieldledger.models.bank_reconciliation import (
    BankStatementLine,
    MatchStatus,
    ReconciliationStatus,
)
from fieldledger.services.bank_reconciliation_service import BankReconciliationService
from fieldledger.utils.error_handling import AppException, require_actor

logger = logging.getLogger(__name__)


@dataclass
class ParsedBankLine:
    """One transaction as produced by a statement parser."""
    transaction_date: date
    description: str
    amount: Decimal
    check_number: Optional[str] = None
    reference_number: Optional[str] = None
    balance: Optional[Decimal] = None

    @property
    def external_transaction_id(self) -> Optional[str]:
        return self.check_number or self.reference_number


@dataclass
class ParseResult:
    lines: List[ParsedBankLine] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class BankStatementParser(Protocol):
    """Decodes statement file content into bank lines."""

    def parse(self, content: str, format_hint: Optional[str] = None) -> ParseResult:
        ...


@dataclass
class ImportResult:
    imported: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


class StatementImportService:
    """Imports parsed bank lines into a reconciliation."""

    def __init__(self, db: AsyncSession, chunk_size: Optional[int] = None):
        self.db = db
        self.chunk_size = max(1, chunk_size or settings.statement_import_chunk_size)
        self.reconciliations = BankReconciliationService(db)

    async def import_lines(
        self,
        reconciliation_id: uuid.UUID,
        lines: Sequence[ParsedBankLine],
        actor_id: Optional[uuid.UUID],
    ) -> ImportResult:
        """
        Insert parsed lines as unmatched bank lines.

        The first failing chunk stops the import; its lines and every later
        line are reported as failed.
        """
        require_actor(actor_id)
        reconciliation = await self.reconciliations.get_reconciliation(reconciliation_id)
        self.reconciliations.require_status(
            reconciliation, ReconciliationStatus.IN_PROGRESS, "import lines into",
        )

        result = ImportResult()
        for start in range(0, len(lines), self.chunk_size):
            chunk = lines[start:start + self.chunk_size]
            try:
                async with atomic(self.db, "import bank statement lines"):
                    self.db.add_all([
                        BankStatementLine(
                            reconciliation_id=reconciliation_id,
                            external_transaction_id=line.external_transaction_id,
                            transaction_date=line.transaction_date,
                            description=line.description,
                            amount=Decimal(str(line.amount)).quantize(Decimal("0.01")),
                            balance=line.balance,
                            match_status=MatchStatus.UNMATCHED,
                        )
                        for line in chunk
                    ])
                result.imported += len(chunk)
            except AppException as e:
                result.failed += len(lines) - start
                result.errors.append(
                    f"Lines {start + 1}-{start + len(chunk)}: {e.message}"
                )
                logger.error(
                    f"Bank line import into reconciliation {reconciliation_id} stopped "
                    f"after {result.imported} lines: {e.message}"
                )
                break

        logger.info(
            f"Imported {result.imported} bank lines into reconciliation {reconciliation_id}"
            + (f", {result.failed} failed" if result.failed else "")
        )
        return result

    async def import_statement(
        self,
        reconciliation_id: uuid.UUID,
        content: str,
        parser: BankStatementParser,
        actor_id: Optional[uuid.UUID],
        format_hint: Optional[str] = None,
    ) -> ImportResult:
        """Parse statement content and import the lines, carrying parse errors into the result."""
        parsed = parser.parse(content, format_hint)
        result = await self.import_lines(reconciliation_id, parsed.lines, actor_id)
        result.errors = list(parsed.errors) + result.errors
        return result


def get_statement_import_service(db: AsyncSession) -> StatementImportService:
    """Factory function for StatementImportService."""
    return StatementImportService(db)
