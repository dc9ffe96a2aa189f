"""
FieldLedger - Auto-Match Engine

Proposes 1:1 pairings between unmatched bank statement lines and uncleared
ledger postings, and applies matches chosen by the user.

Scoring (0-100):
- Amount: required. |line amount - posting net amount| <= 0.01 earns 40
- Date: 30 points, minus a decay per day between the two dates
- Description: up to 30 points by text similarity

Suggestion generation is read-only; match / unmatch / apply-all mutate.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from difflib import SequenceMatcher
from typing import List, Optional, Protocol, Sequence, Set
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fieldledger.config import settings
from fieldledger.database import atomic
from fieldledger.models.base import utcnow
from fieldledger.models.bank_reconciliation import (
    BankStatementLine,
    MatchConfidenceLevel,
    MatchStatus,
    ReconciliationStatus,
)
from fieldledger.services.bank_reconciliation_service import BankReconciliationService
from fieldledger.services.ledger_provider import PostingRecord
from fieldledger.utils.error_handling import (
    AppException,
    ConflictException,
    ErrorCode,
    NotFoundException,
    require_actor,
)

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = Decimal("0.01")
AMOUNT_POINTS = Decimal("40")
DATE_POINTS = Decimal("30")
DESCRIPTION_POINTS = Decimal("30")

_NON_WORD = re.compile(r"[^a-z0-9]+")


@dataclass
class MatchingConfig:
    """Configuration for the matching engine."""

    high_threshold: Decimal = Decimal("85")
    medium_threshold: Decimal = Decimal("65")
    date_points_per_day: Decimal = Decimal("5")
    grace_days: int = 0

    @classmethod
    def from_settings(cls) -> "MatchingConfig":
        return cls(
            high_threshold=Decimal(str(settings.auto_match_high_threshold)),
            medium_threshold=Decimal(str(settings.auto_match_medium_threshold)),
            date_points_per_day=Decimal(str(settings.auto_match_date_points_per_day)),
            grace_days=settings.auto_match_grace_days,
        )


@dataclass
class MatchSuggestion:
    """A proposed pairing of one bank line with one posting."""

    bank_line_id: UUID
    posting_id: UUID
    score: Decimal
    confidence: MatchConfidenceLevel
    days_apart: int

    # Evidence for display
    bank_line_date: Optional[date] = None
    bank_line_description: Optional[str] = None
    amount: Optional[Decimal] = None
    posting_date: Optional[date] = None
    posting_description: Optional[str] = None
    entry_number: Optional[str] = None


class SuggestionRef(Protocol):
    """Anything naming a bank line and a posting to match."""
    bank_line_id: UUID
    posting_id: UUID


@dataclass
class ApplyResult:
    """Outcome of applying a batch of suggestions."""

    matched: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


# ===========================================
# SCORING
# ===========================================

def normalize_description(text: Optional[str]) -> str:
    return " ".join(_NON_WORD.split((text or "").lower())).strip()


def description_similarity(a: Optional[str], b: Optional[str]) -> Decimal:
    """
    Similarity of two descriptions in [0, 1].

    The larger of the token overlap (Jaccard) ratio and the character
    sequence ratio, so both reordered words and abbreviations score.
    """
    left = normalize_description(a)
    right = normalize_description(b)
    if not left or not right:
        return Decimal("0")

    left_tokens = set(left.split())
    right_tokens = set(right.split())
    jaccard = len(left_tokens & right_tokens) / len(left_tokens | right_tokens)
    sequence = SequenceMatcher(None, left, right).ratio()
    return Decimal(str(round(max(jaccard, sequence), 4)))


def score_match(
    line_amount: Decimal,
    line_date: date,
    line_description: Optional[str],
    posting_amount: Decimal,
    posting_date: date,
    posting_description: Optional[str],
    config: Optional[MatchingConfig] = None,
) -> Optional[Decimal]:
    """
    Score a bank line against a posting, or None when the amounts differ.
    """
    config = config or MatchingConfig()
    if abs(Decimal(line_amount) - Decimal(posting_amount)) > AMOUNT_TOLERANCE:
        return None

    days_apart = abs((line_date - posting_date).days)
    date_points = max(Decimal("0"), DATE_POINTS - config.date_points_per_day * days_apart)
    description_points = DESCRIPTION_POINTS * description_similarity(line_description, posting_description)

    score = AMOUNT_POINTS + date_points + description_points
    return score.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def confidence_tier(score: Decimal, config: Optional[MatchingConfig] = None) -> MatchConfidenceLevel:
    config = config or MatchingConfig()
    if score >= config.high_threshold:
        return MatchConfidenceLevel.HIGH
    if score >= config.medium_threshold:
        return MatchConfidenceLevel.MEDIUM
    return MatchConfidenceLevel.LOW


def suggest_matches(
    lines: Sequence[BankStatementLine],
    postings: Sequence[PostingRecord],
    config: Optional[MatchingConfig] = None,
) -> List[MatchSuggestion]:
    """
    Greedy highest-score-first assignment of lines to postings.

    Every candidate pair is scored; pairs are taken in order of score
    (desc), days apart, line date and ids, skipping any pair whose line or
    posting has already been taken. Each line and each posting appears in at
    most one suggestion.
    """
    config = config or MatchingConfig()
    candidates: List[MatchSuggestion] = []

    for line in lines:
        for posting in postings:
            score = score_match(
                line.amount, line.transaction_date, line.description,
                posting.net_amount, posting.entry_date, posting.description,
                config,
            )
            if score is None:
                continue
            candidates.append(MatchSuggestion(
                bank_line_id=line.id,
                posting_id=posting.posting_id,
                score=score,
                confidence=confidence_tier(score, config),
                days_apart=abs((line.transaction_date - posting.entry_date).days),
                bank_line_date=line.transaction_date,
                bank_line_description=line.description,
                amount=line.amount,
                posting_date=posting.entry_date,
                posting_description=posting.description,
                entry_number=posting.entry_number,
            ))

    candidates.sort(key=lambda c: (
        -c.score, c.days_apart, c.bank_line_date, str(c.bank_line_id), str(c.posting_id),
    ))

    suggestions: List[MatchSuggestion] = []
    taken_lines: Set[UUID] = set()
    taken_postings: Set[UUID] = set()
    for candidate in candidates:
        if candidate.bank_line_id in taken_lines or candidate.posting_id in taken_postings:
            continue
        taken_lines.add(candidate.bank_line_id)
        taken_postings.add(candidate.posting_id)
        suggestions.append(candidate)

    return suggestions


# ===========================================
# ENGINE
# ===========================================

class MatchingEngine:
    """Generates auto-match suggestions and applies matches."""

    def __init__(self, db: AsyncSession, config: Optional[MatchingConfig] = None):
        self.db = db
        self.config = config or MatchingConfig.from_settings()
        self.reconciliations = BankReconciliationService(db)

    async def get_suggestions(self, reconciliation_id: UUID) -> List[MatchSuggestion]:
        """Advisory suggestions for a reconciliation's unmatched lines. No side effects."""
        reconciliation = await self.reconciliations.get_reconciliation(reconciliation_id)

        result = await self.db.execute(
            select(BankStatementLine)
            .where(
                BankStatementLine.reconciliation_id == reconciliation.id,
                BankStatementLine.match_status == MatchStatus.UNMATCHED,
            )
            .order_by(BankStatementLine.transaction_date)
        )
        lines = list(result.scalars().all())
        if not lines:
            return []

        cutoff = reconciliation.statement_end_date + timedelta(days=self.config.grace_days)
        postings = await self.reconciliations.ledger.unreconciled_postings(
            reconciliation.account_id, cutoff,
        )

        suggestions = suggest_matches(lines, postings, self.config)
        logger.info(
            f"Auto-match for reconciliation {reconciliation.id}: "
            f"{len(suggestions)} suggestions from {len(lines)} lines and {len(postings)} postings"
        )
        return suggestions

    async def _get_line(self, line_id: UUID, for_update: bool = False) -> BankStatementLine:
        query = select(BankStatementLine).where(BankStatementLine.id == line_id)
        if for_update:
            query = query.with_for_update(of=BankStatementLine).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        line = result.scalar_one_or_none()
        if line is None:
            raise NotFoundException(
                "Bank statement line", line_id, code=ErrorCode.BANK_LINE_NOT_FOUND,
            )
        return line

    async def match(
        self,
        bank_line_id: UUID,
        posting_id: UUID,
        actor_id: Optional[UUID],
        is_auto: bool = False,
    ) -> BankStatementLine:
        """
        Match a bank line to a posting and clear the posting under the
        line's reconciliation, in one transaction.
        """
        actor_id = require_actor(actor_id)

        async with atomic(self.db, "match bank line"):
            line = await self._get_line(bank_line_id)
            reconciliation = await self.reconciliations.get_reconciliation(
                line.reconciliation_id, for_update=True,
            )
            # Lock order everywhere: reconciliation, bank line, posting
            line = await self._get_line(bank_line_id, for_update=True)
            self.reconciliations.require_status(
                reconciliation, ReconciliationStatus.IN_PROGRESS, "match lines on",
            )

            if line.is_matched:
                raise ConflictException(
                    "Bank line is already matched",
                    resource_type="BankStatementLine",
                    code=ErrorCode.ALREADY_MATCHED,
                    details={"matched_posting_id": line.matched_posting_id},
                )

            posting = await self.reconciliations.get_posting(posting_id, for_update=True)
            self.reconciliations.require_posting_on_account(reconciliation, posting)
            if posting.reconciliation_id is not None:
                raise ConflictException(
                    "Posting is already cleared",
                    resource_type="LedgerPosting",
                    code=ErrorCode.ALREADY_CLEARED,
                    details={"reconciliation_id": posting.reconciliation_id},
                )

            line.matched_posting_id = posting.id
            line.match_status = MatchStatus.AUTO_MATCHED if is_auto else MatchStatus.MANUALLY_MATCHED
            line.matched_at = utcnow()
            line.matched_by_id = actor_id
            self.reconciliations.mark_cleared(posting, reconciliation.id, actor_id)

            await self.reconciliations.rederive_balances(reconciliation)

        logger.debug(f"Matched bank line {line.id} to posting {posting.id} (auto={is_auto})")
        return line

    async def unmatch(self, bank_line_id: UUID, actor_id: Optional[UUID]) -> BankStatementLine:
        """Reset a bank line to unmatched and unclear its posting."""
        require_actor(actor_id)

        async with atomic(self.db, "unmatch bank line"):
            line = await self._get_line(bank_line_id)
            reconciliation = await self.reconciliations.get_reconciliation(
                line.reconciliation_id, for_update=True,
            )
            line = await self._get_line(bank_line_id, for_update=True)
            self.reconciliations.require_status(
                reconciliation, ReconciliationStatus.IN_PROGRESS, "unmatch lines on",
            )

            if line.matched_posting_id is not None:
                posting = await self.reconciliations.get_posting(line.matched_posting_id, for_update=True)
                if posting.reconciliation_id == reconciliation.id:
                    self.reconciliations.mark_uncleared(posting)

            line.matched_posting_id = None
            line.match_status = MatchStatus.UNMATCHED
            line.matched_at = None
            line.matched_by_id = None

            await self.reconciliations.rederive_balances(reconciliation)

        logger.debug(f"Unmatched bank line {line.id}")
        return line

    async def apply_all(
        self,
        suggestions: Sequence[SuggestionRef],
        actor_id: Optional[UUID],
    ) -> ApplyResult:
        """
        Apply suggestions as auto matches, each in its own transaction.

        A failing suggestion is recorded and does not undo the others.
        """
        require_actor(actor_id)
        outcome = ApplyResult()

        for suggestion in suggestions:
            try:
                await self.match(
                    suggestion.bank_line_id, suggestion.posting_id, actor_id, is_auto=True,
                )
                outcome.matched += 1
            except AppException as e:
                outcome.failed += 1
                outcome.errors.append(f"Bank line {suggestion.bank_line_id}: {e.message}")
                logger.warning(f"Auto-match failed for bank line {suggestion.bank_line_id}: {e.message}")

        logger.info(f"Applied auto-match: {outcome.matched} matched, {outcome.failed} failed")
        return outcome


def get_matching_engine(db: AsyncSession) -> MatchingEngine:
    """Factory function for MatchingEngine."""
    return MatchingEngine(db)
