"""Heuristic matching of extracted invoice data against ledger entries.

Score (0-100) is the sum of three banded components:
- Amount: up to 40 points
- Date: up to 30 points
- Vendor vs. entry concept: up to 30 points

Candidates scoring 20 or less are noise and never suggested. Equal scores are
ordered by ledger date (most recent first), then by entry id (highest first),
which is also the order candidates come back from the database.
"""

import datetime as dt
import logging
import re
import unicodedata

from pydantic import BaseModel

from invoice_ingest.db.models import LedgerEntry
from invoice_ingest.db.repository import LedgerEntryRepository

logger = logging.getLogger(__name__)

NOISE_FLOOR = 20
MIN_WORD_LENGTH = 3

# (max relative difference, points)
AMOUNT_BANDS: tuple[tuple[float, int], ...] = (
    (0.005, 40),
    (0.02, 38),
    (0.05, 34),
    (0.10, 28),
    (0.20, 20),
    (0.50, 8),
)

# (max difference in days, points)
DATE_BANDS: tuple[tuple[float, int], ...] = (
    (0.5, 30),
    (1.5, 27),
    (2.5, 24),
    (3.5, 20),
    (7, 15),
    (14, 8),
    (30, 3),
)

CONCEPT_MAX_SCORE = 30

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


class ScoreBreakdown(BaseModel):
    amount_score: int
    date_score: int
    concept_score: int


class CandidateProject(BaseModel):
    id: int
    name: str


class CandidateSnapshot(BaseModel):
    """Ledger entry fields shown next to a suggestion."""

    id: int
    date: dt.date
    amount: float
    concept: str
    has_invoice: bool
    project_id: int | None
    project: CandidateProject | None


class MatchSuggestion(BaseModel):
    ledger_entry_id: int
    score: int
    score_breakdown: ScoreBreakdown
    ledger_entry: CandidateSnapshot


def normalize_text(text: str) -> str:
    """Lowercase, strip diacritics, collapse non-alphanumerics to single spaces."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _NON_ALPHANUMERIC.sub(" ", stripped).strip()


def score_amount(invoice_amount: float | None, entry_amount: float | None) -> int:
    """Score how close two amounts are, ignoring sign (0-40)."""
    if invoice_amount is None or entry_amount is None:
        return 0

    expected = abs(invoice_amount)
    actual = abs(entry_amount)
    if expected == 0 or actual == 0:
        return 0

    relative_difference = abs(actual - expected) / expected
    for limit, points in AMOUNT_BANDS:
        if relative_difference <= limit:
            return points
    return 0


def score_date(invoice_date: dt.date | None, entry_date: dt.date | None) -> int:
    """Score how many days apart the invoice and the entry are (0-30)."""
    if invoice_date is None or entry_date is None:
        return 0

    days_apart = abs((entry_date - invoice_date).days)
    for limit, points in DATE_BANDS:
        if days_apart <= limit:
            return points
    return 0


def _significant_words(text: str) -> set[str]:
    return {word for word in text.split() if len(word) >= MIN_WORD_LENGTH}


def score_concept(vendor: str | None, concept: str | None) -> int:
    """Score textual overlap between the vendor and the entry concept (0-30).

    A substring match in either direction scores the maximum. Otherwise the
    Jaccard similarity of words longer than two characters is scaled to 30.
    """
    if not vendor or not concept:
        return 0

    normalized_vendor = normalize_text(vendor)
    normalized_concept = normalize_text(concept)
    if not normalized_vendor or not normalized_concept:
        return 0

    if normalized_vendor in normalized_concept or normalized_concept in normalized_vendor:
        return CONCEPT_MAX_SCORE

    vendor_words = _significant_words(normalized_vendor)
    concept_words = _significant_words(normalized_concept)
    shared = vendor_words & concept_words
    if not shared:
        return 0

    jaccard = len(shared) / len(vendor_words | concept_words)
    return round(jaccard * CONCEPT_MAX_SCORE)


def _snapshot(entry: LedgerEntry) -> CandidateSnapshot:
    project = entry.project
    return CandidateSnapshot(
        id=entry.id,
        date=entry.date,
        amount=entry.amount,
        concept=entry.concept,
        has_invoice=entry.has_invoice,
        project_id=entry.project_id,
        project=CandidateProject(id=project.id, name=project.name) if project else None,
    )


def rank_candidates(
    candidates: list[LedgerEntry],
    amount: float | None,
    invoice_date: dt.date | None,
    vendor: str | None,
    limit: int,
) -> list[MatchSuggestion]:
    """Score, filter and order candidates.

    ``candidates`` must already be in tie-break order; sorting is stable.
    """
    suggestions: list[MatchSuggestion] = []
    for entry in candidates:
        breakdown = ScoreBreakdown(
            amount_score=score_amount(amount, entry.amount),
            date_score=score_date(invoice_date, entry.date),
            concept_score=score_concept(vendor, entry.concept),
        )
        total = breakdown.amount_score + breakdown.date_score + breakdown.concept_score
        if total <= NOISE_FLOOR:
            continue
        suggestions.append(
            MatchSuggestion(
                ledger_entry_id=entry.id,
                score=total,
                score_breakdown=breakdown,
                ledger_entry=_snapshot(entry),
            )
        )

    suggestions.sort(key=lambda suggestion: suggestion.score, reverse=True)
    return suggestions[:limit]


class MatchScorer:
    """Ranks ledger entries that could correspond to an invoice."""

    def __init__(self, ledger: LedgerEntryRepository, candidate_limit: int = 200) -> None:
        self.ledger = ledger
        self.candidate_limit = candidate_limit

    def find_matches(
        self,
        amount: float | None,
        invoice_date: dt.date | None,
        vendor: str | None,
        limit: int = 5,
    ) -> list[MatchSuggestion]:
        """Return up to ``limit`` suggestions, best first.

        Args:
            amount: Extracted invoice amount
            invoice_date: Extracted issue date
            vendor: Extracted vendor name
            limit: Maximum suggestions

        Returns:
            Ranked suggestions; empty when both amount and date are unknown
        """
        if amount is None and invoice_date is None:
            return []

        candidates = self.ledger.find_match_candidates(
            amount, invoice_date, limit=self.candidate_limit
        )
        suggestions = rank_candidates(candidates, amount, invoice_date, vendor, limit)
        logger.debug(
            f"Scored {len(candidates)} candidates, {len(suggestions)} above the noise floor"
        )
        return suggestions
