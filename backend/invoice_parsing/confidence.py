"""
Pluggable Confidence Scoring

Scorers turn heuristic evidence into a 0-1 confidence. Weights are plain
dataclasses so callers can tune them without touching the scoring code.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from difflib import SequenceMatcher

from invoice_parsing.models import LineItem, ParsedInvoice

# Heuristic scores never claim certainty
MAX_HEURISTIC_CONFIDENCE = 0.95

TOTALS_TOLERANCE = 0.50

STOP_WORDS = {"the", "and", "for", "with", "from", "inc", "ltd", "pty"}


class ConfidenceScorer(ABC):
    """Interface for heuristic confidence scorers"""

    cap: float = MAX_HEURISTIC_CONFIDENCE

    @abstractmethod
    def score(self, *args, **kwargs) -> float:
        """Return a confidence between 0 and ``cap``."""

    def _clamp(self, value: float) -> float:
        return round(min(max(value, 0.0), self.cap), 4)


# ============================================================================
# Extraction scoring (traditional parser)
# ============================================================================


@dataclass(frozen=True)
class ExtractionWeights:
    """Contribution of each extracted field to the extraction score"""

    invoice_number: float = 0.20
    date: float = 0.15
    vendor_name: float = 0.15
    total: float = 0.25
    description: float = 0.05
    line_items: float = 0.10
    consistency: float = 0.10
    inconsistency_penalty: float = 0.8


class ExtractionConfidenceScorer(ConfidenceScorer):
    """Scores a parsed invoice by field coverage and totals consistency."""

    def __init__(self, weights: ExtractionWeights | None = None):
        self.weights = weights or ExtractionWeights()

    def score(self, invoice: ParsedInvoice) -> float:
        w = self.weights
        score = 0.0

        if invoice.invoice_number:
            score += w.invoice_number
        if invoice.date:
            score += w.date
        if invoice.vendor_name:
            score += w.vendor_name
        if invoice.total is not None and invoice.total > 0:
            score += w.total
        if invoice.description:
            score += w.description
        if invoice.line_items:
            score += w.line_items

        consistent = totals_consistent(invoice)
        if consistent is True:
            score += w.consistency
        elif consistent is False:
            score *= w.inconsistency_penalty

        return self._clamp(score)


def totals_consistent(invoice: ParsedInvoice) -> bool | None:
    """Check amount + tax against total, or line items against amount/total.

    Returns None when there isn't enough data to tell.
    """
    if invoice.amount is not None and invoice.tax is not None and invoice.total is not None:
        return abs(invoice.total - (invoice.amount + invoice.tax)) <= TOTALS_TOLERANCE

    if invoice.line_items and (invoice.amount is not None or invoice.total is not None):
        items_total = sum(item.total for item in invoice.line_items)
        targets = [v for v in (invoice.amount, invoice.total) if v is not None]
        return any(abs(items_total - target) <= TOTALS_TOLERANCE for target in targets)

    return None


# ============================================================================
# Line item match scoring
# ============================================================================


@dataclass(frozen=True)
class MatchWeights:
    """Contribution of each signal to a line item match score"""

    description: float = 0.40
    keywords: float = 0.20
    price: float = 0.20
    quantity: float = 0.10
    category: float = 0.10


class LineItemMatchScorer(ConfidenceScorer):
    """Scores how well an invoice line item matches an estimate line item.

    Weighted sum of description similarity, keyword overlap, price ratio,
    quantity ratio and category match, capped at 0.95.
    """

    def __init__(self, weights: MatchWeights | None = None):
        self.weights = weights or MatchWeights()

    def score(self, invoice_item: LineItem, estimate_item: LineItem) -> float:
        return self._clamp(sum(self.breakdown(invoice_item, estimate_item).values()))

    def breakdown(self, invoice_item: LineItem, estimate_item: LineItem) -> dict[str, float]:
        """Weighted per-signal contributions, useful for match explanations"""
        w = self.weights
        return {
            "description": w.description * string_similarity(
                invoice_item.description, estimate_item.description
            ),
            "keywords": w.keywords * keyword_similarity(
                invoice_item.description, estimate_item.description
            ),
            "price": w.price * ratio_similarity(invoice_item.total, estimate_item.total),
            "quantity": w.quantity * ratio_similarity(
                invoice_item.quantity, estimate_item.quantity
            ),
            "category": w.category * category_similarity(
                invoice_item.category, estimate_item.category
            ),
        }


def normalize_text(text: str | None) -> str:
    text = (text or "").lower()
    text = re.sub(r"[^a-z0-9\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def string_similarity(a: str | None, b: str | None) -> float:
    a, b = normalize_text(a), normalize_text(b)
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def extract_keywords(text: str | None) -> set[str]:
    return {
        word
        for word in normalize_text(text).split()
        if len(word) > 2 and word not in STOP_WORDS
    }


def keyword_similarity(a: str | None, b: str | None) -> float:
    """Jaccard overlap of significant words"""
    words_a, words_b = extract_keywords(a), extract_keywords(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def ratio_similarity(a: float | None, b: float | None) -> float:
    """1 - relative difference; 0 when either side is missing or non-positive"""
    if a is None or b is None or a <= 0 or b <= 0:
        return 0.0
    return 1.0 - abs(a - b) / max(a, b)


def category_similarity(a: str | None, b: str | None) -> float:
    if not a or not b:
        return 0.0
    return 1.0 if a.strip().upper() == b.strip().upper() else 0.0
