"""
Line Item Matcher

Pairs each invoice line item with its most likely estimate line item.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from invoice_parsing.confidence import ConfidenceScorer, LineItemMatchScorer
from invoice_parsing.models import LineItem

EXACT_MATCH_THRESHOLD = 0.8
PARTIAL_MATCH_THRESHOLD = 0.5


@dataclass
class LineItemMatch:
    """Best estimate match for one invoice line item"""

    invoice_index: int
    invoice_item: LineItem
    estimate_index: Optional[int] = None
    estimate_item: Optional[LineItem] = None
    confidence: float = 0.0
    match_type: str = "none"  # exact, partial, conceptual, none
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoice_index": self.invoice_index,
            "invoice_description": self.invoice_item.description,
            "estimate_index": self.estimate_index,
            "estimate_description": self.estimate_item.description if self.estimate_item else None,
            "confidence": self.confidence,
            "match_type": self.match_type,
            "reasons": list(self.reasons),
        }


def classify_match(confidence: float) -> str:
    if confidence >= EXACT_MATCH_THRESHOLD:
        return "exact"
    if confidence >= PARTIAL_MATCH_THRESHOLD:
        return "partial"
    return "conceptual"


def line_item_from_dict(data: dict[str, Any]) -> LineItem:
    """Build a LineItem from a JSON payload

    Raises:
        ValueError: If the item is not an object, or description or total is missing
    """
    if not isinstance(data, dict):
        raise ValueError(f"Line item must be an object: {data!r}")

    description = data.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ValueError("Line item description is required")
    description = description.strip()
    if data.get("total") is None:
        raise ValueError(f"Line item total is required: {description}")

    category = data.get("category")
    if category is not None and not isinstance(category, str):
        raise ValueError(f"Line item category must be a string: {description}")

    return LineItem(
        description=description,
        total=_number(data["total"], "total", description),
        quantity=_number(data.get("quantity"), "quantity", description),
        unit_price=_number(data.get("unit_price", data.get("unitPrice")), "unit_price", description),
        category=category,
    )


def _number(value: Any, field_name: str, description: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Line item {field_name} must be a number: {description}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Line item {field_name} must be a number: {description}")


def match_line_items(
    invoice_items: list[LineItem],
    estimate_items: list[LineItem],
    scorer: Optional[ConfidenceScorer] = None,
    min_confidence: float = 0.3,
) -> list[LineItemMatch]:
    """
    Find the best estimate line item for each invoice line item.

    Matches below ``min_confidence`` are reported with match_type "none".
    Estimate items may be matched by more than one invoice item.

    Args:
        invoice_items: Line items parsed from the invoice
        estimate_items: Line items from the project estimate
        scorer: Match scorer (default: LineItemMatchScorer)
        min_confidence: Lowest confidence reported as a match

    Returns:
        One LineItemMatch per invoice item, in input order
    """
    scorer = scorer or LineItemMatchScorer()
    matches = []

    for invoice_index, invoice_item in enumerate(invoice_items):
        match = LineItemMatch(invoice_index=invoice_index, invoice_item=invoice_item)

        best_score = 0.0
        for estimate_index, estimate_item in enumerate(estimate_items):
            score = scorer.score(invoice_item, estimate_item)
            if score > best_score:
                best_score = score
                match.estimate_index = estimate_index
                match.estimate_item = estimate_item

        if match.estimate_item is None or best_score < min_confidence:
            match.estimate_index = None
            match.estimate_item = None
            match.confidence = best_score
            matches.append(match)
            continue

        match.confidence = best_score
        match.match_type = classify_match(best_score)
        if isinstance(scorer, LineItemMatchScorer):
            breakdown = scorer.breakdown(invoice_item, match.estimate_item)
            match.reasons = [
                f"{signal} similarity {value:.2f}"
                for signal, value in breakdown.items()
                if value > 0
            ]
        matches.append(match)

    return matches
