"""Tests for line item matching against estimates."""

import pytest

from invoice_parsing.confidence import (
    LineItemMatchScorer,
    MatchWeights,
    keyword_similarity,
    ratio_similarity,
    string_similarity,
)
from invoice_parsing.line_item_matcher import (
    classify_match,
    line_item_from_dict,
    match_line_items,
)
from invoice_parsing.models import LineItem

TIMBER = LineItem(description="Timber framing 90x45", total=250.0, quantity=10, category="MATERIAL")
TIMBER_ESTIMATE = LineItem(
    description="Timber framing 90x45mm", total=240.0, quantity=10, category="material"
)
CONCRETE_ESTIMATE = LineItem(description="Concrete pour", total=5000.0, quantity=1)

# ============================================================================
# SIMILARITY HELPERS
# ============================================================================


def test_string_similarity_ignores_case_and_punctuation():
    assert string_similarity("Labour - Day Rate", "labour day rate") == pytest.approx(1.0)
    assert string_similarity("", "anything") == 0.0


def test_keyword_similarity_skips_stop_words():
    assert keyword_similarity("Supply and install the gutters", "gutters install") == pytest.approx(
        2 / 3
    )


def test_ratio_similarity():
    assert ratio_similarity(100.0, 80.0) == pytest.approx(0.8)
    assert ratio_similarity(None, 80.0) == 0.0
    assert ratio_similarity(0.0, 80.0) == 0.0


# ============================================================================
# SCORING
# ============================================================================


def test_close_match_scores_high():
    score = LineItemMatchScorer().score(TIMBER, TIMBER_ESTIMATE)

    assert 0.8 <= score <= 0.95


def test_score_is_capped():
    scorer = LineItemMatchScorer(MatchWeights(description=1, keywords=1, price=1, quantity=1, category=1))

    assert scorer.score(TIMBER, TIMBER) == 0.95


@pytest.mark.parametrize(
    "confidence,expected",
    [(0.85, "exact"), (0.8, "exact"), (0.6, "partial"), (0.35, "conceptual")],
)
def test_classify_match(confidence, expected):
    assert classify_match(confidence) == expected


# ============================================================================
# MATCHING
# ============================================================================


def test_match_picks_best_estimate():
    matches = match_line_items([TIMBER], [CONCRETE_ESTIMATE, TIMBER_ESTIMATE])

    assert len(matches) == 1
    assert matches[0].estimate_index == 1
    assert matches[0].match_type == "exact"
    assert any(reason.startswith("description") for reason in matches[0].reasons)


def test_unrelated_item_reports_no_match():
    wiring = LineItem(description="Electrical wiring", total=50.0)

    matches = match_line_items([wiring], [CONCRETE_ESTIMATE])

    assert matches[0].match_type == "none"
    assert matches[0].estimate_item is None
    assert matches[0].to_dict()["estimate_description"] is None


def test_empty_estimate_list():
    matches = match_line_items([TIMBER], [])

    assert matches[0].match_type == "none"
    assert matches[0].confidence == 0.0


def test_one_match_per_invoice_item_in_order():
    labour = LineItem(description="Labour", total=520.0, quantity=8)

    matches = match_line_items([TIMBER, labour], [TIMBER_ESTIMATE])

    assert [m.invoice_index for m in matches] == [0, 1]


# ============================================================================
# PAYLOAD PARSING
# ============================================================================


def test_line_item_from_dict_accepts_camel_case_price():
    item = line_item_from_dict({"description": " Nails ", "total": "12.5", "unitPrice": 0.25, "quantity": 50})

    assert item == LineItem(description="Nails", total=12.5, quantity=50.0, unit_price=0.25)


@pytest.mark.parametrize("payload", [{"total": 10}, {"description": "Nails"}, {"description": "  ", "total": 1}])
def test_line_item_from_dict_requires_description_and_total(payload):
    with pytest.raises(ValueError):
        line_item_from_dict(payload)


@pytest.mark.parametrize(
    "payload",
    [
        "Nails",
        ["Nails", 10],
        {"description": 42, "total": 10},
        {"description": "Nails", "total": {"amount": 10}},
        {"description": "Nails", "total": "ten"},
        {"description": "Nails", "total": 10, "quantity": True},
        {"description": "Nails", "total": 10, "category": ["hardware"]},
    ],
)
def test_line_item_from_dict_rejects_malformed_items(payload):
    with pytest.raises(ValueError):
        line_item_from_dict(payload)
