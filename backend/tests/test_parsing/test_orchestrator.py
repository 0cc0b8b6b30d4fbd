"""Tests for the parsing orchestrator's fallback walk.

Covers:
- Acceptance short-circuit and fallback through failed providers
- Cost guard skips (document and daily limits)
- Fallback disabled, cancellation and timeouts
- Fatal provider exceptions and best-effort selection
- Review status and cost estimation
"""

import json
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from config.parsing_config import ParsingThresholds
from conftest import FakeAdapter, make_config, make_result
from invoice_parsing.cancellation import CancellationToken
from invoice_parsing.errors import (
    ConfigurationError,
    FatalProviderError,
    ParsingCancelledError,
)
from invoice_parsing.models import ParseOptions
from invoice_parsing.orchestrator import (
    REVIEW_AUTO_APPROVED,
    REVIEW_MANUAL_ENTRY,
    REVIEW_NEEDS_CORRECTION,
    REVIEW_NEEDS_REVIEW,
    ParsingOrchestrator,
)

TEXT = "Invoice Number: INV-1\nTotal: $100.00"
ALL_LLMS = ("anthropic", "gemini", "openai")


def failed(provider_id, cost=0.0):
    return make_result(provider_id, success=False, confidence=0.0, cost=cost, error="boom")


def build(*fakes, enabled=ALL_LLMS, **config_overrides):
    """Orchestrator over llm-primary with the given fake adapters."""
    adapters = {fake.provider_id: fake for fake in fakes}
    for provider_id in (*enabled, "traditional"):
        if provider_id not in adapters:
            adapters[provider_id] = FakeAdapter(provider_id, result=failed(provider_id))
    config = make_config(enabled=enabled, **config_overrides)
    return ParsingOrchestrator(config, adapters=adapters), adapters


# ============================================================================
# ACCEPTANCE AND FALLBACK
# ============================================================================


def test_first_accepted_result_short_circuits():
    anthropic = FakeAdapter("anthropic", result=make_result("anthropic", confidence=0.9))
    gemini = FakeAdapter("gemini")
    orchestrator, _ = build(anthropic, gemini, FakeAdapter("openai"))

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.success is True
    assert outcome.best_effort is False
    assert len(outcome.attempts) == 1
    assert gemini.calls == 0
    assert outcome.best_result.invoice_number == "anthropic-1"
    assert outcome.metadata.fallback_triggered is False


def test_falls_back_until_a_provider_succeeds():
    openai = FakeAdapter("openai", result=make_result("openai", confidence=0.9))
    orchestrator, adapters = build(
        FakeAdapter("anthropic", result=failed("anthropic")),
        FakeAdapter("gemini", result=failed("gemini")),
        openai,
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.success is True
    assert [a.provider_id for a in outcome.attempts] == ["anthropic", "gemini", "openai"]
    assert outcome.strategy == "llm-primary"
    assert outcome.best_result.invoice_number == "openai-1"
    assert outcome.metadata.fallback_triggered is True
    assert outcome.metadata.llm_used is True
    assert outcome.metadata.traditional_used is False
    assert adapters["traditional"].calls == 0


def test_all_providers_failing_returns_failure():
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=failed("anthropic")),
        FakeAdapter("gemini", result=failed("gemini")),
        FakeAdapter("openai", result=failed("openai")),
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.success is False
    assert len(outcome.attempts) == 4
    assert outcome.best_result is None
    assert outcome.error == "No provider produced a usable result"
    assert outcome.review_status == REVIEW_MANUAL_ENTRY


def test_total_cost_is_sum_of_attempt_costs():
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=failed("anthropic", cost=0.01)),
        FakeAdapter("gemini", result=failed("gemini", cost=0.02)),
        FakeAdapter("openai", result=make_result("openai", confidence=0.9, cost=0.03)),
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.total_cost == pytest.approx(0.06)
    assert outcome.total_cost == pytest.approx(sum(a.cost for a in outcome.attempts))
    assert outcome.to_dict()["total_cost"] == pytest.approx(0.06)


def test_hybrid_chain_tries_traditional_second():
    traditional = FakeAdapter("traditional", result=make_result("traditional", confidence=0.9))
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=failed("anthropic")),
        traditional,
        enabled=("anthropic",),
        default_strategy="hybrid",
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.success is True
    assert outcome.strategy == "hybrid"
    assert outcome.metadata.llm_used is True
    assert outcome.metadata.traditional_used is True


def test_strategy_override_from_options():
    traditional = FakeAdapter("traditional", result=make_result("traditional", confidence=0.9))
    anthropic = FakeAdapter("anthropic")
    orchestrator, _ = build(anthropic, traditional, enabled=("anthropic",))

    outcome = orchestrator.parse_invoice(
        TEXT, options=ParseOptions(strategy_override="traditional-primary")
    )

    assert outcome.strategy == "traditional-primary"
    assert anthropic.calls == 0


def test_fallback_disabled_stops_after_first_attempt():
    gemini = FakeAdapter("gemini")
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=failed("anthropic")),
        gemini,
        FakeAdapter("openai"),
        enable_fallback=False,
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert len(outcome.attempts) == 1
    assert gemini.calls == 0
    assert outcome.success is False


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================


def test_unknown_strategy_raises_before_any_call():
    anthropic = FakeAdapter("anthropic")
    orchestrator, _ = build(anthropic, enabled=("anthropic",))

    with pytest.raises(ConfigurationError):
        orchestrator.parse_invoice(TEXT, options=ParseOptions(strategy_override="fastest"))

    assert anthropic.calls == 0


def test_chain_with_missing_adapter_raises():
    config = make_config(enabled=("anthropic",))
    orchestrator = ParsingOrchestrator(
        config, adapters={"traditional": FakeAdapter("traditional")}
    )

    with pytest.raises(ConfigurationError, match="anthropic"):
        orchestrator.parse_invoice(TEXT)


@pytest.mark.parametrize("text,page_count", [("", 1), ("   ", 1), (TEXT, 0)])
def test_invalid_input_rejected(text, page_count):
    orchestrator, _ = build(FakeAdapter("anthropic"), enabled=("anthropic",))

    with pytest.raises(ValueError):
        orchestrator.parse_invoice(text, page_count=page_count)


# ============================================================================
# COST GUARD
# ============================================================================


def test_budget_skip_is_not_an_attempt_and_cap_holds():
    gemini = FakeAdapter("gemini", estimate=0.05)
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=failed("anthropic", cost=0.08), estimate=0.08),
        gemini,
        FakeAdapter("openai", result=make_result("openai", confidence=0.9, cost=0.01), estimate=0.01),
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert [a.provider_id for a in outcome.attempts] == ["anthropic", "openai"]
    assert gemini.calls == 0
    assert outcome.skipped[0]["provider_id"] == "gemini"
    assert "Document cost limit" in outcome.skipped[0]["reason"]
    assert outcome.total_cost <= 0.10
    assert outcome.success is True


def test_daily_limit_skips_llms_but_traditional_still_runs():
    traditional = FakeAdapter("traditional", result=make_result("traditional", confidence=0.9))
    orchestrator, _ = build(
        FakeAdapter("anthropic", estimate=0.05),
        FakeAdapter("gemini", estimate=0.05),
        FakeAdapter("openai", estimate=0.05),
        traditional,
        daily_cost_limit=10.0,
    )

    outcome = orchestrator.parse_invoice(TEXT, accumulated_daily_cost=9.99)

    assert len(outcome.skipped) == 3
    assert [a.provider_id for a in outcome.attempts] == ["traditional"]
    assert outcome.success is True
    assert outcome.metadata.llm_used is False
    assert outcome.metadata.traditional_used is True


def test_everything_skipped_when_daily_limit_already_spent():
    orchestrator, adapters = build(FakeAdapter("anthropic", estimate=0.01), enabled=("anthropic",))

    outcome = orchestrator.parse_invoice(TEXT, accumulated_daily_cost=10.5)

    assert outcome.attempts == []
    assert adapters["traditional"].calls == 0
    assert outcome.success is False
    assert outcome.error == "All providers were skipped by the cost guard"


def test_fallback_disabled_stops_after_skip():
    gemini = FakeAdapter("gemini")
    orchestrator, _ = build(
        FakeAdapter("anthropic", estimate=5.0),
        gemini,
        FakeAdapter("openai"),
        enable_fallback=False,
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.attempts == []
    assert len(outcome.skipped) == 1
    assert gemini.calls == 0


# ============================================================================
# CANCELLATION
# ============================================================================


def test_cancelled_before_walk_makes_no_attempts():
    anthropic = FakeAdapter("anthropic")
    orchestrator, _ = build(anthropic)
    token = CancellationToken()
    token.cancel()

    outcome = orchestrator.parse_invoice(TEXT, cancellation=token)

    assert outcome.cancelled is True
    assert outcome.attempts == []
    assert anthropic.calls == 0
    assert outcome.success is False
    assert outcome.error == "Parsing cancelled"


def test_cancel_during_attempt_stops_the_walk():
    gemini = FakeAdapter("gemini")
    anthropic = FakeAdapter(
        "anthropic",
        result=make_result("anthropic", confidence=0.6),
        on_parse=lambda token: token.cancel(),
    )
    orchestrator, _ = build(anthropic, gemini, FakeAdapter("openai"))

    outcome = orchestrator.parse_invoice(TEXT, cancellation=CancellationToken())

    assert outcome.cancelled is True
    assert len(outcome.attempts) == 1
    assert gemini.calls == 0
    assert outcome.best_result is None
    assert outcome.success is False


def test_cancelled_provider_call_is_not_recorded():
    orchestrator, _ = build(
        FakeAdapter("anthropic", raises=ParsingCancelledError("closed", provider_id="anthropic")),
        FakeAdapter("gemini"),
        FakeAdapter("openai"),
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.cancelled is True
    assert outcome.attempts == []


def test_timeout_cancels_remaining_chain():
    gemini = FakeAdapter("gemini")
    anthropic = FakeAdapter(
        "anthropic",
        result=failed("anthropic"),
        on_parse=lambda token: time.sleep(0.3),
    )
    orchestrator, _ = build(anthropic, gemini, FakeAdapter("openai"))

    outcome = orchestrator.parse_invoice(TEXT, options=ParseOptions(timeout_seconds=0.05))

    assert outcome.cancelled is True
    assert len(outcome.attempts) == 1
    assert gemini.calls == 0


# ============================================================================
# FATAL ERRORS AND BEST EFFORT
# ============================================================================


def test_unexpected_exception_is_reported_not_raised():
    gemini = FakeAdapter("gemini")
    orchestrator, _ = build(FakeAdapter("anthropic", raises=RuntimeError("boom")), gemini)

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.success is False
    assert outcome.error == "Unexpected error from anthropic: boom"
    assert outcome.attempts == []
    assert gemini.calls == 0


def test_fatal_error_keeps_best_effort_from_earlier_attempts():
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=failed("anthropic")),
        FakeAdapter("gemini", result=make_result("gemini", confidence=0.6)),
        FakeAdapter("openai", raises=KeyError("candidates")),
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.success is True
    assert outcome.best_effort is True
    assert outcome.best_result.invoice_number == "gemini-1"
    assert "openai" in outcome.error


def test_fatal_error_after_billed_call_records_cost():
    gemini = FakeAdapter("gemini")
    fatal = FatalProviderError(
        "Unexpected error from anthropic: 'lineItems'",
        provider_id="anthropic",
        cost=0.03,
    )
    orchestrator, _ = build(FakeAdapter("anthropic", raises=fatal), gemini)

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.success is False
    assert outcome.error == fatal.message
    assert len(outcome.attempts) == 1
    attempt = outcome.attempts[0]
    assert attempt.success is False
    assert attempt.cost == pytest.approx(0.03)
    assert attempt.error_type == "unknown"
    assert outcome.total_cost == pytest.approx(0.03)
    assert gemini.calls == 0


def test_best_effort_prefers_highest_confidence():
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=make_result("anthropic", confidence=0.55)),
        FakeAdapter("gemini", result=make_result("gemini", confidence=0.7)),
        FakeAdapter("openai", result=make_result("openai", confidence=0.6)),
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.best_effort is True
    assert outcome.confidence == 0.7
    assert outcome.best_result.invoice_number == "gemini-1"


def test_best_effort_ties_go_to_earliest_provider():
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=make_result("anthropic", confidence=0.6)),
        FakeAdapter("gemini", result=make_result("gemini", confidence=0.6)),
        FakeAdapter("openai", result=make_result("openai", confidence=0.6)),
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.success is True
    assert outcome.best_effort is True
    assert outcome.best_result.invoice_number == "anthropic-1"
    assert outcome.review_status == REVIEW_NEEDS_CORRECTION


def test_results_below_usable_floor_are_not_best_effort():
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=make_result("anthropic", confidence=0.4)),
        FakeAdapter("gemini", result=make_result("gemini", confidence=0.3)),
        FakeAdapter("openai", result=failed("openai")),
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.success is False
    assert outcome.best_result is None


def test_acceptance_override_applies_to_every_strategy():
    gemini = FakeAdapter("gemini")
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=make_result("anthropic", confidence=0.6)),
        gemini,
        thresholds=ParsingThresholds(acceptance_override=0.5),
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.best_effort is False
    assert gemini.calls == 0


# ============================================================================
# REVIEW STATUS
# ============================================================================


@pytest.mark.parametrize(
    "confidence,expected",
    [(0.97, REVIEW_AUTO_APPROVED), (0.85, REVIEW_NEEDS_REVIEW)],
)
def test_review_status_from_confidence(confidence, expected):
    orchestrator, _ = build(
        FakeAdapter("anthropic", result=make_result("anthropic", confidence=confidence)),
        enabled=("anthropic",),
    )

    outcome = orchestrator.parse_invoice(TEXT)

    assert outcome.review_status == expected


# ============================================================================
# REAL ADAPTERS
# ============================================================================


def test_traditional_only_configuration(sample_invoice_text):
    orchestrator = ParsingOrchestrator(make_config())

    outcome = orchestrator.parse_invoice(sample_invoice_text)

    assert list(orchestrator.adapters) == ["traditional"]
    assert outcome.success is True
    assert outcome.total_cost == 0.0
    assert outcome.best_result.total == 885.5
    assert outcome.review_status == REVIEW_AUTO_APPROVED
    json.dumps(outcome.to_dict())


def test_orchestrator_serves_concurrent_parses(sample_invoice_text):
    orchestrator = ParsingOrchestrator(make_config())

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(lambda _: orchestrator.parse_invoice(sample_invoice_text), range(8)))

    assert all(o.success for o in outcomes)
    assert all(len(o.attempts) == 1 for o in outcomes)


# ============================================================================
# ESTIMATES
# ============================================================================


def test_estimate_cost_for_chain():
    orchestrator, _ = build(
        FakeAdapter("anthropic", estimate=0.02),
        FakeAdapter("gemini", estimate=0.03),
        FakeAdapter("openai", estimate=0.01),
    )

    estimate = orchestrator.estimate_cost(TEXT)

    assert estimate["strategy"] == "llm-primary"
    assert [p["provider_id"] for p in estimate["providers"]] == [
        "anthropic",
        "gemini",
        "openai",
        "traditional",
    ]
    assert estimate["first_attempt_cost"] == 0.02
    assert estimate["worst_case_cost"] == pytest.approx(0.06)
    assert estimate["document_limit"] == 0.10
    assert estimate["within_limit"] is True


def test_estimate_cost_uses_strategy_limit():
    orchestrator, _ = build(
        FakeAdapter("anthropic", estimate=0.02),
        FakeAdapter("gemini", estimate=0.03),
        FakeAdapter("openai", estimate=0.01),
    )

    estimate = orchestrator.estimate_cost(TEXT, "cost-optimized")

    assert estimate["providers"][0]["provider_id"] == "traditional"
    assert estimate["document_limit"] == 0.01
    assert estimate["within_limit"] is False


def test_available_strategies_flags_default():
    orchestrator, _ = build(FakeAdapter("anthropic"), enabled=("anthropic",))

    strategies = orchestrator.available_strategies()

    defaults = [s["name"] for s in strategies if s["is_default"]]
    assert defaults == ["llm-primary"]
