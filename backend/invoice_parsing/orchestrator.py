"""
Parsing Orchestrator

Walks a strategy's fallback chain one provider at a time. Before each
attempt the cost guard checks the provider's estimated cost against the
document and daily budgets; the walk stops at the first result whose
confidence clears the strategy's acceptance threshold.

Usage:
    config = load_parsing_config(stored_settings)
    orchestrator = ParsingOrchestrator(config)
    outcome = orchestrator.parse_invoice(text, page_count=2)
"""

import time
from typing import Any, Optional

from config.parsing_config import ParsingConfig
from invoice_parsing.adapters import ProviderAdapter, build_adapters, validate_parse_input
from invoice_parsing.cancellation import CancellationToken
from invoice_parsing.cost_guard import document_limit, ensure_budget
from invoice_parsing.errors import (
    BudgetExceededError,
    ConfigurationError,
    FatalProviderError,
    ParsingCancelledError,
)
from invoice_parsing.logging_config import get_logger
from invoice_parsing.models import ParseAttemptResult, ParseOptions, ParsingOutcome
from invoice_parsing.strategies import StrategyRegistry

logger = get_logger(__name__)

REVIEW_AUTO_APPROVED = "auto_approved"
REVIEW_NEEDS_REVIEW = "needs_review"
REVIEW_NEEDS_CORRECTION = "needs_correction"
REVIEW_MANUAL_ENTRY = "manual_entry"


class ParsingOrchestrator:
    """Runs one user's parsing strategies against their configured providers.

    Holds only immutable configuration and stateless adapters, so a single
    instance can serve concurrent parse calls.
    """

    def __init__(
        self,
        config: ParsingConfig,
        adapters: Optional[dict[str, ProviderAdapter]] = None,
        registry: Optional[StrategyRegistry] = None,
    ):
        self.config = config
        self.adapters = adapters if adapters is not None else build_adapters(config)
        self.registry = registry or StrategyRegistry.from_config(config)

    # ========================================================================
    # Parsing
    # ========================================================================

    def parse_invoice(
        self,
        text: str,
        page_count: int = 1,
        options: Optional[ParseOptions] = None,
        accumulated_daily_cost: float = 0.0,
        cancellation: Optional[CancellationToken] = None,
    ) -> ParsingOutcome:
        """
        Parse invoice text by walking the selected strategy's fallback chain.

        Args:
            text: Extracted invoice text (non-empty)
            page_count: Number of pages the text came from (>= 1)
            options: Strategy override and prompt hints
            accumulated_daily_cost: The user's spend so far today
            cancellation: Token the caller can use to abort the walk

        Returns:
            ParsingOutcome; provider failures never raise

        Raises:
            ValueError: If text is empty or page_count < 1
            ConfigurationError: If the strategy is unknown or its chain
                references a provider with no adapter
        """
        start_time = time.time()
        options = options or ParseOptions()
        validate_parse_input(text, page_count)

        strategy_name = options.strategy_override or self.config.default_strategy
        strategy, chain = self._resolve_chain(strategy_name)
        threshold = self.registry.acceptance_threshold(strategy, self.config.thresholds)

        log_extra = {"strategy": strategy_name, "document_id": options.document_id}
        logger.info(
            f"Parsing invoice: chain={chain} threshold={threshold}", extra=log_extra
        )

        token = cancellation or CancellationToken()
        if options.timeout_seconds:
            token.cancel_after(options.timeout_seconds)

        outcome = ParsingOutcome(success=False, strategy=strategy_name)
        accepted: Optional[ParseAttemptResult] = None
        document_cost = 0.0

        try:
            for provider_id in chain:
                if token.cancelled:
                    outcome.cancelled = True
                    break

                # Without fallback only the first chain entry is considered
                if (outcome.attempts or outcome.skipped) and not self.config.enable_fallback:
                    break

                adapter = self.adapters[provider_id]
                attempt_extra = {**log_extra, "provider": provider_id}

                try:
                    estimate = adapter.estimate_cost(text, page_count)
                    ensure_budget(
                        estimate,
                        document_cost,
                        accumulated_daily_cost + document_cost,
                        self.config,
                        strategy,
                        provider_id=provider_id,
                    )
                    result = adapter.parse(text, page_count, options, token)

                except BudgetExceededError as e:
                    logger.info(f"Skipping provider: {e.message}", extra=attempt_extra)
                    outcome.skipped.append(
                        {
                            "provider_id": provider_id,
                            "estimated_cost": estimate,
                            "reason": e.message,
                        }
                    )
                    continue

                except ParsingCancelledError:
                    logger.info("Provider call cancelled", extra=attempt_extra)
                    outcome.cancelled = True
                    break

                except Exception as e:
                    if isinstance(e, FatalProviderError):
                        fatal = e
                    else:
                        fatal = FatalProviderError(
                            f"Unexpected error from {provider_id}: {e}",
                            provider_id=provider_id,
                            exception=e,
                        )
                    logger.error(
                        f"{fatal.message}\n{fatal.stack_trace}", extra=attempt_extra
                    )
                    if fatal.cost > 0:
                        outcome.attempts.append(
                            ParseAttemptResult(
                                provider_id=provider_id,
                                success=False,
                                cost=fatal.cost,
                                error=fatal.message,
                                error_type=fatal.error_type.value,
                            )
                        )
                    outcome.error = fatal.message
                    break

                outcome.attempts.append(result)
                document_cost += result.cost
                logger.info(
                    f"Attempt finished: success={result.success} "
                    f"confidence={result.confidence:.2f} cost=${result.cost:.4f}",
                    extra=attempt_extra,
                )

                if result.success and result.confidence >= threshold:
                    accepted = result
                    break
        finally:
            if options.timeout_seconds:
                token.dispose()

        self._finalize(outcome, accepted)
        outcome.processing_time_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Parsing finished: success={outcome.success} best_effort={outcome.best_effort} "
            f"attempts={len(outcome.attempts)} skipped={len(outcome.skipped)} "
            f"cost=${outcome.total_cost:.4f}",
            extra=log_extra,
        )
        return outcome

    def _resolve_chain(self, strategy_name: str):
        strategy = self.registry.get(strategy_name)
        chain = self.registry.get_chain(strategy_name)

        missing = [provider_id for provider_id in chain if provider_id not in self.adapters]
        if missing:
            raise ConfigurationError(
                f"No adapter configured for provider(s): {', '.join(missing)}"
            )
        return strategy, chain

    def _finalize(
        self, outcome: ParsingOutcome, accepted: Optional[ParseAttemptResult]
    ) -> None:
        thresholds = self.config.thresholds

        outcome.metadata.llm_used = any(
            self.adapters[a.provider_id].is_llm for a in outcome.attempts
        )
        outcome.metadata.traditional_used = any(
            not self.adapters[a.provider_id].is_llm for a in outcome.attempts
        )
        outcome.metadata.fallback_triggered = len(outcome.attempts) + len(outcome.skipped) > 1

        if accepted:
            outcome.success = True
            outcome.confidence = accepted.confidence
            outcome.best_result = accepted.extracted_fields

        elif not outcome.cancelled:
            usable = [
                a for a in outcome.attempts
                if a.usable and a.confidence >= thresholds.usable_floor
            ]
            if usable:
                # max() keeps the first of equal maxima: earliest chain position
                best = max(usable, key=lambda a: a.confidence)
                outcome.success = True
                outcome.best_effort = True
                outcome.confidence = best.confidence
                outcome.best_result = best.extracted_fields
            elif outcome.error is None:
                if outcome.attempts:
                    outcome.error = "No provider produced a usable result"
                elif outcome.skipped:
                    outcome.error = "All providers were skipped by the cost guard"
                else:
                    outcome.error = "No providers available for this strategy"

        elif outcome.error is None:
            outcome.error = "Parsing cancelled"

        outcome.review_status = self._review_status(outcome)

    def _review_status(self, outcome: ParsingOutcome) -> str:
        thresholds = self.config.thresholds
        if not outcome.success:
            return REVIEW_MANUAL_ENTRY
        if outcome.confidence >= thresholds.auto_approve:
            return REVIEW_AUTO_APPROVED
        if outcome.confidence >= thresholds.require_review:
            return REVIEW_NEEDS_REVIEW
        return REVIEW_NEEDS_CORRECTION

    # ========================================================================
    # Planning
    # ========================================================================

    def estimate_cost(
        self, text: str, strategy_name: Optional[str] = None, page_count: int = 1
    ) -> dict[str, Any]:
        """
        Estimate what a parse would cost without calling any provider.

        Returns:
            Dict with per-provider estimates, the worst case for a full walk,
            and the effective document limit
        """
        validate_parse_input(text, page_count)
        strategy_name = strategy_name or self.config.default_strategy
        strategy, chain = self._resolve_chain(strategy_name)

        providers = [
            {
                "provider_id": provider_id,
                "estimated_cost": self.adapters[provider_id].estimate_cost(text, page_count),
            }
            for provider_id in chain
        ]
        worst_case = sum(p["estimated_cost"] for p in providers)
        limit = document_limit(self.config, strategy)

        return {
            "strategy": strategy_name,
            "providers": providers,
            "first_attempt_cost": providers[0]["estimated_cost"] if providers else 0.0,
            "worst_case_cost": round(worst_case, 6),
            "document_limit": limit,
            "within_limit": worst_case <= limit,
        }

    def available_strategies(self) -> list[dict[str, Any]]:
        """All strategies with their chains for this user's providers"""
        return [
            {**strategy, "is_default": strategy["name"] == self.config.default_strategy}
            for strategy in self.registry.describe()
        ]
