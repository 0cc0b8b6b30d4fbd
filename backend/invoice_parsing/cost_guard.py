"""
Cost Guard
Budget checks performed before every provider attempt
"""

from dataclasses import dataclass
from typing import Optional

from config.parsing_config import ParsingConfig
from invoice_parsing.errors import BudgetExceededError
from invoice_parsing.strategies import StrategyDefinition

# Absorbs float noise when a cost lands exactly on the limit
EPSILON = 1e-9


@dataclass(frozen=True)
class BudgetDecision:
    """Outcome of a budget check"""

    allowed: bool
    reason: Optional[str] = None


def document_limit(config: ParsingConfig, strategy: Optional[StrategyDefinition] = None) -> float:
    """Effective per-document cap: the tighter of config and strategy limits"""
    if strategy is None:
        return config.max_cost_per_document
    return min(config.max_cost_per_document, strategy.max_cost_per_invoice)


def check_budget(
    proposed_cost: float,
    accumulated_document_cost: float,
    accumulated_daily_cost: float,
    config: ParsingConfig,
    strategy: Optional[StrategyDefinition] = None,
) -> BudgetDecision:
    """
    Decide whether an attempt costing ``proposed_cost`` may run.

    Pure function: nothing is recorded here. Callers accumulate actual spend.

    Args:
        proposed_cost: Estimated cost of the next attempt
        accumulated_document_cost: Spend so far on this document
        accumulated_daily_cost: Spend so far today, including this document
        config: User parsing configuration
        strategy: Active strategy, whose max cost per invoice also applies

    Returns:
        BudgetDecision
    """
    if proposed_cost < 0:
        raise ValueError(f"proposed_cost must be non-negative: {proposed_cost}")

    limit = document_limit(config, strategy)
    if accumulated_document_cost + proposed_cost > limit + EPSILON:
        return BudgetDecision(
            allowed=False,
            reason=(
                f"Document cost limit exceeded: ${accumulated_document_cost + proposed_cost:.4f} "
                f"> ${limit:.4f}"
            ),
        )

    if accumulated_daily_cost + proposed_cost > config.daily_cost_limit + EPSILON:
        return BudgetDecision(
            allowed=False,
            reason=(
                f"Daily cost limit exceeded: ${accumulated_daily_cost + proposed_cost:.4f} "
                f"> ${config.daily_cost_limit:.4f}"
            ),
        )

    return BudgetDecision(allowed=True)


def ensure_budget(
    proposed_cost: float,
    accumulated_document_cost: float,
    accumulated_daily_cost: float,
    config: ParsingConfig,
    strategy: Optional[StrategyDefinition] = None,
    provider_id: Optional[str] = None,
) -> None:
    """
    Raising variant of check_budget.

    Raises:
        BudgetExceededError: If the attempt would exceed a limit
    """
    decision = check_budget(
        proposed_cost, accumulated_document_cost, accumulated_daily_cost, config, strategy
    )
    if not decision.allowed:
        raise BudgetExceededError(
            decision.reason,
            provider_id=provider_id,
            context={"proposed_cost": proposed_cost},
        )
