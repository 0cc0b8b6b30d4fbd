"""
Parsing Strategy Registry

Static table of named strategies. Each strategy turns the user's enabled LLM
providers into an ordered fallback chain that always includes the
traditional parser somewhere.
"""

from dataclasses import dataclass
from typing import Callable

from config.parsing_config import (
    ParsingConfig,
    ParsingProvider,
    ParsingThresholds,
    StrategyName,
)
from invoice_parsing.errors import ConfigurationError

TRADITIONAL = ParsingProvider.TRADITIONAL.value

ChainRule = Callable[[list[str], dict[str, float]], list[str]]


def _llms_then_traditional(llms: list[str], costs: dict[str, float]) -> list[str]:
    return [*llms, TRADITIONAL]


def _traditional_then_llms(llms: list[str], costs: dict[str, float]) -> list[str]:
    return [TRADITIONAL, *llms]


def _first_llm_then_traditional(llms: list[str], costs: dict[str, float]) -> list[str]:
    if not llms:
        return [TRADITIONAL]
    return [llms[0], TRADITIONAL, *llms[1:]]


def _traditional_then_cheapest(llms: list[str], costs: dict[str, float]) -> list[str]:
    # sorted() is stable, so equal costs keep provider order
    return [TRADITIONAL, *sorted(llms, key=lambda p: costs.get(p, 0.0))]


@dataclass(frozen=True)
class StrategyDefinition:
    """A named fallback strategy"""

    name: str
    description: str
    confidence_threshold: float
    max_cost_per_invoice: float
    chain_rule: ChainRule

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "confidence_threshold": self.confidence_threshold,
            "max_cost_per_invoice": self.max_cost_per_invoice,
        }


STRATEGIES: dict[str, StrategyDefinition] = {
    StrategyName.LLM_PRIMARY.value: StrategyDefinition(
        name=StrategyName.LLM_PRIMARY.value,
        description="Use LLM parsing as primary method with traditional fallback",
        confidence_threshold=0.8,
        max_cost_per_invoice=0.10,
        chain_rule=_llms_then_traditional,
    ),
    StrategyName.TRADITIONAL_PRIMARY.value: StrategyDefinition(
        name=StrategyName.TRADITIONAL_PRIMARY.value,
        description="Use traditional parsing first, LLM for low-confidence results",
        confidence_threshold=0.7,
        max_cost_per_invoice=0.02,
        chain_rule=_traditional_then_llms,
    ),
    StrategyName.HYBRID.value: StrategyDefinition(
        name=StrategyName.HYBRID.value,
        description="Primary LLM first, then traditional, then the remaining LLMs",
        confidence_threshold=0.85,
        max_cost_per_invoice=0.05,
        chain_rule=_first_llm_then_traditional,
    ),
    StrategyName.COST_OPTIMIZED.value: StrategyDefinition(
        name=StrategyName.COST_OPTIMIZED.value,
        description="Minimize costs while maintaining reasonable accuracy",
        confidence_threshold=0.6,
        max_cost_per_invoice=0.01,
        chain_rule=_traditional_then_cheapest,
    ),
    StrategyName.ACCURACY_OPTIMIZED.value: StrategyDefinition(
        name=StrategyName.ACCURACY_OPTIMIZED.value,
        description="Maximum accuracy regardless of cost",
        confidence_threshold=0.95,
        max_cost_per_invoice=0.20,
        chain_rule=_llms_then_traditional,
    ),
}


class StrategyRegistry:
    """Resolves strategy names to definitions and provider chains.

    The table itself is static; a registry instance only binds it to one
    user's enabled providers and their relative costs.
    """

    def __init__(
        self,
        llm_providers: list[str] | None = None,
        provider_costs: dict[str, float] | None = None,
    ):
        self.llm_providers = list(llm_providers or [])
        self.provider_costs = dict(provider_costs or {})

    @classmethod
    def from_config(cls, config: ParsingConfig) -> "StrategyRegistry":
        enabled = config.enabled_providers()
        return cls(
            llm_providers=[p.value for p in enabled],
            provider_costs={
                p.value: config.provider_settings(p).cost_per_1k for p in enabled
            },
        )

    @staticmethod
    def names() -> list[str]:
        return list(STRATEGIES)

    @staticmethod
    def get(name: str) -> StrategyDefinition:
        """
        Look up a strategy definition.

        Raises:
            ConfigurationError: If the strategy name is unknown
        """
        strategy = STRATEGIES.get(name)
        if strategy is None:
            raise ConfigurationError(
                f"Unknown parsing strategy: {name}. "
                f"Must be one of: {', '.join(STRATEGIES)}"
            )
        return strategy

    def get_chain(self, name: str) -> list[str]:
        """Ordered provider ids to try for ``name``."""
        strategy = self.get(name)
        return strategy.chain_rule(list(self.llm_providers), self.provider_costs)

    @staticmethod
    def acceptance_threshold(
        strategy: StrategyDefinition, thresholds: ParsingThresholds
    ) -> float:
        if thresholds.acceptance_override is not None:
            return thresholds.acceptance_override
        return strategy.confidence_threshold

    def describe(self) -> list[dict]:
        """All strategies with their resolved chains"""
        return [
            {**strategy.to_dict(), "fallback_chain": self.get_chain(name)}
            for name, strategy in STRATEGIES.items()
        ]
