"""Backend configuration module"""

from .parsing_config import (
    ParsingConfig,
    ParsingProvider,
    ParsingThresholds,
    ProviderSettings,
    StrategyName,
    load_parsing_config,
)

__all__ = [
    "ParsingConfig",
    "ParsingProvider",
    "ParsingThresholds",
    "ProviderSettings",
    "StrategyName",
    "load_parsing_config",
]
