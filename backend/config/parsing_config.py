"""
Invoice Parsing Configuration Management
Handles per-user settings, environment overrides, validation, and provider metadata
"""

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from invoice_parsing.errors import ConfigurationError

# Load from .env in the backend directory
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


class ParsingProvider(str, Enum):
    """Supported parsing backends"""
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OPENAI = "openai"
    OLLAMA = "ollama"
    TRADITIONAL = "traditional"


LLM_PROVIDERS = (
    ParsingProvider.ANTHROPIC,
    ParsingProvider.GEMINI,
    ParsingProvider.OPENAI,
    ParsingProvider.OLLAMA,
)


class StrategyName(str, Enum):
    """Named parsing strategies"""
    LLM_PRIMARY = "llm-primary"
    TRADITIONAL_PRIMARY = "traditional-primary"
    HYBRID = "hybrid"
    COST_OPTIMIZED = "cost-optimized"
    ACCURACY_OPTIMIZED = "accuracy-optimized"


DEFAULT_MODELS = {
    ParsingProvider.ANTHROPIC: "claude-3-5-sonnet-20241022",
    ParsingProvider.GEMINI: "gemini-1.5-flash",
    ParsingProvider.OPENAI: "gpt-4o-mini",
    ParsingProvider.OLLAMA: "mistral:7b",
}

# Blended USD per 1k tokens, used for ordering and pre-attempt estimates
DEFAULT_COST_PER_1K = {
    ParsingProvider.ANTHROPIC: 0.003,
    ParsingProvider.GEMINI: 0.00015,
    ParsingProvider.OPENAI: 0.00015,
    ParsingProvider.OLLAMA: 0.0,
}

API_KEY_ENV_VARS = {
    ParsingProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
    ParsingProvider.GEMINI: "GEMINI_API_KEY",
    ParsingProvider.OPENAI: "OPENAI_API_KEY",
}

DEFAULT_PROVIDER_ORDER = ("anthropic", "gemini", "openai")


@dataclass(frozen=True)
class ParsingThresholds:
    """Confidence thresholds shared by every strategy.

    Per-strategy acceptance thresholds live on the strategy table; setting
    ``acceptance_override`` replaces all of them with a single value.
    """
    usable_floor: float = 0.5
    require_review: float = 0.7
    auto_approve: float = 0.95
    acceptance_override: Optional[float] = None

    def validate(self):
        for name in ("usable_floor", "require_review", "auto_approve"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be between 0 and 1: {value}")
        if self.acceptance_override is not None and not 0.0 <= self.acceptance_override <= 1.0:
            raise ConfigurationError(
                f"acceptance_override must be between 0 and 1: {self.acceptance_override}"
            )
        if self.require_review > self.auto_approve:
            raise ConfigurationError("require_review cannot exceed auto_approve")


@dataclass(frozen=True)
class ProviderSettings:
    """Credentials and model selection for one LLM provider"""
    provider: ParsingProvider
    model: str
    api_key: Optional[str] = None
    enabled: bool = False
    api_base_url: Optional[str] = None
    cost_per_1k: float = 0.0
    admin_api_key: Optional[str] = None  # Anthropic cost reports only

    @property
    def requires_api_key(self) -> bool:
        return self.provider != ParsingProvider.OLLAMA

    def public_dict(self) -> Dict[str, Any]:
        """Serializable view with the API key masked"""
        return {
            "provider": self.provider.value,
            "model": self.model,
            "enabled": self.enabled,
            "has_api_key": bool(self.api_key),
            "api_base_url": self.api_base_url,
            "cost_per_1k": self.cost_per_1k,
        }


@dataclass(frozen=True)
class ParsingConfig:
    """Per-user parsing configuration, immutable for the duration of a parse"""
    default_strategy: str = StrategyName.HYBRID.value
    provider_order: tuple = DEFAULT_PROVIDER_ORDER
    providers: Dict[ParsingProvider, ProviderSettings] = field(default_factory=dict)
    max_cost_per_document: float = 0.10
    daily_cost_limit: float = 10.0
    enable_fallback: bool = True
    collect_training_data: bool = True
    timeout: int = 30
    retry_attempts: int = 2
    thresholds: ParsingThresholds = field(default_factory=ParsingThresholds)

    def __post_init__(self):
        """Validate configuration after initialization"""
        self.validate()

    def validate(self):
        """Validate parsing configuration"""
        _validate_strategy(self.default_strategy)

        llm_ids = {p.value for p in LLM_PROVIDERS}
        for provider_id in self.provider_order:
            if provider_id not in llm_ids:
                raise ConfigurationError(f"Unknown provider in provider order: {provider_id}")

        if self.max_cost_per_document < 0:
            raise ConfigurationError("max_cost_per_document must be non-negative")

        if self.daily_cost_limit < 0:
            raise ConfigurationError("daily_cost_limit must be non-negative")

        if self.timeout <= 0:
            raise ConfigurationError("PARSING_TIMEOUT must be greater than 0")

        if self.retry_attempts < 0:
            raise ConfigurationError("PARSING_RETRY_ATTEMPTS must be non-negative")

        for provider, settings in self.providers.items():
            if settings.enabled and settings.requires_api_key and not settings.api_key:
                raise ConfigurationError(f"API key required for provider: {provider.value}")

            if provider == ParsingProvider.ANTHROPIC and not settings.model.startswith("claude"):
                raise ConfigurationError(f"Invalid Anthropic model: {settings.model}")

            elif provider == ParsingProvider.GEMINI and not settings.model.startswith("gemini"):
                raise ConfigurationError(f"Invalid Gemini model: {settings.model}")

            elif provider == ParsingProvider.OPENAI and not settings.model.startswith(("gpt-", "o1", "o3")):
                raise ConfigurationError(f"Invalid OpenAI model: {settings.model}")

            elif provider == ParsingProvider.OLLAMA and ":" not in settings.model:
                raise ConfigurationError(
                    f"Invalid Ollama model format: {settings.model} "
                    "(expected format: 'model:tag' like 'mistral:7b')"
                )

        self.thresholds.validate()

    def enabled_providers(self) -> list:
        """Enabled LLM providers in configured priority order"""
        enabled = []
        for provider_id in self.provider_order:
            provider = ParsingProvider(provider_id)
            settings = self.providers.get(provider)
            if settings and settings.enabled:
                enabled.append(provider)
        return enabled

    def provider_settings(self, provider: ParsingProvider) -> Optional[ProviderSettings]:
        return self.providers.get(provider)

    def public_dict(self) -> Dict[str, Any]:
        """Serializable configuration without credentials"""
        return {
            "default_strategy": self.default_strategy,
            "provider_order": list(self.provider_order),
            "providers": {p.value: s.public_dict() for p, s in self.providers.items()},
            "max_cost_per_document": self.max_cost_per_document,
            "daily_cost_limit": self.daily_cost_limit,
            "enable_fallback": self.enable_fallback,
            "collect_training_data": self.collect_training_data,
            "timeout": self.timeout,
            "retry_attempts": self.retry_attempts,
            "thresholds": {
                "usable_floor": self.thresholds.usable_floor,
                "require_review": self.thresholds.require_review,
                "auto_approve": self.thresholds.auto_approve,
                "acceptance_override": self.thresholds.acceptance_override,
            },
        }


def _default_providers() -> Dict[ParsingProvider, ProviderSettings]:
    return {
        provider: ProviderSettings(
            provider=provider,
            model=DEFAULT_MODELS[provider],
            cost_per_1k=DEFAULT_COST_PER_1K[provider],
        )
        for provider in LLM_PROVIDERS
    }


def load_parsing_config(
    stored_settings: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> ParsingConfig:
    """
    Build the parsing configuration for one request.

    Stored user settings are applied first, then environment variables, which
    take precedence. The environment is only read, never written.

    Stored settings keys:
    - api_keys: {provider_id: api_key}
    - models: {provider_id: model}
    - default_strategy, provider_order, max_cost_per_document,
      daily_cost_limit, enable_fallback, collect_training_data

    Environment Variables:
    - ANTHROPIC_API_KEY, GEMINI_API_KEY, OPENAI_API_KEY: enable the provider
    - OLLAMA_BASE_URL: enable the local Ollama provider
    - PDF_PROVIDER_ORDER: comma separated provider order
    - PDF_PARSING_STRATEGY: default strategy override
    - PARSING_TIMEOUT: provider request timeout in seconds (default: 30)
    - PARSING_RETRY_ATTEMPTS: retries per provider call (default: 2)
    - PARSING_USABLE_FLOOR: minimum confidence for best-effort results (default: 0.5)

    Returns:
        Validated ParsingConfig

    Raises:
        ConfigurationError: If the resulting configuration is invalid
    """
    env = os.environ if environ is None else environ
    stored = stored_settings or {}
    providers = _default_providers()

    stored_strategy = stored.get("default_strategy")
    if stored_strategy is not None:
        _validate_strategy(stored_strategy)
    default_strategy = stored_strategy or StrategyName.HYBRID.value
    provider_order = tuple(stored.get("provider_order") or DEFAULT_PROVIDER_ORDER)

    models = stored.get("models") or {}
    for provider_id, model in models.items():
        provider = parse_provider_id(provider_id)
        if model:
            providers[provider] = replace(providers[provider], model=model)

    for provider_id, api_key in (stored.get("api_keys") or {}).items():
        provider = parse_provider_id(provider_id)
        if api_key:
            providers[provider] = replace(providers[provider], api_key=api_key, enabled=True)

    # Environment variables take precedence over stored settings
    for provider, env_var in API_KEY_ENV_VARS.items():
        api_key = env.get(env_var, "").strip()
        if api_key:
            providers[provider] = replace(providers[provider], api_key=api_key, enabled=True)

    admin_api_key = env.get("ANTHROPIC_ADMIN_API_KEY", "").strip()
    if admin_api_key:
        providers[ParsingProvider.ANTHROPIC] = replace(
            providers[ParsingProvider.ANTHROPIC], admin_api_key=admin_api_key
        )

    ollama_url = env.get("OLLAMA_BASE_URL", "").strip()
    if ollama_url:
        providers[ParsingProvider.OLLAMA] = replace(
            providers[ParsingProvider.OLLAMA], api_base_url=ollama_url, enabled=True
        )
        if ParsingProvider.OLLAMA.value not in provider_order:
            provider_order = provider_order + (ParsingProvider.OLLAMA.value,)

    env_order = env.get("PDF_PROVIDER_ORDER", "").strip()
    if env_order:
        provider_order = tuple(p.strip().lower() for p in env_order.split(",") if p.strip())

    # Fall back to traditional parsing when no LLM is available and the
    # user has not chosen a strategy
    if not stored_strategy and not any(s.enabled for s in providers.values()):
        default_strategy = StrategyName.TRADITIONAL_PRIMARY.value

    env_strategy = env.get("PDF_PARSING_STRATEGY", "").strip()
    if env_strategy:
        default_strategy = env_strategy

    try:
        thresholds = ParsingThresholds(
            usable_floor=float(env.get("PARSING_USABLE_FLOOR", "0.5")),
        )
        return ParsingConfig(
            default_strategy=default_strategy,
            provider_order=provider_order,
            providers=providers,
            max_cost_per_document=float(stored.get("max_cost_per_document", 0.10)),
            daily_cost_limit=float(stored.get("daily_cost_limit", 10.0)),
            enable_fallback=_stored_flag(stored, "enable_fallback"),
            collect_training_data=_stored_flag(stored, "collect_training_data"),
            timeout=int(env.get("PARSING_TIMEOUT", "30")),
            retry_attempts=int(env.get("PARSING_RETRY_ATTEMPTS", "2")),
            thresholds=thresholds,
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid parsing configuration value: {e}") from e


def parse_provider_id(provider_id: str) -> ParsingProvider:
    """Resolve an LLM provider id; the traditional parser is rejected."""
    try:
        provider = ParsingProvider(str(provider_id).lower())
    except ValueError:
        raise ConfigurationError(
            f"Invalid provider: {provider_id}. "
            f"Must be one of: {', '.join(p.value for p in LLM_PROVIDERS)}"
        )
    if provider == ParsingProvider.TRADITIONAL:
        raise ConfigurationError("The traditional parser does not take credentials")
    return provider


def _validate_strategy(name: Any) -> str:
    valid_strategies = {s.value for s in StrategyName}
    if not isinstance(name, str) or name not in valid_strategies:
        raise ConfigurationError(
            f"Invalid default strategy: {name}. "
            f"Must be one of: {', '.join(sorted(valid_strategies))}"
        )
    return name


def _stored_flag(stored: Dict[str, Any], key: str, default: bool = True) -> bool:
    # The string "false" is truthy
    value = stored.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{key} must be true or false, got {value!r}")
    return value
