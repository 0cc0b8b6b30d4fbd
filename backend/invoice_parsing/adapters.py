"""
Provider Adapters

Uniform ``parse(text, page_count, options)`` wrappers around each parsing
backend. Recoverable provider failures come back as a failed
ParseAttemptResult; anything else propagates to the orchestrator, which
treats it as fatal.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import anthropic
import openai
import requests

from config.parsing_config import ParsingConfig, ParsingProvider, ProviderSettings
from invoice_parsing.cancellation import CancellationToken
from invoice_parsing.confidence import ConfidenceScorer, ExtractionConfidenceScorer
from invoice_parsing.errors import (
    ConfigurationError,
    ErrorType,
    FatalProviderError,
    ParsingCancelledError,
    ProviderError,
)
from invoice_parsing.llm_providers import (
    AnthropicProvider,
    BaseLLMProvider,
    GoogleProvider,
    OllamaProvider,
    OpenAIProvider,
)
from invoice_parsing.logging_config import get_logger
from invoice_parsing.models import ParseAttemptResult, ParseOptions
from invoice_parsing.traditional_parser import parse_invoice_text

logger = get_logger(__name__)

# Failures a provider call can produce that should not end the fallback walk
RECOVERABLE_ERRORS = (
    anthropic.APIError,
    openai.APIError,
    requests.exceptions.RequestException,
    TimeoutError,
    ConnectionError,
    json.JSONDecodeError,
)


def validate_parse_input(text: str, page_count: int) -> None:
    if not isinstance(text, str) or not text.strip():
        raise ValueError("Invoice text must be a non-empty string")
    if not isinstance(page_count, int) or isinstance(page_count, bool) or page_count < 1:
        raise ValueError(f"page_count must be an integer >= 1: {page_count}")


class ProviderAdapter(ABC):
    """Common interface for every parsing backend"""

    provider: ParsingProvider

    @property
    def provider_id(self) -> str:
        return self.provider.value

    @property
    def is_llm(self) -> bool:
        return self.provider != ParsingProvider.TRADITIONAL

    @abstractmethod
    def parse(
        self,
        text: str,
        page_count: int = 1,
        options: Optional[ParseOptions] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ParseAttemptResult:
        """
        Parse invoice text into a ParseAttemptResult.

        Raises:
            ValueError: If text is empty or page_count < 1
        """

    @abstractmethod
    def estimate_cost(self, text: str, page_count: int = 1) -> float:
        """Upper-bound cost of one parse of ``text``, in USD"""


class TraditionalAdapter(ProviderAdapter):
    """Regex extraction; free and local"""

    provider = ParsingProvider.TRADITIONAL

    def __init__(self, scorer: Optional[ConfidenceScorer] = None):
        self.scorer = scorer or ExtractionConfidenceScorer()

    def parse(self, text, page_count=1, options=None, cancellation=None):
        validate_parse_input(text, page_count)
        start_time = time.time()

        invoice = parse_invoice_text(text, page_number=1, scorer=self.scorer)

        return ParseAttemptResult(
            provider_id=self.provider_id,
            success=True,
            confidence=invoice.confidence,
            extracted_fields=invoice,
            cost=0.0,
            duration_ms=(time.time() - start_time) * 1000,
        )

    def estimate_cost(self, text, page_count=1):
        return 0.0


class LLMProviderAdapter(ProviderAdapter):
    """Wraps one BaseLLMProvider.

    A fresh provider client is created per parse so that cancelling one
    parse (which closes its client) never affects another.
    """

    provider_class: type[BaseLLMProvider]

    def __init__(
        self,
        settings: ProviderSettings,
        timeout: int = 30,
        retry_attempts: int = 2,
        provider_factory: Optional[Callable[[], BaseLLMProvider]] = None,
    ):
        if settings.provider != self.provider:
            raise ConfigurationError(
                f"{type(self).__name__} cannot wrap {settings.provider.value} settings"
            )
        if settings.requires_api_key and not settings.api_key:
            raise ConfigurationError(f"API key required for provider: {self.provider_id}")

        self.settings = settings
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self._provider_factory = provider_factory or self._create_provider
        self._estimator: Optional[BaseLLMProvider] = None

    def _provider_kwargs(self) -> dict:
        return {
            "api_key": self.settings.api_key,
            "model": self.settings.model,
            "timeout": self.timeout,
            "api_base_url": self.settings.api_base_url,
            "max_retries": self.retry_attempts,
        }

    def _create_provider(self) -> BaseLLMProvider:
        return self.provider_class(**self._provider_kwargs())

    def create_client(self) -> BaseLLMProvider:
        """Fresh provider client for key checks and billing reads; caller closes it."""
        return self._provider_factory()

    def estimate_cost(self, text, page_count=1):
        if self._estimator is None:
            self._estimator = self._provider_factory()
        return self._estimator.estimate_cost(text, page_count)

    def parse(self, text, page_count=1, options=None, cancellation=None):
        validate_parse_input(text, page_count)
        options = options or ParseOptions()
        context = {
            "supplier_name": options.supplier_name,
            "expected_format": options.expected_format,
            "project_context": options.project_context,
        }

        provider = self._provider_factory()
        unregister = cancellation.on_cancel(provider.close) if cancellation else None
        start_time = time.time()
        response = None

        try:
            if cancellation:
                cancellation.raise_if_cancelled()
            prompt = provider.build_invoice_prompt(text, 1, context)
            response = provider.complete(prompt)
            invoice = provider.parse_invoice_response(response.content, page_number=1)

        except RECOVERABLE_ERRORS as e:
            if cancellation and cancellation.cancelled:
                raise ParsingCancelledError(
                    f"{self.provider_id} call cancelled", provider_id=self.provider_id
                ) from e

            error = ProviderError.from_exception(e, provider_id=self.provider_id)
            if isinstance(e, json.JSONDecodeError):
                error.error_type = ErrorType.PARSE_ERROR

            logger.warning(
                f"Provider attempt failed: {error.message}",
                extra={"provider": self.provider_id, "document_id": options.document_id},
            )
            return ParseAttemptResult(
                provider_id=self.provider_id,
                success=False,
                cost=response.cost if response else 0.0,
                duration_ms=(time.time() - start_time) * 1000,
                error=error.message,
                error_type=error.error_type.value,
            )

        except Exception as e:
            # A closed client fails in client-specific ways
            if cancellation and cancellation.cancelled:
                raise ParsingCancelledError(
                    f"{self.provider_id} call cancelled", provider_id=self.provider_id
                ) from e
            if response is not None:
                # The completion was billed before the failure
                raise FatalProviderError(
                    f"Unexpected error from {self.provider_id}: {e}",
                    provider_id=self.provider_id,
                    exception=e,
                    cost=response.cost,
                ) from e
            raise

        finally:
            if unregister:
                unregister()

        return ParseAttemptResult(
            provider_id=self.provider_id,
            success=True,
            confidence=invoice.confidence,
            extracted_fields=invoice,
            cost=response.cost,
            duration_ms=(time.time() - start_time) * 1000,
        )


class AnthropicAdapter(LLMProviderAdapter):
    provider = ParsingProvider.ANTHROPIC
    provider_class = AnthropicProvider

    def _provider_kwargs(self) -> dict:
        kwargs = super()._provider_kwargs()
        kwargs["admin_api_key"] = self.settings.admin_api_key
        return kwargs


class GeminiAdapter(LLMProviderAdapter):
    provider = ParsingProvider.GEMINI
    provider_class = GoogleProvider


class OpenAIAdapter(LLMProviderAdapter):
    provider = ParsingProvider.OPENAI
    provider_class = OpenAIProvider


class OllamaAdapter(LLMProviderAdapter):
    provider = ParsingProvider.OLLAMA
    provider_class = OllamaProvider

    def _provider_kwargs(self) -> dict:
        kwargs = super()._provider_kwargs()
        # Local inference: no SDK retries, cost tracked per token
        kwargs.pop("max_retries")
        kwargs["cost_per_token"] = self.settings.cost_per_1k / 1000
        return kwargs


PROVIDER_ADAPTERS: dict[ParsingProvider, type[ProviderAdapter]] = {
    ParsingProvider.ANTHROPIC: AnthropicAdapter,
    ParsingProvider.GEMINI: GeminiAdapter,
    ParsingProvider.OPENAI: OpenAIAdapter,
    ParsingProvider.OLLAMA: OllamaAdapter,
    ParsingProvider.TRADITIONAL: TraditionalAdapter,
}


def build_adapters(config: ParsingConfig) -> dict[str, ProviderAdapter]:
    """
    Instantiate an adapter for the traditional parser and every enabled LLM.

    Credentials come only from ``config``; the process environment is not read.
    """
    adapters: dict[str, ProviderAdapter] = {
        ParsingProvider.TRADITIONAL.value: TraditionalAdapter(),
    }

    for provider in config.enabled_providers():
        adapter_class = PROVIDER_ADAPTERS[provider]
        adapters[provider.value] = adapter_class(
            config.provider_settings(provider),
            timeout=config.timeout,
            retry_attempts=config.retry_attempts,
        )

    return adapters
