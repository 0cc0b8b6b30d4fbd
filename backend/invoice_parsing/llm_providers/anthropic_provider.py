"""
Anthropic Claude provider for invoice extraction
"""

from datetime import datetime, timezone
from typing import Optional

import anthropic
import requests

from invoice_parsing.logging_config import get_logger

from .base_provider import AccountInfo, BaseLLMProvider, LLMResponse, ModelPricing

logger = get_logger(__name__)

COST_REPORT_URL = "https://api.anthropic.com/v1/organizations/cost_report"


class AnthropicProvider(BaseLLMProvider):
    """Claude models through the Messages API.

    The SDK client is owned by this instance; ``close()`` shuts its HTTP
    pool, which aborts a request that is still in flight.
    """

    PRICING = {
        "claude-3-5-sonnet": ModelPricing(0.003, 0.015),
        "claude-3-5-haiku": ModelPricing(0.0008, 0.004),
        "claude-3-opus": ModelPricing(0.015, 0.075),
        "claude-3-sonnet": ModelPricing(0.003, 0.015),
        "claude-3-haiku": ModelPricing(0.00025, 0.00125),
    }
    DEFAULT_PRICING = PRICING["claude-3-5-sonnet"]

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-20241022",
        timeout: int = 30,
        api_base_url: Optional[str] = None,
        max_retries: int = 2,
        admin_api_key: Optional[str] = None,
    ):
        """
        Args:
            api_key: Anthropic API key for this user
            model: Claude model id
            timeout: Per-request timeout in seconds
            api_base_url: Proxy base URL, if any
            max_retries: SDK retries for 429/5xx and connection errors
            admin_api_key: Admin API key, only needed for cost reports
        """
        super().__init__(api_key, model, timeout)
        client_kwargs = {"api_key": api_key, "timeout": timeout, "max_retries": max_retries}
        if api_base_url:
            client_kwargs["base_url"] = api_base_url
        self.client = anthropic.Anthropic(**client_kwargs)
        self.admin_api_key = admin_api_key

    def validate_api_key(self) -> bool:
        try:
            self.client.models.retrieve(self.model)
            return True
        except anthropic.APIError as e:
            logger.warning(f"Anthropic key check failed for {self.model}: {e}")
            return False

    def get_account_info(self) -> AccountInfo:
        """
        Month-to-date spend from the Admin API cost report.

        Returns:
            AccountInfo; available=False without an admin key or on API failure
        """
        if not self.admin_api_key:
            return AccountInfo(
                provider="anthropic",
                available=False,
                error="Set ANTHROPIC_ADMIN_API_KEY for billing data",
            )

        month_start = datetime.now(timezone.utc).replace(
            day=1, hour=0, minute=0, second=0, microsecond=0
        )
        try:
            response = requests.get(
                COST_REPORT_URL,
                headers={"x-api-key": self.admin_api_key, "anthropic-version": "2023-06-01"},
                params={
                    "starting_at": month_start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "bucket_width": "1d",
                },
                timeout=10,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            return AccountInfo(provider="anthropic", available=False, error=f"Cost report failed: {e}")

        # Amounts are decimal strings in cents
        cents = sum(
            float(result.get("amount", "0"))
            for bucket in response.json().get("data", [])
            for result in bucket.get("results", [])
        )
        return AccountInfo(
            provider="anthropic",
            available=True,
            subscription_tier="Pay-as-you-go",
            usage_this_month=round(cents / 100, 2),
        )

    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        request = {
            "model": self.model,
            "max_tokens": self.MAX_OUTPUT_TOKENS,
            "temperature": 0.1,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            request["system"] = system_prompt

        message = self.client.messages.create(**request)
        usage = message.usage

        return LLMResponse(
            content=message.content[0].text if message.content else "",
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.input_tokens + usage.output_tokens,
            cost=self.calculate_cost(usage.input_tokens, usage.output_tokens),
        )

    def close(self) -> None:
        self.client.close()
