"""
OpenAI provider for invoice extraction
"""

from typing import Optional

from openai import APIError, OpenAI

from invoice_parsing.logging_config import get_logger

from .base_provider import AccountInfo, BaseLLMProvider, LLMResponse, ModelPricing

logger = get_logger(__name__)


class OpenAIProvider(BaseLLMProvider):
    """GPT models through Chat Completions in JSON mode"""

    # "gpt-4o-mini" must come before "gpt-4o"
    PRICING = {
        "gpt-4o-mini": ModelPricing(0.00015, 0.0006),
        "gpt-4o": ModelPricing(0.0025, 0.010),
        "gpt-4-turbo": ModelPricing(0.010, 0.030),
        "gpt-3.5-turbo": ModelPricing(0.0005, 0.0015),
    }
    DEFAULT_PRICING = PRICING["gpt-4o-mini"]

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: int = 30,
        api_base_url: Optional[str] = None,
        max_retries: int = 2,
    ):
        super().__init__(api_key, model, timeout)
        self.client = OpenAI(
            api_key=api_key,
            base_url=api_base_url,
            timeout=timeout,
            max_retries=max_retries,
        )

    def validate_api_key(self) -> bool:
        try:
            self.client.models.retrieve(self.model)
            return True
        except APIError as e:
            logger.warning(f"OpenAI key check failed for {self.model}: {e}")
            return False

    def get_account_info(self) -> AccountInfo:
        # Standard keys have no balance endpoint
        return AccountInfo(
            provider="openai",
            available=False,
            error="Balance not exposed via the API; see platform.openai.com/usage",
        )

    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        messages = [{"role": "user", "content": prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        response = self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.MAX_OUTPUT_TOKENS,
            temperature=0.1,
            response_format={"type": "json_object"},
            messages=messages,
        )
        usage = response.usage

        return LLMResponse(
            content=response.choices[0].message.content or "",
            input_tokens=usage.prompt_tokens,
            output_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            cost=self.calculate_cost(usage.prompt_tokens, usage.completion_tokens),
        )

    def close(self) -> None:
        self.client.close()
