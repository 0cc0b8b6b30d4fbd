"""
Google Gemini provider for invoice extraction

Talks to the Generative Language REST API directly so each instance
carries its own key on its own session.
"""

from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from invoice_parsing.logging_config import get_logger

from .base_provider import AccountInfo, BaseLLMProvider, LLMResponse, ModelPricing

logger = get_logger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GoogleProvider(BaseLLMProvider):
    PRICING = {
        "gemini-1.5-pro": ModelPricing(0.00125, 0.005),
        "gemini-1.5-flash": ModelPricing(0.000075, 0.0003),
        "gemini-2.0-flash": ModelPricing(0.0001, 0.0004),
    }
    DEFAULT_PRICING = PRICING["gemini-1.5-flash"]

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        timeout: int = 30,
        api_base_url: Optional[str] = None,
        max_retries: int = 2,
    ):
        """
        Args:
            api_key: Gemini API key for this user
            model: Gemini model id
            timeout: Per-request timeout in seconds
            api_base_url: Proxy base URL, if any
            max_retries: Retries for 429 and 5xx responses
        """
        super().__init__(api_key, model, timeout)
        self.base_url = (api_base_url or GEMINI_API_BASE).rstrip("/")
        self.model_url = f"{self.base_url}/models/{model}"

        self.session = requests.Session()
        self.session.headers["x-goog-api-key"] = api_key
        self.session.mount(
            "https://",
            HTTPAdapter(
                max_retries=Retry(
                    total=max_retries,
                    backoff_factor=0.5,
                    status_forcelist=[429, 500, 502, 503, 504],
                    allowed_methods=["GET", "POST"],
                )
            ),
        )

    def validate_api_key(self) -> bool:
        try:
            response = self.session.get(self.model_url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Gemini key check failed: {e}")
            return False
        return response.ok

    def get_account_info(self) -> AccountInfo:
        # No public billing endpoint for Gemini keys
        return AccountInfo(
            provider="gemini",
            available=False,
            error="Billing not exposed via the API; see console.cloud.google.com",
        )

    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.1,
                "maxOutputTokens": self.MAX_OUTPUT_TOKENS,
                "responseMimeType": "application/json",
            },
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        response = self.session.post(
            f"{self.model_url}:generateContent", json=payload, timeout=self.timeout
        )
        response.raise_for_status()
        data = response.json()

        candidates = data.get("candidates") or [{}]
        parts = candidates[0].get("content", {}).get("parts", [])
        content = "".join(part.get("text", "") for part in parts)

        # usageMetadata is omitted on some blocked responses
        usage = data.get("usageMetadata") or {}
        input_tokens = usage.get("promptTokenCount") or self._estimate_tokens(prompt)
        output_tokens = usage.get("candidatesTokenCount") or self._estimate_tokens(content)

        return LLMResponse(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost=self.calculate_cost(input_tokens, output_tokens),
        )

    def close(self) -> None:
        self.session.close()
