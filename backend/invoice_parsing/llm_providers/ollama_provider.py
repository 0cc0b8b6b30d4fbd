"""
Ollama provider for invoice extraction on a self-hosted model server
"""

from typing import Optional

import requests

from invoice_parsing.logging_config import get_logger

from .base_provider import AccountInfo, BaseLLMProvider, LLMResponse

logger = get_logger(__name__)

OLLAMA_API_BASE = "http://localhost:11434"


class OllamaProvider(BaseLLMProvider):
    """Local models via /api/generate.

    Inference is free; ``cost_per_token`` lets operators charge a notional
    rate so local runs still show up in the cost ledger.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "mistral:7b",
        timeout: int = 30,
        api_base_url: Optional[str] = None,
        cost_per_token: float = 0.0,
    ):
        super().__init__(api_key, model, timeout)
        self.base_url = (api_base_url or OLLAMA_API_BASE).rstrip("/")
        self.cost_per_token = cost_per_token
        self.session = requests.Session()

    def _list_models(self, timeout: int) -> list[str]:
        response = self.session.get(f"{self.base_url}/api/tags", timeout=timeout)
        response.raise_for_status()
        return [m.get("name", "") for m in response.json().get("models", [])]

    def validate_api_key(self) -> bool:
        """True when the server is up and has the configured model pulled."""
        try:
            models = self._list_models(self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Ollama unreachable at {self.base_url}: {e}")
            return False

        if not any(self.model in name for name in models):
            logger.warning(f"Ollama model {self.model} not pulled; have {models}")
            return False
        return True

    def calculate_cost(self, tokens_in: int, tokens_out: int) -> float:
        return round((tokens_in + tokens_out) * self.cost_per_token, 6)

    def get_account_info(self) -> AccountInfo:
        try:
            models = self._list_models(5)
        except requests.exceptions.RequestException as e:
            return AccountInfo(
                provider="ollama",
                available=False,
                error=f"Could not reach Ollama at {self.base_url}: {e}",
            )

        return AccountInfo(
            provider="ollama",
            available=True,
            subscription_tier="Local (Free)",
            extra={"available_models": len(models), "host": self.base_url},
        )

    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        if system_prompt:
            prompt = f"{system_prompt}\n\n{prompt}"

        response = self.session.post(
            f"{self.base_url}/api/generate",
            json={
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "format": "json",
                "options": {"temperature": 0.1, "num_predict": self.MAX_OUTPUT_TOKENS},
            },
            # CPU inference is slow
            timeout=self.timeout * 2,
        )
        response.raise_for_status()
        data = response.json()
        content = data.get("response", "")

        input_tokens = data.get("prompt_eval_count") or self._estimate_tokens(prompt)
        output_tokens = data.get("eval_count") or self._estimate_tokens(content)

        return LLMResponse(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost=self.calculate_cost(input_tokens, output_tokens),
        )

    def close(self) -> None:
        self.session.close()
