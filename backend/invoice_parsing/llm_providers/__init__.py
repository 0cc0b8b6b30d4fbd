"""LLM Provider implementations"""

from .anthropic_provider import AnthropicProvider
from .base_provider import AccountInfo, BaseLLMProvider, LLMResponse, ModelPricing
from .google_provider import GoogleProvider
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider

__all__ = [
    "AccountInfo",
    "BaseLLMProvider",
    "LLMResponse",
    "ModelPricing",
    "AnthropicProvider",
    "OpenAIProvider",
    "GoogleProvider",
    "OllamaProvider",
]
