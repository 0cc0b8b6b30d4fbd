"""Core test fixtures.

Provides reusable fixtures for the Flask test client, an in-memory Redis
double, scripted provider adapters and parsing configurations.

Tests never touch a real Redis server or a real LLM provider.
"""

import os
import tempfile

# Logs go to a throwaway directory; set before any project import
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="invoice-parsing-logs-"))

import pytest
import responses
from flask import Flask

import cache_manager
from config.parsing_config import (
    DEFAULT_COST_PER_1K,
    DEFAULT_MODELS,
    LLM_PROVIDERS,
    ParsingConfig,
    ParsingProvider,
    ParsingThresholds,
    ProviderSettings,
)
from invoice_parsing.adapters import ProviderAdapter
from invoice_parsing.models import ParseAttemptResult, ParsedInvoice

PARSING_ENV_VARS = [
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
    "OPENAI_API_KEY",
    "OLLAMA_BASE_URL",
    "ANTHROPIC_ADMIN_API_KEY",
    "PDF_PROVIDER_ORDER",
    "PDF_PARSING_STRATEGY",
    "PARSING_TIMEOUT",
    "PARSING_RETRY_ATTEMPTS",
    "PARSING_USABLE_FLOOR",
]

SAMPLE_INVOICE_TEXT = """TAX INVOICE
BuildRight Supplies Ltd
Invoice Number: INV-2024-001
Date: 15/03/2024
Description: Framing materials for Lot 12 extension

Item 1: Timber framing 90x45 - Qty: 10 - $25.00 each - $250.00
Labour - 8 hours - $65.00/hour - $520.00

Subtotal: $770.00
GST (15%): $115.50
Total: $885.50
"""


# ============================================================================
# ENVIRONMENT ISOLATION
# ============================================================================


@pytest.fixture(autouse=True)
def clean_parsing_env(monkeypatch):
    """Remove provider credentials so tests only see what they configure."""
    for name in PARSING_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# ============================================================================
# REDIS DOUBLE
# ============================================================================


class FakePipeline:
    def __init__(self, redis_double):
        self.redis = redis_double
        self.commands = []

    def incrbyfloat(self, key, amount):
        self.commands.append(("incrbyfloat", key, amount))
        return self

    def expire(self, key, ttl):
        self.commands.append(("expire", key, ttl))
        return self

    def execute(self):
        results = []
        for command, key, arg in self.commands:
            results.append(getattr(self.redis, command)(key, arg))
        self.commands = []
        return results


class FakeRedis:
    """Minimal in-memory stand-in for the redis.Redis calls cache_manager makes"""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = value
        self.ttls.pop(key, None)
        return True

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def incrbyfloat(self, key, amount):
        value = float(self.store.get(key, 0)) + float(amount)
        self.store[key] = repr(value)
        return value

    def expire(self, key, ttl):
        self.ttls[key] = ttl
        return key in self.store

    def pipeline(self):
        return FakePipeline(self)

    def info(self):
        return {"used_memory_human": "1K", "keyspace_hits": 0, "keyspace_misses": 0}

    def dbsize(self):
        return len(self.store)


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """Route cache_manager to an in-memory Redis double."""
    redis_double = FakeRedis()
    monkeypatch.setattr(cache_manager, "_redis_client", redis_double)
    return redis_double


@pytest.fixture
def redis_unavailable(monkeypatch):
    """Simulate Redis being down."""
    monkeypatch.setattr(cache_manager, "get_redis_client", lambda: None)


# ============================================================================
# FLASK
# ============================================================================


@pytest.fixture(scope="session")
def app() -> Flask:
    """Flask app with test configuration."""
    from app import app as flask_app

    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app: Flask):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def mock_responses():
    """Enable HTTP request mocking for the requests library."""
    with responses.RequestsMock() as rsps:
        yield rsps


# ============================================================================
# PARSING FIXTURES
# ============================================================================


def make_config(enabled=(), **overrides) -> ParsingConfig:
    """Build a ParsingConfig with the given LLM providers enabled.

    Unlike load_parsing_config this never reads the environment.
    """
    providers = {}
    for provider in LLM_PROVIDERS:
        is_enabled = provider.value in enabled
        providers[provider] = ProviderSettings(
            provider=provider,
            model=DEFAULT_MODELS[provider],
            api_key=f"test-{provider.value}-key" if is_enabled else None,
            enabled=is_enabled,
            cost_per_1k=DEFAULT_COST_PER_1K[provider],
        )

    settings = {
        "default_strategy": "llm-primary",
        "provider_order": tuple(enabled) or ("anthropic", "gemini", "openai"),
        "providers": providers,
        "max_cost_per_document": 1.0,
        "daily_cost_limit": 10.0,
        "thresholds": ParsingThresholds(),
    }
    settings.update(overrides)
    return ParsingConfig(**settings)


def make_result(provider_id, success=True, confidence=0.9, cost=0.0, error=None):
    return ParseAttemptResult(
        provider_id=provider_id,
        success=success,
        confidence=confidence,
        extracted_fields=(
            ParsedInvoice(invoice_number=f"{provider_id}-1", total=100.0, confidence=confidence)
            if success
            else None
        ),
        cost=cost,
        duration_ms=1.0,
        error=error,
    )


class FakeAdapter(ProviderAdapter):
    """Adapter that replays scripted results or raises scripted exceptions."""

    def __init__(self, provider_id, result=None, estimate=0.0, raises=None, on_parse=None):
        self.provider = ParsingProvider(provider_id)
        self.result = result or make_result(provider_id)
        self.estimate = estimate
        self.raises = raises
        self.on_parse = on_parse
        self.calls = 0

    def parse(self, text, page_count=1, options=None, cancellation=None):
        self.calls += 1
        if self.on_parse:
            self.on_parse(cancellation)
        if self.raises:
            raise self.raises
        return self.result

    def estimate_cost(self, text, page_count=1):
        return self.estimate


@pytest.fixture
def sample_invoice_text():
    return SAMPLE_INVOICE_TEXT
