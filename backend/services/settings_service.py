"""
Settings Service - Business Logic

Stores each user's parsing settings record (API keys, models, strategy,
provider order and cost limits) and turns it into a validated ParsingConfig.

Records live in the Redis cache DB without expiry. When Redis is down, reads
fall back to environment defaults and writes fail loudly.

Separates business logic from HTTP routing concerns.
"""

import logging
from dataclasses import asdict, replace

import cache_manager
from config.parsing_config import ParsingConfig, load_parsing_config, parse_provider_id
from invoice_parsing.adapters import PROVIDER_ADAPTERS

logger = logging.getLogger(__name__)

SETTINGS_KEYS = {
    "api_keys",
    "models",
    "default_strategy",
    "provider_order",
    "max_cost_per_document",
    "daily_cost_limit",
    "enable_fallback",
    "collect_training_data",
}


def _settings_key(user_id: str) -> str:
    return f"settings:parsing:{user_id}"


def _validate_user_id(user_id) -> str:
    if user_id is None or not str(user_id).strip():
        raise ValueError("user_id is required")
    return str(user_id).strip()


# ============================================================================
# Settings Record
# ============================================================================


def get_settings_record(user_id: str) -> dict:
    """
    Get the raw stored settings record for a user (includes API keys).

    Returns:
        Settings dict, empty if none stored or Redis unavailable
    """
    user_id = _validate_user_id(user_id)
    record = cache_manager.cache_get(_settings_key(user_id))
    return record if isinstance(record, dict) else {}


def load_config_for_user(user_id: str) -> ParsingConfig:
    """
    Build the user's ParsingConfig from their settings record and the environment.

    Raises:
        ConfigurationError: If the resulting configuration is invalid
    """
    return load_parsing_config(get_settings_record(user_id))


def get_parsing_settings(user_id: str) -> dict:
    """
    Get the effective parsing configuration with credentials masked.

    Returns:
        Dict with the effective config and which providers have stored keys
    """
    record = get_settings_record(user_id)
    config = load_parsing_config(record)

    return {
        "user_id": str(user_id),
        "config": config.public_dict(),
        "stored_api_keys": sorted(p for p, key in (record.get("api_keys") or {}).items() if key),
    }


def update_parsing_settings(user_id: str, updates: dict) -> dict:
    """
    Merge ``updates`` into the user's settings record.

    API keys and models are merged per provider; an empty API key removes
    the stored key. The merged record is validated before it is saved.

    Args:
        user_id: User identifier
        updates: Partial settings dict

    Returns:
        Masked settings view (same shape as get_parsing_settings)

    Raises:
        ValueError: If updates contain unknown keys
        ConfigurationError: If the merged settings are invalid
        RuntimeError: If the settings store is unavailable
    """
    user_id = _validate_user_id(user_id)
    if not isinstance(updates, dict) or not updates:
        raise ValueError("No settings provided")

    unknown = set(updates) - SETTINGS_KEYS
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

    record = get_settings_record(user_id)

    for key, value in updates.items():
        if key in ("api_keys", "models"):
            if not isinstance(value, dict):
                raise ValueError(f"{key} must be an object keyed by provider")
            merged = dict(record.get(key) or {})
            for provider_id, item in value.items():
                if item:
                    merged[provider_id] = item
                else:
                    merged.pop(provider_id, None)
            record[key] = merged
        else:
            record[key] = value

    # Raises ConfigurationError before anything is written
    load_parsing_config(record)

    if not cache_manager.cache_set(_settings_key(user_id), record, ttl=None):
        raise RuntimeError("Settings store unavailable")

    logger.info(f"Updated parsing settings for user {user_id}: {sorted(updates)}")
    return get_parsing_settings(user_id)


# ============================================================================
# Provider Checks
# ============================================================================


def check_provider_key(user_id: str, provider_id: str, api_key: str = None, model: str = None) -> dict:
    """
    Check a provider's credentials with a live call, storing the key only if it works.

    Without ``api_key`` the currently configured key is checked and nothing
    is written.

    Returns:
        Dict with provider, valid and saved flags (the key is never echoed)

    Raises:
        ConfigurationError: Unknown provider, or no key to test
        RuntimeError: If a valid key could not be saved
    """
    user_id = _validate_user_id(user_id)
    provider = parse_provider_id(provider_id)
    if api_key is not None and not isinstance(api_key, str):
        raise ValueError("api_key must be a string")
    if model is not None and not isinstance(model, str):
        raise ValueError("model must be a string")

    record = get_settings_record(user_id)
    if api_key:
        record["api_keys"] = {**(record.get("api_keys") or {}), provider.value: api_key}
    if model:
        record["models"] = {**(record.get("models") or {}), provider.value: model}

    # Validates the model name before any network call
    config = load_parsing_config(record)
    current = config.provider_settings(provider)
    # An environment key would shadow the candidate key
    settings = replace(current, api_key=api_key or current.api_key, enabled=True)

    # Raises ConfigurationError when the provider needs a key and has none
    adapter = PROVIDER_ADAPTERS[provider](settings, timeout=config.timeout, retry_attempts=0)
    client = adapter.create_client()
    try:
        valid = client.validate_api_key()
    finally:
        client.close()

    saved = False
    if valid and api_key:
        if not cache_manager.cache_set(_settings_key(user_id), record, ttl=None):
            raise RuntimeError("Settings store unavailable")
        saved = True

    logger.info(f"Provider key check for user {user_id}: {provider.value} valid={valid}")
    return {"provider": provider.value, "valid": valid, "saved": saved}


def get_provider_status(user_id: str) -> dict:
    """
    Billing and reachability snapshot for each enabled LLM provider.

    Returns:
        Dict with one AccountInfo dict per enabled provider
    """
    user_id = _validate_user_id(user_id)
    config = load_config_for_user(user_id)

    providers = []
    for provider in config.enabled_providers():
        adapter = PROVIDER_ADAPTERS[provider](
            config.provider_settings(provider), timeout=config.timeout, retry_attempts=0
        )
        client = adapter.create_client()
        try:
            info = client.get_account_info()
        finally:
            client.close()
        providers.append(asdict(info))

    return {"user_id": user_id, "providers": providers}
