"""
Cost Tracking Service - Business Logic

Daily parsing spend ledger per user, kept as Redis float counters keyed by
UTC date. Counters expire two days after their last write.

Separates business logic from HTTP routing concerns.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import cache_manager
from config.parsing_config import ParsingConfig
from invoice_parsing.models import ParsingOutcome

logger = logging.getLogger(__name__)

LEDGER_TTL = 2 * 24 * 60 * 60


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def _cost_key(user_id: str, day: str, provider_id: Optional[str] = None) -> str:
    key = f"parsing:cost:{user_id}:{day}"
    return f"{key}:{provider_id}" if provider_id else key


def _documents_key(user_id: str, day: str) -> str:
    return f"parsing:docs:{user_id}:{day}"


def get_daily_spend(user_id: str, day: Optional[str] = None) -> float:
    """
    Get a user's total parsing spend for a day (default: today, UTC).

    Returns:
        Spend in USD; 0.0 when Redis is unavailable
    """
    return round(cache_manager.counter_get(_cost_key(user_id, day or _today())), 6)


def record_outcome(user_id: str, outcome: ParsingOutcome) -> float:
    """
    Add a parse's actual spend to today's ledger.

    Args:
        user_id: User identifier
        outcome: Finished parsing outcome

    Returns:
        Today's spend after recording
    """
    day = _today()
    cache_manager.counter_incr(_documents_key(user_id, day), 1, ttl=LEDGER_TTL)

    for attempt in outcome.attempts:
        if attempt.cost > 0:
            cache_manager.counter_incr(
                _cost_key(user_id, day, attempt.provider_id), attempt.cost, ttl=LEDGER_TTL
            )

    if outcome.total_cost > 0:
        new_total = cache_manager.counter_incr(
            _cost_key(user_id, day), outcome.total_cost, ttl=LEDGER_TTL
        )
        if new_total is None:
            logger.warning(
                f"Spend of ${outcome.total_cost:.4f} for user {user_id} not recorded (Redis unavailable)"
            )
            return outcome.total_cost
        return round(new_total, 6)

    return get_daily_spend(user_id, day)


def get_cost_summary(user_id: str, config: ParsingConfig, day: Optional[str] = None) -> dict:
    """
    Summarize a day's parsing spend against the user's daily limit.

    Returns:
        Dict with total spend, limit, remaining budget and per-provider spend
    """
    day = day or _today()
    spend = get_daily_spend(user_id, day)
    limit = config.daily_cost_limit

    by_provider = {}
    for provider_id in [*config.provider_order, "traditional"]:
        provider_spend = cache_manager.counter_get(_cost_key(user_id, day, provider_id))
        if provider_spend:
            by_provider[provider_id] = round(provider_spend, 6)

    return {
        "date": day,
        "total_spend": spend,
        "daily_limit": limit,
        "remaining": round(max(limit - spend, 0.0), 6),
        "percent_used": round(spend / limit * 100, 1) if limit > 0 else None,
        "documents_parsed": int(cache_manager.counter_get(_documents_key(user_id, day))),
        "by_provider": by_provider,
        "max_cost_per_document": config.max_cost_per_document,
    }
