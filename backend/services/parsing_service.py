"""
Parsing Service - Business Logic

Orchestrates invoice parsing for HTTP routes and Celery tasks:
- Loads the user's parsing configuration (settings record + environment)
- Reads today's spend so the cost guard can enforce the daily limit
- Runs the fallback chain and records the actual spend
- Cost estimation, strategy listing and line item matching

Separates business logic from HTTP routing concerns.
"""

import logging
from datetime import datetime
from typing import Optional

from invoice_parsing.cancellation import CancellationToken
from invoice_parsing.confidence import LineItemMatchScorer, MatchWeights
from invoice_parsing.line_item_matcher import line_item_from_dict, match_line_items
from invoice_parsing.models import ParseOptions
from invoice_parsing.orchestrator import ParsingOrchestrator
from services import cost_tracking_service, settings_service

logger = logging.getLogger(__name__)


def _validate_page_count(page_count) -> int:
    try:
        page_count = int(page_count)
    except (TypeError, ValueError):
        raise ValueError(f"page_count must be an integer: {page_count}")
    if page_count < 1:
        raise ValueError(f"page_count must be >= 1: {page_count}")
    return page_count


# ============================================================================
# Parsing
# ============================================================================


def parse_invoice_text(
    user_id: str,
    text: str,
    page_count: int = 1,
    options: Optional[dict] = None,
    cancellation: Optional[CancellationToken] = None,
) -> dict:
    """
    Parse extracted invoice text with the user's configured strategy.

    Args:
        user_id: User identifier (selects the settings record and spend ledger)
        text: Extracted invoice text
        page_count: Number of pages the text came from
        options: expected_format, strategy_override, supplier_name,
            project_context, timeout_seconds, document_id
        cancellation: Optional token to abort the fallback chain

    Returns:
        ParsingOutcome as a dict, plus today's spend after this parse

    Raises:
        ValueError: If inputs are invalid
        ConfigurationError: If the strategy or settings are invalid
    """
    if not text or not str(text).strip():
        raise ValueError("Invoice text is required")
    page_count = _validate_page_count(page_count)

    config = settings_service.load_config_for_user(user_id)
    daily_spend = cost_tracking_service.get_daily_spend(user_id)

    orchestrator = ParsingOrchestrator(config)
    outcome = orchestrator.parse_invoice(
        text,
        page_count=page_count,
        options=ParseOptions.from_dict(options),
        accumulated_daily_cost=daily_spend,
        cancellation=cancellation,
    )

    spend_after = cost_tracking_service.record_outcome(user_id, outcome)

    result = outcome.to_dict()
    result["daily_spend"] = spend_after
    result["daily_limit"] = config.daily_cost_limit
    return result


def estimate_parsing_cost(
    user_id: str,
    text: str,
    strategy: Optional[str] = None,
    page_count: int = 1,
) -> dict:
    """
    Estimate parsing cost for one strategy, or for every strategy.

    Returns:
        Dict with per-strategy estimates and today's remaining budget

    Raises:
        ValueError: If text is empty
        ConfigurationError: If the strategy is unknown
    """
    if not text or not str(text).strip():
        raise ValueError("Invoice text is required")
    page_count = _validate_page_count(page_count)

    config = settings_service.load_config_for_user(user_id)
    orchestrator = ParsingOrchestrator(config)

    names = [strategy] if strategy else orchestrator.registry.names()
    estimates = [orchestrator.estimate_cost(text, name, page_count) for name in names]

    daily_spend = cost_tracking_service.get_daily_spend(user_id)
    return {
        "default_strategy": config.default_strategy,
        "estimates": estimates,
        "daily_spend": daily_spend,
        "daily_limit": config.daily_cost_limit,
        "daily_remaining": round(max(config.daily_cost_limit - daily_spend, 0.0), 6),
    }


def get_strategies(user_id: str) -> dict:
    """
    List parsing strategies with the chains they resolve to for this user.
    """
    config = settings_service.load_config_for_user(user_id)
    orchestrator = ParsingOrchestrator(config)
    return {
        "default_strategy": config.default_strategy,
        "enabled_providers": [p.value for p in config.enabled_providers()],
        "strategies": orchestrator.available_strategies(),
    }


def get_cost_analytics(user_id: str) -> dict:
    """Today's parsing spend against the user's daily limit"""
    config = settings_service.load_config_for_user(user_id)
    return cost_tracking_service.get_cost_summary(user_id, config)


# ============================================================================
# Line Item Matching
# ============================================================================


def match_invoice_line_items(
    invoice_items: list,
    estimate_items: list,
    min_confidence: float = 0.3,
    weights: Optional[dict] = None,
) -> dict:
    """
    Match invoice line items to estimate line items.

    Args:
        invoice_items: List of {description, total, quantity?, unit_price?, category?}
        estimate_items: Same shape, from the project estimate
        min_confidence: Lowest score reported as a match
        weights: Optional MatchWeights overrides

    Returns:
        Dict with matches and a summary count per match type

    Raises:
        ValueError: If items are malformed or weights unknown
    """
    if not isinstance(invoice_items, list) or not isinstance(estimate_items, list):
        raise ValueError("invoice_items and estimate_items must be lists")

    try:
        match_weights = MatchWeights(**(weights or {}))
    except TypeError as e:
        raise ValueError(f"Invalid match weights: {e}")

    matches = match_line_items(
        [line_item_from_dict(item) for item in invoice_items],
        [line_item_from_dict(item) for item in estimate_items],
        scorer=LineItemMatchScorer(match_weights),
        min_confidence=float(min_confidence),
    )

    summary = {"exact": 0, "partial": 0, "conceptual": 0, "none": 0}
    for match in matches:
        summary[match.match_type] += 1

    return {
        "matches": [match.to_dict() for match in matches],
        "summary": summary,
    }


# ============================================================================
# Background Jobs
# ============================================================================


def trigger_async_parse(
    user_id: str, text: str, page_count: int = 1, options: Optional[dict] = None
) -> dict:
    """
    Queue a parse as a Celery job.

    Returns:
        Job details with job_id and status

    Raises:
        ValueError: If inputs are invalid
    """
    if not text or not str(text).strip():
        raise ValueError("Invoice text is required")
    page_count = _validate_page_count(page_count)

    from tasks.parsing_tasks import parse_invoice_task

    task = parse_invoice_task.apply_async(args=[user_id, text, page_count, options or {}])

    return {
        "job_id": task.id,
        "status": "queued",
        "message": "Parsing job started",
        "started_at": datetime.now().isoformat(),
    }


def get_job_status(job_id: str) -> dict:
    """
    Get parsing job status by Celery task ID.

    Args:
        job_id: Celery task ID

    Returns:
        Job status dict with the outcome once finished
    """
    from celery.result import AsyncResult
    from celery_app import celery_app

    task = AsyncResult(job_id, app=celery_app)

    if task.state == "PENDING":
        return {
            "job_id": job_id,
            "status": "pending",
            "message": "Job not found or not started",
            "_http_status": 404,
        }

    elif task.state == "SUCCESS":
        return {"job_id": job_id, "status": "completed", "result": task.result}

    elif task.state == "FAILURE":
        return {"job_id": job_id, "status": "failed", "error": str(task.info)}

    else:
        return {"job_id": job_id, "status": task.state.lower()}
