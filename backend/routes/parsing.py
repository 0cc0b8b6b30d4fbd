"""
Parsing Routes - Flask Blueprint

Handles all invoice parsing endpoints including:
- Synchronous and background (Celery) parsing
- Cost estimation and strategy listing
- Parsing settings (API keys masked on read), provider key checks and
  billing status
- Daily cost analytics
- Line item matching against estimates

Routes are thin controllers that delegate to parsing_service and
settings_service for business logic.
"""

import logging

from flask import Blueprint, jsonify, request

from invoice_parsing.errors import ConfigurationError
from services import parsing_service, settings_service

logger = logging.getLogger(__name__)

parsing_bp = Blueprint('parsing', __name__)


def _error_response(e: Exception, action: str):
    """Map service exceptions to HTTP responses"""
    if isinstance(e, (ConfigurationError, ValueError)):
        return jsonify({'error': str(e)}), 400

    logger.exception(f"{action} error: {e}")
    return jsonify({'error': str(e)}), 500


def _user_id(data: dict = None) -> str:
    user_id = (data or {}).get('user_id') or request.args.get('user_id')
    if not user_id:
        raise ValueError('user_id is required')
    return str(user_id)


# ============================================================================
# Parsing
# ============================================================================

@parsing_bp.route('/api/invoices/parse', methods=['POST'])
def parse_invoice():
    """
    Parse extracted invoice text.

    Body:
        user_id: User identifier
        text: Extracted invoice text
        page_count: Number of pages (default 1)
        options: expected_format, strategy_override, supplier_name,
            project_context, timeout_seconds, document_id

    Returns:
        Parsing outcome with attempts, cost and confidence
    """
    try:
        data = request.get_json(silent=True) or {}
        result = parsing_service.parse_invoice_text(
            _user_id(data),
            data.get('text'),
            page_count=data.get('page_count', 1),
            options=data.get('options'),
        )
        return jsonify(result)

    except Exception as e:
        return _error_response(e, 'Invoice parse')


@parsing_bp.route('/api/invoices/parse/estimate', methods=['POST'])
def estimate_cost():
    """
    Estimate parsing cost per strategy without calling any provider.

    Body:
        user_id, text, page_count (optional), strategy (optional)

    Returns:
        Per-strategy estimates and remaining daily budget
    """
    try:
        data = request.get_json(silent=True) or {}
        result = parsing_service.estimate_parsing_cost(
            _user_id(data),
            data.get('text'),
            strategy=data.get('strategy'),
            page_count=data.get('page_count', 1),
        )
        return jsonify(result)

    except Exception as e:
        return _error_response(e, 'Cost estimate')


@parsing_bp.route('/api/invoices/parse/async', methods=['POST'])
def parse_invoice_async():
    """
    Queue a parse as a background job.

    Returns:
        202 with job_id
    """
    try:
        data = request.get_json(silent=True) or {}
        result = parsing_service.trigger_async_parse(
            _user_id(data),
            data.get('text'),
            page_count=data.get('page_count', 1),
            options=data.get('options'),
        )
        return jsonify(result), 202

    except Exception as e:
        return _error_response(e, 'Async parse')


@parsing_bp.route('/api/invoices/parse/status/<job_id>', methods=['GET'])
def get_job_status(job_id):
    """
    Get background parsing job status.

    Returns:
        Job status, with the parsing outcome once completed
    """
    try:
        status = parsing_service.get_job_status(job_id)
        http_status = status.pop('_http_status', 200)
        return jsonify(status), http_status

    except Exception as e:
        return _error_response(e, 'Job status')


@parsing_bp.route('/api/invoices/parse/strategies', methods=['GET'])
def get_strategies():
    """
    List parsing strategies with their resolved fallback chains.

    Query:
        user_id: User identifier
    """
    try:
        return jsonify(parsing_service.get_strategies(_user_id()))

    except Exception as e:
        return _error_response(e, 'Strategy listing')


# ============================================================================
# Settings
# ============================================================================

@parsing_bp.route('/api/settings/parsing-config', methods=['GET'])
def get_parsing_config():
    """
    Get the effective parsing configuration.

    API keys are never returned; only whether each provider has one.
    """
    try:
        return jsonify(settings_service.get_parsing_settings(_user_id()))

    except Exception as e:
        return _error_response(e, 'Parsing config read')


@parsing_bp.route('/api/settings/parsing-config', methods=['PUT'])
def update_parsing_config():
    """
    Update parsing settings.

    Body:
        user_id: User identifier
        settings: Partial settings (api_keys, models, default_strategy,
            provider_order, max_cost_per_document, daily_cost_limit,
            enable_fallback, collect_training_data)
    """
    try:
        data = request.get_json(silent=True) or {}
        result = settings_service.update_parsing_settings(
            _user_id(data), data.get('settings')
        )
        return jsonify(result)

    except Exception as e:
        return _error_response(e, 'Parsing config update')


@parsing_bp.route('/api/settings/test-provider', methods=['POST'])
def check_provider():
    """
    Check a provider API key with a live call; the key is stored only if valid.

    Body:
        user_id: User identifier
        provider: anthropic, gemini, openai or ollama
        api_key: Key to check (optional, defaults to the configured key)
        model: Model to check against (optional)

    Returns:
        provider, valid and saved flags
    """
    try:
        data = request.get_json(silent=True) or {}
        result = settings_service.check_provider_key(
            _user_id(data),
            data.get('provider'),
            api_key=data.get('api_key'),
            model=data.get('model'),
        )
        return jsonify(result)

    except Exception as e:
        return _error_response(e, 'Provider key check')


@parsing_bp.route('/api/settings/provider-status', methods=['GET'])
def get_provider_status():
    """
    Billing and reachability for each enabled provider.

    Query:
        user_id: User identifier
    """
    try:
        return jsonify(settings_service.get_provider_status(_user_id()))

    except Exception as e:
        return _error_response(e, 'Provider status')


# ============================================================================
# Analytics
# ============================================================================

@parsing_bp.route('/api/analytics/parsing-costs', methods=['GET'])
def get_parsing_costs():
    """
    Today's parsing spend against the daily limit.

    Query:
        user_id: User identifier
    """
    try:
        return jsonify(parsing_service.get_cost_analytics(_user_id()))

    except Exception as e:
        return _error_response(e, 'Parsing cost analytics')


# ============================================================================
# Line Item Matching
# ============================================================================

@parsing_bp.route('/api/invoices/match-line-items', methods=['POST'])
def match_line_items():
    """
    Match invoice line items to estimate line items.

    Body:
        invoice_items: [{description, total, quantity?, unit_price?, category?}]
        estimate_items: same shape
        min_confidence: optional, default 0.3
        weights: optional MatchWeights overrides
    """
    try:
        data = request.get_json(silent=True) or {}
        result = parsing_service.match_invoice_line_items(
            data.get('invoice_items'),
            data.get('estimate_items'),
            min_confidence=data.get('min_confidence', 0.3),
            weights=data.get('weights'),
        )
        return jsonify(result)

    except Exception as e:
        return _error_response(e, 'Line item matching')
