"""
Minimal health check endpoints

Reports Redis availability (settings store, spend ledger) and which
parsing providers are configured through the environment.
"""

from datetime import datetime

from flask import Blueprint, jsonify

import cache_manager
from config.parsing_config import load_parsing_config
from invoice_parsing.errors import ConfigurationError

# Create health blueprint
health_bp = Blueprint("health", __name__, url_prefix="/api")


def check_redis_connection() -> bool:
    """Test Redis connectivity.

    Returns:
        True if Redis is accessible
    """
    return cache_manager.get_cache_stats().get("available", False)


def check_parsing_config() -> bool:
    """Check the environment yields a valid parsing configuration.

    Returns:
        True if the default configuration loads
    """
    try:
        load_parsing_config()
        return True
    except ConfigurationError:
        return False


@health_bp.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint.

    The service still parses without Redis (traditional parsing, no spend
    ledger), so a Redis outage reports "degraded" rather than failing.

    Returns:
        200: Service is healthy or degraded
        503: Parsing configuration is invalid
    """
    checks = {
        "redis": check_redis_connection(),
        "parsing_config": check_parsing_config(),
    }

    status = "ok" if all(checks.values()) else "degraded"
    status_code = 200 if checks["parsing_config"] else 503

    return jsonify(
        {
            "status": status,
            "timestamp": datetime.now().isoformat(),
            "checks": checks,
        }
    ), status_code


@health_bp.route("/ping", methods=["GET"])
def ping():
    """Ultra-minimal ping endpoint for basic uptime checks.

    Returns:
        200: {"pong": true}
    """
    return jsonify({"pong": True}), 200
