"""
Services Package - Business Logic Layer

This package contains service modules that encapsulate business logic,
separating it from HTTP routing concerns.

Services can be called from:
- Flask routes (HTTP requests)
- Background tasks (Celery)
- Tests

Available services:
- parsing_service: Invoice parsing, cost estimates and line item matching
- settings_service: Per-user parsing settings records
- cost_tracking_service: Daily parsing spend ledger
"""

from . import cost_tracking_service, parsing_service, settings_service

__all__ = [
    'cost_tracking_service',
    'parsing_service',
    'settings_service',
]
