"""Routes package for API endpoints."""

from routes.health import health_bp
from routes.parsing import parsing_bp

__all__ = [
    "health_bp",
    "parsing_bp",
]
