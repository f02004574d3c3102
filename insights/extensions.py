"""
Flask extensions for Charging Insights.

This module initializes Flask extensions that need to be shared
across the application to avoid circular imports.
"""

import os

from config import Config
from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

cache = Cache()

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per hour", "200 per minute"],
    storage_uri=Config.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    headers_enabled=True,  # Return X-RateLimit-* headers
)


def init_cache(app):
    """Initialize cache based on environment."""
    if app.config.get('TESTING') or os.environ.get('FLASK_TESTING'):
        cache.init_app(app, config={'CACHE_TYPE': 'NullCache'})
    else:
        cache.init_app(app, config={
            'CACHE_TYPE': 'SimpleCache',
            'CACHE_DEFAULT_TIMEOUT': Config.CACHE_TIMEOUT_SECONDS
        })


class RateLimits:
    """Common rate limit configurations for different endpoint types."""

    # Read-heavy endpoints (dashboard, analytics)
    READ_HEAVY = "500 per hour"

    # Expensive aggregations (deep analysis, comparisons, curated cohort)
    EXPENSIVE = "120 per hour"
