"""
Rate limiting configuration for the QuestLog API.

Uses Flask-Limiter to protect endpoints that can trigger upstream IGDB calls.

Rate Limit Tiers:
- Heavy: /api/search, /api/catalog/refresh (may hit IGDB)
- Light: /api/search/cached, /api/health (local reads only)
"""

import os
from flask import jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Initialize limiter (attached to the app in create_app)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"],
    storage_uri=os.environ.get("RATELIMIT_STORAGE_URI", "memory://"),
    strategy="fixed-window",
    headers_enabled=True,
)


# ==============================================================================
# RATE LIMIT TIERS
# ==============================================================================

HEAVY_LIMIT = "30 per minute"

LIGHT_LIMIT = "120 per minute"


def limit_heavy(f):
    """Apply heavy rate limit to operations that may call upstream."""
    return limiter.limit(HEAVY_LIMIT)(f)


def limit_light(f):
    """Apply light rate limit to cheap operations."""
    return limiter.limit(LIGHT_LIMIT)(f)


# ==============================================================================
# ERROR HANDLER
# ==============================================================================

def rate_limit_exceeded_handler(e):
    """JSON 429 with a Retry-After hint."""
    retry_after = getattr(e, 'retry_after', None) or 60
    response = jsonify({
        "error": "Rate limit exceeded",
        "code": "rate_limited",
        "message": str(e.description),
        "retry_after": retry_after
    })
    response.status_code = 429
    response.headers['Retry-After'] = str(retry_after)
    return response


# ==============================================================================
# INITIALIZATION
# ==============================================================================

def init_rate_limiting(app):
    """
    Initialize rate limiting for a Flask app.

    Call this in create_app() after app configuration.
    """
    if app.config.get('DISABLE_RATE_LIMITING'):
        app.config['RATELIMIT_ENABLED'] = False

    limiter.init_app(app)

    app.errorhandler(429)(rate_limit_exceeded_handler)

    if app.config.get('DISABLE_RATE_LIMITING'):
        limiter.enabled = False

    return limiter
