"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies the limits per blueprint.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Blueprints that accept proposal / endorsement / report traffic
LIMITED_BLUEPRINTS = ("proposal", "progress_report")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Workflow endpoints: RATELIMIT_DEFAULT (60/minute)
        - Health check:       exempt

    Rate limiting is disabled in testing mode or when RATELIMIT_ENABLED
    is false.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    limit = app.config.get("RATELIMIT_DEFAULT", "60/minute")
    for bp_name in LIMITED_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(limit)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — workflow: %s, health: exempt", limit)
