"""
Per-blueprint rate limits.

The ``Limiter`` lives in ``buildtrack/__init__.py`` without default limits;
``init_rate_limits`` attaches limits once every blueprint is registered.

    supplier_response       SUPPLIER_RESPONSE_RATE_LIMIT (public token links)
    materials, purchase_orders,
    professional_activities,
    finance                 WRITE_RATE_LIMIT
    /api/v1/health          exempt
"""

import logging

logger = logging.getLogger(__name__)

_WRITE_BLUEPRINTS = ("materials", "purchase_orders", "professional_activities", "finance")


def init_rate_limits(app, limiter):
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        logger.info("Rate limiting off for this app")
        return

    limits = {"supplier_response": app.config.get("SUPPLIER_RESPONSE_RATE_LIMIT", "20 per minute")}
    write_limit = app.config.get("WRITE_RATE_LIMIT", "120 per minute")
    limits.update({name: write_limit for name in _WRITE_BLUEPRINTS})

    for bp_name, limit in limits.items():
        blueprint = app.blueprints.get(bp_name)
        if blueprint is not None:
            limiter.limit(limit)(blueprint)

    health = app.view_functions.get("health")
    if health is not None:
        limiter.exempt(health)

    logger.info("Rate limits applied", extra={"limits": limits})
