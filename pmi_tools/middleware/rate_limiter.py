"""
Flask-Limiter policy for the onboarding API.

The shared ``limiter`` (pmi_tools/__init__.py) carries no default limits;
this module attaches a per-client-address budget to the onboarding
blueprint once it is registered. The health route stays unlimited.
"""

import logging

logger = logging.getLogger(__name__)

ONBOARDING_LIMIT = "120/minute"


def init_rate_limits(app, limiter):
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        logger.debug("Rate limiting disabled")
        return

    blueprint = app.blueprints.get("onboarding")
    if blueprint is None:
        logger.warning("Onboarding blueprint not registered; no rate limit applied")
        return

    limiter.limit(ONBOARDING_LIMIT)(blueprint)
    logger.info("Rate limit %s applied to onboarding API", ONBOARDING_LIMIT)
