"""
QA Tracking Dashboard
Per-blueprint rate limits (Flask-Limiter, keyed by remote address).

    ai                                  RATELIMIT_AI     (default 10/minute)
    requirement / testing / scenario    RATELIMIT_WRITE  (default 60/minute)
    dashboard                           RATELIMIT_READ   (default 200/minute)
    health                              exempt

The shared ``Limiter`` lives in ``app/__init__.py`` with no default limit.
Nothing is applied when TESTING is set.
"""

import logging

logger = logging.getLogger(__name__)

BLUEPRINT_LIMITS = {
    "ai": "RATELIMIT_AI",
    "requirement": "RATELIMIT_WRITE",
    "testing": "RATELIMIT_WRITE",
    "scenario": "RATELIMIT_WRITE",
    "dashboard": "RATELIMIT_READ",
}
EXEMPT_BLUEPRINTS = ("health",)


def init_rate_limits(app, limiter):
    """Attach limits to registered blueprints. Call after registration."""
    if app.config.get("TESTING"):
        logger.debug("Rate limits skipped (TESTING)")
        return

    applied = {}
    for bp_name, config_key in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(bp_name)
        if bp is None:
            continue
        applied[bp_name] = app.config[config_key]
        limiter.limit(applied[bp_name])(bp)

    for bp_name in EXEMPT_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp is not None:
            limiter.exempt(bp)

    logger.info("Rate limits applied: %s", applied)
