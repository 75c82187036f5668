"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in funnel_vault/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from funnel_vault.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

PUSH_LIMIT = "10/minute"
WRITE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Sync endpoints:     10/minute  (each push fans out to the platform)
        - Content/approvals:  60/minute
        - Health check:       exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("sync_bp")
    if bp:
        limiter.limit(PUSH_LIMIT)(bp)

    for bp_name in ("content_bp", "approval_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: sync=%s content=%s", PUSH_LIMIT, WRITE_LIMIT,
    )
