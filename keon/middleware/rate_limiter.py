"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in keon/__init__.py with no default limits; this module applies
granular limits per route category.

Usage:
    from keon.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "120/minute"
READ_LIMIT = "300/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Server functions: RECURRENCE_TRIGGER_RATE_LIMIT (default 30/minute)
        - Workflow mutations: 120/minute
        - Reads / templates: 300/minute
        - Health probes: exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    functions_limit = app.config.get("RECURRENCE_TRIGGER_RATE_LIMIT", "30/minute")
    bp = app.blueprints.get("functions")
    if bp:
        limiter.limit(functions_limit)(bp)

    for bp_name in ("requests", "tasks", "validation"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in ("templates", "notifications"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: functions=%s, write=%s, read=%s",
        functions_limit, WRITE_LIMIT, READ_LIMIT,
    )
