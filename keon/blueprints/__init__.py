"""
KEON Task Manager
Blueprint registry helpers.

Layer contract:
    - Blueprints parse + validate input, resolve the acting profile, call a
      service and shape the JSON response.
    - No db.session writes and no business rules here; services own both.
    - Service exceptions are translated once, by ``register_error_handlers``.
"""

import logging

from flask import request
from sqlalchemy.exc import SQLAlchemyError

from keon.core.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from keon.models import db
from keon.models.org import Profile
from keon.utils.errors import E, api_error
from keon.utils.helpers import parse_int

logger = logging.getLogger(__name__)

PROFILE_HEADER = "X-Profile-Id"


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def get_acting_profile():
    """Resolve the acting profile from the X-Profile-Id header.

    The header is set by the upstream authentication layer.

    Returns:
        (profile, err_response): exactly one of them is None.
    """
    profile_id = parse_int(request.headers.get(PROFILE_HEADER))
    if profile_id is None:
        return None, api_error(E.UNAUTHENTICATED, f"{PROFILE_HEADER} header is required")
    profile = db.session.get(Profile, profile_id)
    if profile is None or not profile.is_active:
        return None, api_error(E.UNAUTHENTICATED, "Unknown or inactive profile")
    return profile, None


def get_json_body():
    """Return the JSON body as a dict, or (None, 400 response) when absent."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return data, None


def register_error_handlers(app):
    """Map the service exception hierarchy onto the JSON error envelope."""

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @app.errorhandler(InvalidTransition)
    def _handle_transition(error: InvalidTransition):
        return api_error(E.INVALID_TRANSITION, str(error), details=error.details)

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @app.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error), details={"field": error.field})

    @app.errorhandler(PermissionDenied)
    def _handle_forbidden(error: PermissionDenied):
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(SQLAlchemyError)
    def _handle_database(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error in endpoint=%s", request.endpoint)
        return api_error(E.DATABASE, "Database error")
