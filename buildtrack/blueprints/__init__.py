"""
BuildTrack construction management API.
Blueprint registry and shared route helpers.
"""

import logging

from flask import g, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from buildtrack.core.exceptions import NotFoundError
from buildtrack.models import db
from buildtrack.utils.errors import SERVICE_EXCEPTIONS, E, api_error, exception_response

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=50, max_limit=500):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 50, capped at max_limit)
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


def page_args(default_limit=20):
    """Read ``page`` / ``limit`` query params for page-based listings."""
    page = request.args.get("page", 1, type=int) or 1
    limit = request.args.get("limit", default_limit, type=int) or default_limit
    return page, limit


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def current_role() -> str | None:
    return getattr(g, "current_user_role", None)


def current_user() -> str | None:
    return getattr(g, "current_user", None)


def register_error_handlers(bp):
    """Map service-layer and database exceptions to the error envelope on ``bp``."""

    def _handle_service_error(error: Exception):
        if isinstance(error, NotFoundError):
            logger.info("%s on %s", error, request.endpoint)
        return exception_response(error)

    for exc_type in SERVICE_EXCEPTIONS:
        bp.register_error_handler(exc_type, _handle_service_error)

    @bp.errorhandler(IntegrityError)
    def _handle_integrity(error: IntegrityError):
        db.session.rollback()
        logger.warning("Integrity error on %s: %s", request.endpoint, error.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate entry or constraint violation")

    @bp.errorhandler(SQLAlchemyError)
    def _handle_database(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error in endpoint=%s", request.endpoint)
        return api_error(E.DATABASE, "Database error")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
