"""
BuildTrack: construction project management API.

    from buildtrack import create_app
    app = create_app()            # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from buildtrack.auth import init_auth
from buildtrack.config import config
from buildtrack.middleware.logging_config import configure_logging
from buildtrack.middleware.rate_limiter import init_rate_limits
from buildtrack.middleware.timing import init_request_timing
from buildtrack.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()
# storage comes from RATELIMIT_STORAGE_URI; limits are attached per blueprint
limiter = Limiter(key_func=get_remote_address, default_limits=[])

_HTTP_ERRORS = {
    404: "Not found",
    405: "Method not allowed",
    413: "Request body too large",
    415: "Content-Type must be application/json",
}


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _blueprints():
    from buildtrack.blueprints.audit_bp import audit_bp
    from buildtrack.blueprints.dashboard_bp import dashboard_bp
    from buildtrack.blueprints.finance_bp import finance_bp
    from buildtrack.blueprints.material_bp import material_bp
    from buildtrack.blueprints.phase_template_bp import phase_template_bp
    from buildtrack.blueprints.professional_activity_bp import professional_activity_bp
    from buildtrack.blueprints.professional_service_bp import professional_service_bp
    from buildtrack.blueprints.project_bp import project_bp
    from buildtrack.blueprints.purchase_order_bp import purchase_order_bp
    from buildtrack.blueprints.supplier_response_bp import supplier_response_bp

    return (
        project_bp, phase_template_bp, material_bp,
        professional_service_bp, professional_activity_bp,
        purchase_order_bp, supplier_response_bp,
        finance_bp, dashboard_bp, audit_bp,
    )


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _init_request_guards(app):
    # the JSON content-type check lives in buildtrack.auth
    @app.before_request
    def _limit_body_size():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413)


def _create_tables(app):
    # models must be imported for create_all and Alembic autogenerate
    from buildtrack.models import (  # noqa: F401
        audit, finance, material, phase_template, professional, project, purchase_order,
    )

    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as exc:
            app.logger.warning("Table creation skipped: %s", exc)


def _register_http_errors(app):
    def _simple(status, message):
        def handler(_error):
            body = {"success": False, "error": message}
            if status == 404:
                body["path"] = request.path
            return body, status
        return handler

    for status, message in _HTTP_ERRORS.items():
        app.register_error_handler(status, _simple(status, message))

    @app.errorhandler(429)
    def rate_limited(e):
        return {"success": False, "error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return {"success": False, "error": "Internal server error"}, 500


def _register_cli(app):
    @app.cli.command("seed-phase-templates")
    def seed_phase_templates_cmd():
        """Seed the default residential phase template."""
        from buildtrack.services.phase_template_service import seed_default_templates
        count = seed_default_templates()
        db.session.commit()
        logger.info("Seeded %s new phase templates.", count)


def create_app(config_name=None):
    """Build the application for ``config_name`` (defaults to ``APP_ENV``)."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    init_auth(app)
    _init_request_guards(app)
    _create_tables(app)

    for blueprint in _blueprints():
        app.register_blueprint(blueprint)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "BuildTrack"}

    _register_cli(app)
    _register_http_errors(app)
    init_rate_limits(app, limiter)
    return app
