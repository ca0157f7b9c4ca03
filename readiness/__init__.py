"""
Application factory for the AI Readiness Platform API.

Usage::

    from readiness import create_app
    app = create_app()           # Uses FLASK_ENV to pick config.
    app = create_app("testing")  # Explicit config for tests.
"""

import logging
import os

from flask import Flask, request

from .config import config_by_name
from .errors import error_response, register_error_handlers
from .extensions import csrf, db, login_manager, migrate


def create_app(config_name: str | None = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_name: One of 'development', 'testing', or 'production'.
                     Defaults to the FLASK_ENV environment variable,
                     falling back to 'development'.

    Returns:
        A fully configured Flask application instance.
    """
    # Resolve the configuration class.
    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")
    config_class = config_by_name.get(config_name)
    if config_class is None:
        raise ValueError(
            f"Unknown config '{config_name}'. "
            f"Valid options: {list(config_by_name.keys())}"
        )

    app = Flask(__name__)
    app.config.from_object(config_class)

    # Refuse to run production with insecure defaults.
    if config_name == "production":
        config_class.validate_production_secrets(app.config)

    # -- Initialize extensions ---------------------------------------------
    _register_extensions(app)

    # -- Register blueprints -----------------------------------------------
    _register_blueprints(app)

    # -- Register error handlers -------------------------------------------
    register_error_handlers(app)

    # -- Register custom CLI commands --------------------------------------
    _register_cli_commands(app)

    # -- Configure logging -------------------------------------------------
    _configure_logging(app)

    return app


def _register_extensions(app: Flask) -> None:
    """Bind all Flask extensions to the application instance."""
    db.init_app(app)
    migrate.init_app(app, db, directory=app.config["MIGRATIONS_DIR"])
    login_manager.init_app(app)
    csrf.init_app(app)

    # Imported here to avoid circular imports with models.
    # pylint: disable=import-outside-toplevel
    from .models.user import User
    from .services import auth_service

    @login_manager.user_loader
    def load_user(user_id: str):
        """Load an active user by primary key for the session cookie."""
        user = db.session.get(User, int(user_id))
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.request_loader
    def load_user_from_request(req):
        """Authenticate ``Authorization: Bearer <api key>`` requests."""
        return auth_service.load_user_from_authorization(
            req.headers.get("Authorization")
        )

    @login_manager.unauthorized_handler
    def unauthorized():
        return error_response("Authentication required", 401)

    # CSRF applies to cookie sessions only; bearer requests carry no cookie.
    @app.before_request
    def csrf_protect_sessions():
        if not app.config.get("WTF_CSRF_ENABLED", True):
            return None
        if request.method not in app.config["WTF_CSRF_METHODS"]:
            return None
        auth_header = request.headers.get("Authorization", "")
        if auth_header.lower().startswith("bearer "):
            return None
        csrf.protect()
        return None


def _register_blueprints(app: Flask) -> None:
    """
    Import and register each blueprint with its URL prefix.

    Blueprints are imported inside this function to avoid circular
    imports — models and services can safely import ``db`` from
    extensions at module level.
    """
    # pylint: disable=import-outside-toplevel

    # Main blueprint — health check and API index.
    from .blueprints.main import bp as main_bp

    app.register_blueprint(main_bp)

    # Authentication — signup, login, password flows, permission checks.
    from .blueprints.auth import bp as auth_bp

    app.register_blueprint(auth_bp)

    # Organizations — members, invitations, API keys.
    from .blueprints.organizations import bp as organizations_bp

    app.register_blueprint(organizations_bp, url_prefix="/api/organizations")

    # Templates — survey templates, questions, versions.
    from .blueprints.templates import bp as templates_bp

    app.register_blueprint(templates_bp, url_prefix="/api/templates")

    # Surveys — survey lifecycle, responses, exports.
    from .blueprints.surveys import bp as surveys_bp

    app.register_blueprint(surveys_bp, url_prefix="/api/surveys")

    # Analytics — organization dashboard.
    from .blueprints.analytics import bp as analytics_bp

    app.register_blueprint(analytics_bp, url_prefix="/api/analytics")

    # Users — user directory and role management.
    from .blueprints.users import bp as users_bp

    app.register_blueprint(users_bp, url_prefix="/api/v1/users")

    # Admin — audit logs and schema migrations.
    from .blueprints.admin import bp as admin_bp

    app.register_blueprint(admin_bp, url_prefix="/api/admin")


def _register_cli_commands(app: Flask) -> None:
    """Register custom Flask CLI commands (e.g., flask db-check)."""
    from .cli import register_commands  # pylint: disable=import-outside-toplevel

    register_commands(app)


def _configure_logging(app: Flask) -> None:
    """
    Set the root log level from ``LOG_LEVEL``.

    SQL echo is left to ``SQLALCHEMY_ECHO``; the engine logger itself is
    quieted in debug so statements are not printed twice.
    """
    log_level = app.config.get("LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if app.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
