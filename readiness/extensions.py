"""
Flask extension instances.

Extensions are created here without binding to an application so that
the application factory can call ``init_app()`` on each one during
``create_app()``.  This avoids circular imports and follows the
standard Flask extension pattern.
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

# -- Database ORM ----------------------------------------------------------
# The ``db`` instance is imported by models and services throughout the app.
db = SQLAlchemy()

# -- Schema migrations (Alembic via Flask-Migrate) -------------------------
migrate = Migrate()

# -- Session and API key authentication ------------------------------------
# This is a JSON API: unauthenticated requests get a 401 envelope from
# the ``unauthorized_handler`` registered in the factory, never a redirect.
login_manager = LoginManager()
login_manager.session_protection = "basic"

# -- CSRF protection for cookie-session mutations --------------------------
csrf = CSRFProtect()
