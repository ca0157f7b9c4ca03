"""
Auth blueprint — signup, login, password flows and permission checks.
"""

from flask import Blueprint

bp = Blueprint("auth", __name__)

from readiness.blueprints.auth import routes  # noqa: E402, F401
