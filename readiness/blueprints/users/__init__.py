"""
Users blueprint — user directory and role management.
"""

from flask import Blueprint

bp = Blueprint("users", __name__)

from readiness.blueprints.users import routes  # noqa: E402, F401
