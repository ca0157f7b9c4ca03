"""
Admin blueprint — audit logs and schema migrations.
"""

from flask import Blueprint

bp = Blueprint("admin", __name__)

from readiness.blueprints.admin import routes  # noqa: E402, F401
