"""
Analytics blueprint — organization dashboard and exports.
"""

from flask import Blueprint

bp = Blueprint("analytics", __name__)

from readiness.blueprints.analytics import routes  # noqa: E402, F401
