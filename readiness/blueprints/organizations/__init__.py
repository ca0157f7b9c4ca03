"""
Organizations blueprint — organizations, members, invitations, API keys.
"""

from flask import Blueprint

bp = Blueprint("organizations", __name__)

from readiness.blueprints.organizations import routes  # noqa: E402, F401
