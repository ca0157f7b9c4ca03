"""
Surveys blueprint — survey lifecycle, responses and exports.
"""

from flask import Blueprint

bp = Blueprint("surveys", __name__)

from readiness.blueprints.surveys import routes  # noqa: E402, F401
