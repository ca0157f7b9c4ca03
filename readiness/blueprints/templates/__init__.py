"""
Templates blueprint — survey templates, their questions and versions.
"""

from flask import Blueprint

bp = Blueprint("templates", __name__)

from readiness.blueprints.templates import routes  # noqa: E402, F401
