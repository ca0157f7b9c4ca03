"""
Main blueprint — health check and API route index.
"""

from flask import Blueprint

bp = Blueprint("main", __name__)

# Import routes after blueprint creation to avoid circular imports.
from readiness.blueprints.main import routes  # noqa: E402, F401
