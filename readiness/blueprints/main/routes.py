"""
Routes for the main blueprint — health check and API route index.
"""

from flask import current_app, jsonify
from sqlalchemy import text

from readiness.blueprints.main import bp
from readiness.extensions import db

_IGNORED_METHODS = {"HEAD", "OPTIONS"}


@bp.route("/health")
def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns 200 if the app is running and can reach the database.
    """
    try:
        db.session.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}, 200
    except Exception as exc:  # pylint: disable=broad-except
        db.session.rollback()
        current_app.logger.error("Health check failed: %s", exc)
        return {"status": "unhealthy", "database": "unreachable"}, 503


@bp.route("/api/docs")
def api_docs():
    """List every ``/api`` route with its HTTP methods."""
    routes = []
    for rule in current_app.url_map.iter_rules():
        if not rule.rule.startswith("/api"):
            continue
        routes.append(
            {
                "path": rule.rule,
                "methods": sorted((rule.methods or set()) - _IGNORED_METHODS),
                "endpoint": rule.endpoint,
            }
        )
    routes.sort(key=lambda r: (r["path"], r["methods"]))
    return jsonify({"routes": routes, "count": len(routes)})
