"""
Routes for the admin blueprint — audit logs and schema migrations.

Audit logs are open to system admins (every organization) and org
admins (their own organization).  Migration routes are system-admin
only.
"""

import logging

from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from flask import current_app, jsonify, request
from flask_login import current_user, login_required
from flask_migrate import upgrade

from readiness import rbac
from readiness.blueprints.admin import bp
from readiness.decorators import role_required
from readiness.errors import error_response
from readiness.extensions import db
from readiness.services import audit_service
from readiness.utils import get_pagination, pagination_dict, parse_datetime

logger = logging.getLogger(__name__)


# =========================================================================
# Audit Log Viewer (system_admin + org_admin)
# =========================================================================


@bp.route("/audit-logs")
@login_required
@role_required(rbac.SYSTEM_ADMIN, rbac.ORG_ADMIN)
def audit_logs():
    """
    Paginated audit log viewer with filtering.

    Query Parameters:
        userId, actionType, entityType, organizationId (system admins
        only), start, end, page, limit.
    """
    page, limit = get_pagination(default_limit=50, max_limit=200)

    if current_user.is_system_admin:
        organization_id = request.args.get("organizationId", type=int)
    else:
        organization_id = current_user.home_organization_id

    logs = audit_service.get_audit_logs(
        page=page,
        per_page=limit,
        user_id=request.args.get("userId", type=int),
        action_type=request.args.get("actionType") or None,
        entity_type=request.args.get("entityType") or None,
        organization_id=organization_id,
        start_date=parse_datetime(request.args.get("start"), "start"),
        end_date=parse_datetime(request.args.get("end"), "end"),
    )
    return jsonify(
        {
            "logs": [entry.to_dict() for entry in logs.items],
            "pagination": pagination_dict(logs),
        }
    )


@bp.route("/audit-logs/entity-types")
@login_required
@role_required(rbac.SYSTEM_ADMIN, rbac.ORG_ADMIN)
def audit_entity_types():
    """Distinct entity types for the audit log filter dropdown."""
    return jsonify({"entityTypes": audit_service.get_distinct_entity_types()})


# =========================================================================
# Schema migrations (system_admin only)
# =========================================================================


def _current_revision() -> str | None:
    with db.engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()


def _head_revision() -> str | None:
    config = current_app.extensions["migrate"].migrate.get_config()
    return ScriptDirectory.from_config(config).get_current_head()


@bp.route("/migrate/status")
@login_required
@role_required(rbac.SYSTEM_ADMIN)
def migration_status():
    current = _current_revision()
    head = _head_revision()
    return jsonify(
        {
            "currentRevision": current,
            "headRevision": head,
            "upToDate": current == head,
        }
    )


@bp.route("/migrate", methods=["POST"])
@login_required
@role_required(rbac.SYSTEM_ADMIN)
def run_migrations():
    """
    Apply pending Alembic migrations.

    Flask-Migrate exits the process on Alembic command errors, so
    ``SystemExit`` is caught alongside ordinary exceptions.
    """
    previous = _current_revision()
    try:
        upgrade()
    except (Exception, SystemExit) as exc:  # pylint: disable=broad-except
        db.session.rollback()
        logger.exception("Migration failed (from revision %s)", previous)
        return error_response(
            "Migration failed", 500, details={"message": str(exc) or repr(exc)}
        )

    current = _current_revision()
    audit_service.log_change(
        user_id=current_user.id,
        action_type="MIGRATE",
        entity_type="schema",
        entity_id=None,
        previous_value={"revision": previous},
        new_value={"revision": current},
    )
    db.session.commit()
    logger.info("Migrations applied: %s -> %s", previous, current)
    return jsonify(
        {
            "success": True,
            "previousRevision": previous,
            "currentRevision": current,
            "applied": previous != current,
        }
    )
