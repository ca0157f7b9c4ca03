"""
Audit service — records all data changes and queries audit logs.

Every CREATE, UPDATE, and DELETE operation in the application passes
through this service so that a complete audit trail is maintained.
The ``log_change`` function is the primary entry point, called by
other services before they commit.
"""

import json
import logging
from datetime import datetime
from typing import Any

from flask import request
from sqlalchemy import desc

from readiness.extensions import db
from readiness.models.audit import AuditLog

logger = logging.getLogger(__name__)


# -- Write audit entries ---------------------------------------------------


def log_change(
    user_id: int | None,
    action_type: str,
    entity_type: str,
    entity_id: int | None,
    previous_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
    organization_id: int | None = None,
) -> AuditLog:
    """
    Record a data change in the audit log.

    Args:
        user_id:         ID of the acting user, or None for system actions.
        action_type:     CREATE, UPDATE, DELETE, LOGIN, LOGOUT, ... .
        entity_type:     Entity name (e.g., 'survey_template').
        entity_id:       Primary key of the affected record.
        previous_value:  Dict of the record state before the change.
        new_value:       Dict of the record state after the change.
        organization_id: Tenant the change belongs to, when known.

    Returns:
        The newly created AuditLog record.
    """
    ip_address = None
    user_agent = None
    try:
        ip_address = request.remote_addr
        user_agent = str(request.user_agent)[:500]
    except RuntimeError:
        # Outside of a request context (e.g., CLI command).
        pass

    entry = AuditLog(
        user_id=user_id,
        organization_id=organization_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        previous_value=(
            json.dumps(previous_value, default=str) if previous_value else None
        ),
        new_value=json.dumps(new_value, default=str) if new_value else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.add(entry)
    db.session.flush()

    logger.info(
        "Audit: %s %s:%s by user %s",
        action_type,
        entity_type,
        entity_id,
        user_id,
    )
    return entry


def log_login(user_id: int, organization_id: int | None = None) -> AuditLog:
    """Record a successful user login."""
    return log_change(
        user_id=user_id,
        action_type="LOGIN",
        entity_type="user",
        entity_id=user_id,
        organization_id=organization_id,
    )


def log_logout(user_id: int, organization_id: int | None = None) -> AuditLog:
    """Record a user logout."""
    return log_change(
        user_id=user_id,
        action_type="LOGOUT",
        entity_type="user",
        entity_id=user_id,
        organization_id=organization_id,
    )


def log_failed_login(email: str, user_id: int | None = None) -> AuditLog:
    """Record a rejected login attempt; the email is kept, never the password."""
    return log_change(
        user_id=user_id,
        action_type="LOGIN_FAILED",
        entity_type="user",
        entity_id=user_id,
        new_value={"email": email},
    )


# -- Query audit logs ------------------------------------------------------


def get_audit_logs(
    page: int = 1,
    per_page: int = 50,
    user_id: int | None = None,
    action_type: str | None = None,
    entity_type: str | None = None,
    organization_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    """
    Query audit logs with optional filters and pagination.

    Returns:
        A SQLAlchemy pagination object with ``.items``, ``.pages``,
        ``.total``, etc.
    """
    query = AuditLog.query.order_by(desc(AuditLog.created_at), desc(AuditLog.id))

    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if action_type:
        query = query.filter(AuditLog.action_type == action_type)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if organization_id is not None:
        query = query.filter(AuditLog.organization_id == organization_id)
    if start_date:
        query = query.filter(AuditLog.created_at >= start_date)
    if end_date:
        query = query.filter(AuditLog.created_at <= end_date)

    return query.paginate(page=page, per_page=per_page, error_out=False)


def get_recent_activity(organization_id: int, limit: int = 10) -> list[AuditLog]:
    """Return the newest audit entries for one organization."""
    return (
        AuditLog.query.filter(AuditLog.organization_id == organization_id)
        .order_by(desc(AuditLog.created_at), desc(AuditLog.id))
        .limit(limit)
        .all()
    )


def get_distinct_entity_types() -> list[str]:
    """Return a sorted list of distinct entity_type values in the audit log."""
    rows = (
        db.session.query(AuditLog.entity_type)
        .distinct()
        .order_by(AuditLog.entity_type)
        .all()
    )
    return [row[0] for row in rows]
