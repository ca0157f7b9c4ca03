"""
Authorization decorators for route-level access control.

These decorators enforce role, permission and organization checks on
blueprint routes.  They are used in combination with Flask-Login's
``@login_required`` to provide layered security:

    @bp.route('/api/admin/migrate', methods=['POST'])
    @login_required
    @role_required('system_admin')
    def run_migrations():
        ...

    @bp.route('/api/organizations/<int:org_id>')
    @login_required
    @permission_required('org:view:own')
    @organization_access_required('org_id')
    def get_organization(org_id):
        ...

Failures abort with 401/403; the JSON error handlers turn those into
the standard envelope.
"""

import logging
from functools import wraps

from flask import abort, g, request
from flask_login import current_user

from readiness import rbac

logger = logging.getLogger(__name__)


def _api_key_allows_role_routes() -> bool:
    """Role-gated routes take API keys only with the admin API scope."""
    api_key = g.get("api_key")
    return api_key is None or rbac.API_ADMIN_ACCESS in (api_key.scopes or [])


def role_required(*role_names: str):
    """
    Decorator that restricts access to users with one of the specified roles.

    Args:
        role_names: One or more role name strings (e.g., 'system_admin').
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if current_user.role not in role_names:
                logger.warning(
                    "Access denied: user %d (%s) with role '%s' "
                    "attempted %s %s (requires one of: %s)",
                    current_user.id,
                    current_user.email,
                    current_user.role,
                    request.method,
                    request.path,
                    ", ".join(role_names),
                )
                abort(403, description="Insufficient role for this action.")
            if not _api_key_allows_role_routes():
                abort(403, description="API key lacks the api:admin:access scope.")
            return func(*args, **kwargs)

        return wrapper

    return decorator


def permission_required(*permission_names: str):
    """
    Decorator that restricts access to users whose role grants any of
    the specified permissions.

    ``User.has_permission`` also applies the scopes of an API key used
    for the request.

    Args:
        permission_names: ``resource:action:scope`` strings
                          (e.g., 'survey:view:org').
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            granted = [
                name
                for name in permission_names
                if current_user.has_permission(name)
            ]
            if not granted:
                logger.warning(
                    "Access denied: user %d (%s) lacks permission '%s' for %s %s",
                    current_user.id,
                    current_user.email,
                    " | ".join(permission_names),
                    request.method,
                    request.path,
                )
                abort(403, description="Insufficient permissions.")
            return func(*args, **kwargs)

        return wrapper

    return decorator


def organization_access_required(org_id_kwarg: str = "org_id"):
    """
    Decorator that verifies the current user may see the organization
    named by a route keyword argument.

    Args:
        org_id_kwarg: Name of the route keyword argument containing the
                      organization's primary key.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            # pylint: disable=import-outside-toplevel
            from readiness.services import organization_service

            if not current_user.is_authenticated:
                abort(401)

            org_id = kwargs.get(org_id_kwarg)
            if org_id is None:
                abort(400)

            if not organization_service.user_can_access_organization(
                current_user, org_id
            ):
                logger.warning(
                    "Access denied: user %d (%s) to organization %s for %s %s",
                    current_user.id,
                    current_user.email,
                    org_id,
                    request.method,
                    request.path,
                )
                abort(403, description="Access denied to this organization.")

            return func(*args, **kwargs)

        return wrapper

    return decorator
