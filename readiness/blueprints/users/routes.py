"""
Routes for the users blueprint — user directory, profile updates and
global role management.

Non-system-admins only ever see users of their own organization.
"""

from flask import jsonify, request
from flask_login import current_user, login_required

from readiness import rbac
from readiness.blueprints.users import bp
from readiness.decorators import permission_required
from readiness.errors import PermissionDeniedError, ValidationError
from readiness.services import auth_service, user_service
from readiness.utils import get_json_body, get_pagination, pagination_dict

_USER_STATUSES = ("active", "inactive")


@bp.route("", methods=["GET"])
@login_required
@permission_required(rbac.USER_VIEW_ORG, rbac.USER_VIEW_ALL)
def list_users():
    """
    Paginated user list.

    Query Parameters:
        search (str):         Matches email, first or last name.
        role (str):           Exact global role.
        status (str):         ``active`` or ``inactive``.
        organizationId (int): System admins only; others are pinned to
                              their own organization.
        page, limit (1-100).
    """
    page, limit = get_pagination()
    role = request.args.get("role") or None
    status = request.args.get("status") or None
    if role is not None and not rbac.is_valid_role(role):
        raise ValidationError(f"Invalid role '{role}'.")
    if status is not None and status not in _USER_STATUSES:
        raise ValidationError("status must be 'active' or 'inactive'.")

    if current_user.is_system_admin:
        organization_id = request.args.get("organizationId", type=int)
    else:
        organization_id = current_user.home_organization_id
        if organization_id is None:
            raise PermissionDeniedError("You do not belong to an organization.")

    result = user_service.get_users(
        organization_id=organization_id,
        search=(request.args.get("search") or "").strip() or None,
        role=role,
        status=status,
        page=page,
        per_page=limit,
    )
    return jsonify(
        {
            "users": [u.to_dict() for u in result.items],
            "pagination": pagination_dict(result),
        }
    )


@bp.route("", methods=["POST"])
@login_required
@permission_required(rbac.USER_EDIT_ORG, rbac.USER_EDIT_ALL)
def provision_user():
    """
    Create a user inside an organization.

    The response carries a one-time ``resetToken`` the new user redeems
    at ``/api/auth/password/reset`` to choose a password.
    """
    data = get_json_body()
    email = auth_service.validate_email(data.get("email"))
    first_name = (data.get("firstName") or "").strip()
    last_name = (data.get("lastName") or "").strip()
    if not first_name or not last_name:
        raise ValidationError("firstName and lastName are required.")
    organization_id = data.get("organizationId") or current_user.home_organization_id
    if organization_id is None:
        raise ValidationError("organizationId is required.")

    user = user_service.provision_user(
        current_user,
        email=email,
        first_name=first_name,
        last_name=last_name,
        organization_id=organization_id,
        role=data.get("role") or rbac.USER,
        member_role=data.get("memberRole") or "member",
    )
    return (
        jsonify(
            {
                "user": user.to_dict(),
                "resetToken": auth_service.generate_reset_token(user),
            }
        ),
        201,
    )


@bp.route("/<int:user_id>", methods=["GET"])
@login_required
def get_user(user_id):
    user = user_service.get_user_or_404(user_id)
    if not user_service.can_view_user(current_user, user):
        raise PermissionDeniedError("Access denied to this user.")
    return jsonify({"user": user.to_dict()})


@bp.route("/<int:user_id>", methods=["PATCH"])
@login_required
def update_user(user_id):
    """Update profile fields of the user (self or an admin)."""
    user = user_service.update_profile(current_user, user_id, get_json_body())
    return jsonify({"user": user.to_dict()})


@bp.route("/<int:user_id>", methods=["DELETE"])
@login_required
def deactivate_user(user_id):
    user = user_service.deactivate_user(current_user, user_id)
    return jsonify({"user": user.to_dict()})


# =========================================================================
# Role management
# =========================================================================


@bp.route("/<int:user_id>/role", methods=["GET"])
@login_required
def get_user_role(user_id):
    user = user_service.get_user_or_404(user_id)
    if not user_service.can_view_user(current_user, user):
        raise PermissionDeniedError("Access denied to this user.")
    return jsonify(
        {
            "userId": user.id,
            "role": user.role,
            "roleDisplayName": rbac.role_display_name(user.role),
            "organizationId": user.organization_id,
            "permissions": user.permissions,
        }
    )


@bp.route("/<int:user_id>/role", methods=["PUT"])
@login_required
@permission_required(rbac.USER_EDIT_ORG, rbac.USER_EDIT_ALL)
def update_user_role(user_id):
    """Change a user's global role; see ``user_service.update_user_role``."""
    role = get_json_body().get("role")
    if not isinstance(role, str) or not role:
        raise ValidationError("role is required.")
    user = user_service.update_user_role(current_user, user_id, role)
    return jsonify(
        {
            "userId": user.id,
            "role": user.role,
            "roleDisplayName": rbac.role_display_name(user.role),
            "organizationId": user.organization_id,
        }
    )
