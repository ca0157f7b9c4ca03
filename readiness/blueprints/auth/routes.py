"""
Routes for the auth blueprint — signup, login, password flows and
permission checks.

All routes live under ``/api/auth`` except the email confirmation
callback, which is opened from a link and therefore redirects instead
of returning JSON.
"""

from urllib.parse import quote, urlsplit

from flask import current_app, jsonify, redirect, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from readiness import rbac
from readiness.blueprints.auth import bp
from readiness.errors import ServiceError, ValidationError
from readiness.services import auth_service, organization_service
from readiness.utils import get_json_body

_DEFAULT_NEXT = "/dashboard"
_CHECK_TYPES = ("permission", "route", "organization", "resource", "user_permissions")


def _client_ip() -> str:
    return request.remote_addr or "unknown"


# =========================================================================
# Signup / Login / Session
# =========================================================================


@bp.route("/api/auth/signup", methods=["POST"])
def signup():
    """Create an account, optionally with a new organization."""
    user, confirmation_required = auth_service.signup(get_json_body())
    return (
        jsonify(
            {
                "user": user.to_dict(),
                "emailConfirmationRequired": confirmation_required,
            }
        ),
        201,
    )


@bp.route("/api/auth/login", methods=["POST"])
def login():
    """
    Start a session from email and password.

    Throttled per client IP; see ``LOGIN_RATE_LIMIT``.
    """
    data = get_json_body()
    user = auth_service.authenticate(
        data.get("email"), data.get("password"), _client_ip()
    )
    login_user(user, remember=bool(data.get("remember")))
    return jsonify({"user": user.to_dict(), "permissions": user.permissions})


@bp.route("/api/auth/logout", methods=["POST"])
@login_required
def logout():
    auth_service.record_logout(current_user)
    logout_user()
    return jsonify({"message": "Signed out."})


@bp.route("/api/auth/session")
def session_info():
    """Report whether the caller is signed in."""
    if not current_user.is_authenticated:
        return jsonify({"authenticated": False, "user": None})
    return jsonify(
        {
            "authenticated": True,
            "user": current_user.to_dict(),
            "permissions": current_user.permissions,
        }
    )


@bp.route("/api/auth/csrf")
def csrf_token():
    """Issue a CSRF token for the ``X-CSRFToken`` header."""
    return jsonify({"csrfToken": generate_csrf()})


# =========================================================================
# Email confirmation callback
# =========================================================================


def _safe_next(target: str | None) -> str:
    """Only allow same-site relative paths as redirect targets."""
    if not target or not target.startswith("/") or target.startswith("//"):
        return _DEFAULT_NEXT
    if "\\" in target:
        return _DEFAULT_NEXT
    parts = urlsplit(target)
    if parts.scheme or parts.netloc:
        return _DEFAULT_NEXT
    return target


@bp.route("/auth/callback")
def callback():
    """
    Redeem an email confirmation code and sign the user in.

    Redirects to ``next`` when it is a local path, otherwise to the
    dashboard.  Any failure sends the browser back to the login page
    with an ``error`` query parameter.
    """
    code = request.args.get("code", "")
    try:
        user = auth_service.exchange_code_for_user(code)
    except ServiceError as exc:
        current_app.logger.warning("Auth callback failed: %s", exc.message)
        return redirect(f"/auth/login?error={quote(exc.message)}")

    login_user(user)
    return redirect(_safe_next(request.args.get("next")))


# =========================================================================
# Passwords
# =========================================================================


@bp.route("/api/auth/password/forgot", methods=["POST"])
def forgot_password():
    """
    Request a password reset.

    The response is identical whether or not the account exists.  The
    token is only echoed back in testing.
    """
    token = auth_service.request_password_reset(get_json_body().get("email"))
    body = {"message": "If the account exists, a reset link has been sent."}
    if current_app.testing and token:
        body["resetToken"] = token
    return jsonify(body)


@bp.route("/api/auth/password/reset", methods=["POST"])
def reset_password():
    data = get_json_body()
    auth_service.reset_password(data.get("token"), data.get("password"))
    return jsonify({"message": "Password has been reset."})


@bp.route("/api/auth/password/change", methods=["POST"])
@login_required
def change_password():
    data = get_json_body()
    auth_service.change_password(
        current_user, data.get("currentPassword"), data.get("newPassword")
    )
    return jsonify({"message": "Password changed."})


# =========================================================================
# Permission checks
# =========================================================================


@bp.route("/api/auth/check-permission")
@login_required
def current_permissions():
    """Return the caller's role, permissions and capability flags."""
    role = current_user.role
    return jsonify(
        {
            "success": True,
            "authenticated": True,
            "user": {
                "id": current_user.id,
                "email": current_user.email,
                "role": role,
                "organizationId": current_user.organization_id,
            },
            "permissions": rbac.get_role_permissions(role),
            "rolePermissions": {
                "canAccessAdmin": rbac.has_permission(role, rbac.ADMIN_DASHBOARD),
                "canAccessOrgData": rbac.has_permission(role, rbac.SURVEY_VIEW_ORG),
                "canManageUsers": rbac.has_permission(role, rbac.USER_EDIT_ORG),
                "canExportData": rbac.has_permission(role, rbac.API_EXPORT_ACCESS),
                "canManageSystem": rbac.has_permission(
                    role, rbac.ADMIN_SYSTEM_CONFIG
                ),
            },
        }
    )


@bp.route("/api/auth/check-permission", methods=["POST"])
@login_required
def check_permission():
    """
    Evaluate one permission question for the caller.

    Body ``type`` selects the check: ``permission`` (needs
    ``permission``), ``route`` (``route``), ``organization``
    (``organizationId``), ``resource`` (``resourceCheck``) or
    ``user_permissions``.
    """
    data = get_json_body()
    check_type = data.get("type")
    role = current_user.role
    user_org_id = current_user.organization_id
    details: dict = {}

    if check_type == "permission":
        permission = data.get("permission")
        if not permission:
            raise ValidationError("Permission parameter required")
        allowed = rbac.has_permission(role, permission)
        details["permission"] = permission

    elif check_type == "route":
        route = data.get("route")
        if not route:
            raise ValidationError("Route parameter required")
        allowed = rbac.can_access_route(role, route)
        details["route"] = route

    elif check_type == "organization":
        org_id = data.get("organizationId")
        if not org_id:
            raise ValidationError("Organization ID required")
        if isinstance(org_id, bool) or not isinstance(org_id, int):
            raise ValidationError("organizationId must be an integer.")
        allowed = organization_service.user_can_access_organization(
            current_user, org_id
        )
        details["organizationId"] = org_id
        details["userOrgId"] = user_org_id

    elif check_type == "resource":
        resource_check = data.get("resourceCheck")
        if not isinstance(resource_check, dict) or not resource_check:
            raise ValidationError("Resource check parameters required")
        check = rbac.ResourceCheck.from_dict(resource_check)
        allowed = rbac.can_perform_action(role, user_org_id, current_user.id, check)
        details["resourceCheck"] = check.to_dict()

    elif check_type == "user_permissions":
        return jsonify(
            {
                "success": True,
                "hasPermission": True,
                "userRole": role,
                "userOrgId": user_org_id,
                "permissions": rbac.get_role_permissions(role),
                "details": {"type": "user_permissions"},
            }
        )

    else:
        raise ValidationError(
            "Invalid permission check type. Supported types: "
            + ", ".join(_CHECK_TYPES)
        )

    return jsonify(
        {
            "success": True,
            "hasPermission": allowed,
            "userRole": role,
            "userOrgId": user_org_id,
            "details": details,
        }
    )
