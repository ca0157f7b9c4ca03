"""
Role-based access control: roles, permissions, and access predicates.

Role = what you can do.  Organization = where you can do it.

Roles are ranked (``viewer`` < ``user`` < ``analyst`` < ``org_admin`` <
``system_admin``).  Permissions are ``resource:action:scope`` strings
(e.g. ``survey:edit:org``) plus a few ``admin:*`` and ``api:*`` flags.
Routes and services check permissions, not role names, so role
definitions can evolve without touching callers.

Everything here is a pure function over role strings so it can be used
both by the route decorators and by the ``check-permission`` endpoint.
"""

from dataclasses import dataclass

# -- Roles -----------------------------------------------------------------

VIEWER = "viewer"
USER = "user"
ANALYST = "analyst"
ORG_ADMIN = "org_admin"
SYSTEM_ADMIN = "system_admin"

ROLES: tuple[str, ...] = (VIEWER, USER, ANALYST, ORG_ADMIN, SYSTEM_ADMIN)

# Higher roles inherit everything granted to lower ones.
ROLE_HIERARCHY: dict[str, int] = {
    VIEWER: 0,
    USER: 1,
    ANALYST: 2,
    ORG_ADMIN: 3,
    SYSTEM_ADMIN: 4,
}

ROLE_DISPLAY_NAMES: dict[str, str] = {
    VIEWER: "Viewer",
    USER: "User",
    ANALYST: "Analyst",
    ORG_ADMIN: "Organization Admin",
    SYSTEM_ADMIN: "System Admin",
}

# -- Permissions -----------------------------------------------------------

SURVEY_VIEW_OWN = "survey:view:own"
SURVEY_CREATE = "survey:create"
SURVEY_EDIT_OWN = "survey:edit:own"
SURVEY_DELETE_OWN = "survey:delete:own"
SURVEY_VIEW_ORG = "survey:view:org"
SURVEY_EDIT_ORG = "survey:edit:org"
SURVEY_DELETE_ORG = "survey:delete:org"
SURVEY_VIEW_ALL = "survey:view:all"
SURVEY_EDIT_ALL = "survey:edit:all"
SURVEY_DELETE_ALL = "survey:delete:all"

USER_VIEW_OWN = "user:view:own"
USER_EDIT_OWN = "user:edit:own"
USER_VIEW_ORG = "user:view:org"
USER_EDIT_ORG = "user:edit:org"
USER_VIEW_ALL = "user:view:all"
USER_EDIT_ALL = "user:edit:all"
USER_DELETE_ALL = "user:delete:all"

ORG_VIEW_OWN = "org:view:own"
ORG_EDIT_OWN = "org:edit:own"
ORG_VIEW_ALL = "org:view:all"
ORG_EDIT_ALL = "org:edit:all"
ORG_DELETE_ALL = "org:delete:all"

ADMIN_DASHBOARD = "admin:dashboard"
ADMIN_SYSTEM_CONFIG = "admin:system:config"
ADMIN_ANALYTICS_ALL = "admin:analytics:all"
ADMIN_EXPORT_ALL = "admin:export:all"

API_LLM_ACCESS = "api:llm:access"
API_EXPORT_ACCESS = "api:export:access"
API_ADMIN_ACCESS = "api:admin:access"

_USER_PERMISSIONS = [
    SURVEY_VIEW_OWN,
    SURVEY_CREATE,
    SURVEY_EDIT_OWN,
    SURVEY_DELETE_OWN,
    USER_VIEW_OWN,
    USER_EDIT_OWN,
    API_LLM_ACCESS,
]

_ORG_ADMIN_EXTRA = [
    SURVEY_VIEW_ORG,
    SURVEY_EDIT_ORG,
    SURVEY_DELETE_ORG,
    USER_VIEW_ORG,
    USER_EDIT_ORG,
    ORG_VIEW_OWN,
    ORG_EDIT_OWN,
    API_EXPORT_ACCESS,
]

_SYSTEM_ADMIN_EXTRA = [
    SURVEY_VIEW_ALL,
    SURVEY_EDIT_ALL,
    SURVEY_DELETE_ALL,
    USER_VIEW_ALL,
    USER_EDIT_ALL,
    USER_DELETE_ALL,
    ORG_VIEW_ALL,
    ORG_EDIT_ALL,
    ORG_DELETE_ALL,
    ADMIN_DASHBOARD,
    ADMIN_SYSTEM_CONFIG,
    ADMIN_ANALYTICS_ALL,
    ADMIN_EXPORT_ALL,
    API_ADMIN_ACCESS,
]

ROLE_PERMISSIONS: dict[str, list[str]] = {
    VIEWER: [SURVEY_VIEW_OWN, USER_VIEW_OWN],
    USER: list(_USER_PERMISSIONS),
    # Analysts read organization data but cannot change it.
    ANALYST: _USER_PERMISSIONS + [SURVEY_VIEW_ORG, USER_VIEW_ORG, ORG_VIEW_OWN],
    ORG_ADMIN: _USER_PERMISSIONS + _ORG_ADMIN_EXTRA,
    SYSTEM_ADMIN: _USER_PERMISSIONS + _ORG_ADMIN_EXTRA + _SYSTEM_ADMIN_EXTRA,
}

ALL_PERMISSIONS: frozenset[str] = frozenset(ROLE_PERMISSIONS[SYSTEM_ADMIN])

# Path pattern -> permissions, any one of which grants access.
ROUTE_PERMISSIONS: dict[str, list[str]] = {
    "/admin": [ADMIN_DASHBOARD],
    "/admin/surveys": [ADMIN_DASHBOARD, SURVEY_VIEW_ALL],
    "/admin/users": [ADMIN_DASHBOARD, USER_VIEW_ALL],
    "/admin/organizations": [ADMIN_DASHBOARD, ORG_VIEW_ALL],
    "/admin/analytics": [ADMIN_DASHBOARD, ADMIN_ANALYTICS_ALL],
    "/admin/reports": [ADMIN_DASHBOARD, ADMIN_ANALYTICS_ALL],
    "/admin/export": [ADMIN_DASHBOARD, ADMIN_EXPORT_ALL],
    "/system/*": [ADMIN_SYSTEM_CONFIG],
    "/organization": [ORG_VIEW_OWN],
    "/organization/surveys": [SURVEY_VIEW_ORG],
    "/organization/analytics": [SURVEY_VIEW_ORG],
    "/organization/reports": [SURVEY_VIEW_ORG],
    "/api/admin": [API_ADMIN_ACCESS],
    "/api/llm": [API_LLM_ACCESS],
    "/api/export": [API_EXPORT_ACCESS],
}


# -- Permission checks -----------------------------------------------------


def get_role_permissions(role: str | None) -> list[str]:
    """Return the permission strings granted to ``role`` (empty if unknown)."""
    return list(ROLE_PERMISSIONS.get(role or "", []))


def has_permission(role: str | None, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(role or "", [])


def has_any_permission(role: str | None, permissions: list[str]) -> bool:
    return any(has_permission(role, p) for p in permissions)


def has_all_permissions(role: str | None, permissions: list[str]) -> bool:
    return all(has_permission(role, p) for p in permissions)


def is_valid_role(role: str | None) -> bool:
    return role in ROLE_HIERARCHY


def is_role_equal_or_higher(role: str | None, required_role: str) -> bool:
    """
    Compare two roles by rank.

    Unknown roles rank below ``viewer`` so they never satisfy a
    requirement.
    """
    return ROLE_HIERARCHY.get(role or "", -1) >= ROLE_HIERARCHY.get(required_role, 0)


def _match_route(path: str) -> str | None:
    """
    Find the configured pattern that governs ``path``.

    A pattern matches exactly, by ``/*`` wildcard, or, for ``/api/``
    patterns, by prefix.  The longest matching pattern wins so
    ``/admin/users`` is governed by its own entry rather than ``/admin``.
    """
    candidates = []
    for pattern in ROUTE_PERMISSIONS:
        if path == pattern:
            candidates.append(pattern)
        elif pattern.endswith("/*") and path.startswith(pattern[:-2]):
            candidates.append(pattern)
        elif pattern.startswith("/api/") and path.startswith(pattern):
            candidates.append(pattern)
    if not candidates:
        return None
    return max(candidates, key=len)


def can_access_route(role: str | None, path: str) -> bool:
    """Return True if ``role`` may open ``path``; unlisted paths are open."""
    pattern = _match_route(path)
    if pattern is None:
        return True
    return has_any_permission(role, ROUTE_PERMISSIONS[pattern])


def can_access_organization(
    role: str | None,
    user_org_id: int | None,
    target_org_id: int | None,
) -> bool:
    """
    Check whether a user may see data belonging to ``target_org_id``.

    System admins see every organization.  Users, analysts and org admins
    see only their own.  Viewers are restricted to their own resources
    and are denied organization-level access.
    """
    if role == SYSTEM_ADMIN:
        return True
    if role in (USER, ANALYST, ORG_ADMIN):
        return user_org_id is not None and user_org_id == target_org_id
    return False


@dataclass
class ResourceCheck:
    """A single ``resource:action:scope`` request against a resource."""

    resource: str
    action: str
    scope: str
    resource_org_id: int | None = None
    resource_user_id: int | None = None

    @property
    def permission(self) -> str:
        return f"{self.resource}:{self.action}:{self.scope}"

    @classmethod
    def from_dict(cls, data: dict) -> "ResourceCheck":
        """Build from the camelCase dict accepted by the API."""
        return cls(
            resource=data.get("resource", ""),
            action=data.get("action", ""),
            scope=data.get("scope", ""),
            resource_org_id=data.get("resourceOrgId"),
            resource_user_id=data.get("resourceUserId"),
        )

    def to_dict(self) -> dict:
        return {
            "resource": self.resource,
            "action": self.action,
            "scope": self.scope,
            "resourceOrgId": self.resource_org_id,
            "resourceUserId": self.resource_user_id,
        }


def can_perform_action(
    role: str | None,
    user_org_id: int | None,
    user_id: int,
    check: ResourceCheck,
) -> bool:
    """Require the scoped permission, then check ownership for that scope."""
    if not has_permission(role, check.permission):
        return False

    if check.scope == "own":
        return check.resource_user_id == user_id
    if check.scope == "org":
        return user_org_id is not None and user_org_id == check.resource_org_id
    if check.scope == "all":
        return role == SYSTEM_ADMIN
    return False


# -- Display helpers -------------------------------------------------------


def role_display_name(role: str) -> str:
    return ROLE_DISPLAY_NAMES.get(role, role)


def permission_display_name(permission: str) -> str:
    """
    Turn a permission string into a label.

    ``survey:view:own`` -> ``View Own Surveys``;
    ``admin:system:config`` -> ``Admin System Config``.
    """
    parts = permission.split(":")
    if len(parts) == 3 and parts[2] in ("own", "org", "all"):
        resource, action, scope = parts
        scope_name = {"own": "Own", "org": "Organization", "all": "All"}[scope]
        return f"{action.capitalize()} {scope_name} {resource.capitalize()}s"
    words = permission.replace("_", " ").replace(":", " ").split()
    return " ".join(word.capitalize() for word in words)
