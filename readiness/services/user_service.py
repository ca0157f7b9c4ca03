"""
User service — user lookup, provisioning, profile updates and role changes.

Handles CRUD for application users.  Every mutation is recorded through
``audit_service`` and committed here so routes stay thin.
"""

import logging

from sqlalchemy import func, or_

from readiness import rbac
from readiness.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from readiness.extensions import db
from readiness.models.organization import (
    MEMBER_ROLES,
    Organization,
    OrganizationMember,
)
from readiness.models.user import User
from readiness.services import audit_service
from readiness.utils import utcnow

logger = logging.getLogger(__name__)

# Fields a user may change on their own profile.
PROFILE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "department": "department",
    "jobTitle": "job_title",
    "preferences": "preferences",
}


# -- User lookup -----------------------------------------------------------


def get_user_by_id(user_id: int) -> User | None:
    """Return a user by primary key, or None if not found."""
    return db.session.get(User, user_id)


def get_user_or_404(user_id: int) -> User:
    user = get_user_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found.")
    return user


def get_user_by_email(email: str) -> User | None:
    """Return a user by email address (case-insensitive)."""
    return User.query.filter(func.lower(User.email) == email.strip().lower()).first()


def get_users(
    organization_id: int | None = None,
    search: str | None = None,
    role: str | None = None,
    status: str | None = None,
    page: int = 1,
    per_page: int = 20,
):
    """
    Return a paginated list of users, ordered by last name.

    Args:
        organization_id: Restrict to users whose primary organization is
                         this one; None lists every user.
        search:          Substring matched against email and names.
        role:            Exact global role.
        status:          ``active`` or ``inactive``.
        page:            Page number (1-indexed).
        per_page:        Records per page.

    Returns:
        A SQLAlchemy pagination object.
    """
    query = User.query.order_by(User.last_name, User.first_name, User.id)
    if organization_id is not None:
        query = query.filter(User.organization_id == organization_id)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
            )
        )
    if role:
        query = query.filter(User.role == role)
    if status == "active":
        query = query.filter(User.is_active.is_(True))
    elif status == "inactive":
        query = query.filter(User.is_active.is_(False))
    return query.paginate(page=page, per_page=per_page, error_out=False)


# -- Visibility rules ------------------------------------------------------


def can_view_user(actor: User, target: User) -> bool:
    """Self, same-organization ``user:view:org`` holders, or system admins."""
    if actor.id == target.id or actor.is_system_admin:
        return True
    return (
        actor.has_permission(rbac.USER_VIEW_ORG)
        and actor.organization_id is not None
        and actor.organization_id == target.organization_id
        and actor.api_key_allows_organization(target.organization_id)
    )


def can_edit_user(actor: User, target: User) -> bool:
    if actor.is_system_admin:
        return True
    if actor.id == target.id:
        return actor.request_api_key is None or actor.has_permission(
            rbac.USER_EDIT_OWN
        )
    return (
        actor.has_permission(rbac.USER_EDIT_ORG)
        and actor.organization_id is not None
        and actor.organization_id == target.organization_id
        and actor.api_key_allows_organization(target.organization_id)
    )


# -- User creation and provisioning ----------------------------------------


def create_user(
    email: str,
    password: str | None,
    first_name: str,
    last_name: str,
    role: str = rbac.USER,
    organization_id: int | None = None,
    confirmed: bool = False,
) -> User:
    """
    Add a user to the session without committing.

    Callers own the transaction so signup can create the user and the
    organization in one unit of work.

    Raises:
        ConflictError: If the email is already registered.
        ValidationError: If the role is unknown.
    """
    if not rbac.is_valid_role(role):
        raise ValidationError(f"Invalid role '{role}'.")
    if get_user_by_email(email) is not None:
        raise ConflictError("An account with this email already exists.")

    user = User(
        email=email.strip().lower(),
        first_name=first_name,
        last_name=last_name,
        role=role,
        organization_id=organization_id,
        preferences={},
        email_confirmed_at=utcnow() if confirmed else None,
    )
    if password:
        user.set_password(password)
    db.session.add(user)
    db.session.flush()
    return user


def provision_user(
    actor: User,
    email: str,
    first_name: str,
    last_name: str,
    organization_id: int,
    role: str = rbac.USER,
    member_role: str = "member",
) -> User:
    """
    Create a user inside an organization on an admin's behalf.

    The new user has no password until they redeem a reset token.

    Raises:
        ValidationError: Malformed organization id or unknown member role.
        NotFoundError: If the organization does not exist.
        PermissionDeniedError: If the actor may not manage the organization
                               or assign the role.
    """
    if isinstance(organization_id, bool) or not isinstance(organization_id, int):
        raise ValidationError("organizationId must be an integer.")
    org = db.session.get(Organization, organization_id)
    if org is None or org.deleted_at is not None:
        raise NotFoundError("Organization not found.")
    if not isinstance(role, str) or not rbac.is_valid_role(role):
        raise ValidationError(f"Invalid role '{role}'.")
    if not isinstance(member_role, str) or member_role not in MEMBER_ROLES:
        raise ValidationError(
            f"Invalid member role '{member_role}'. "
            f"Valid roles: {', '.join(MEMBER_ROLES)}"
        )

    if not actor.is_system_admin:
        if not (
            actor.has_permission(rbac.USER_EDIT_ORG)
            and actor.organization_id == organization_id
            and actor.api_key_allows_organization(organization_id)
        ):
            raise PermissionDeniedError(
                "You can only add users to your own organization."
            )
        if not rbac.is_role_equal_or_higher(rbac.ORG_ADMIN, role):
            raise PermissionDeniedError("You cannot assign this role.")
    if role == rbac.SYSTEM_ADMIN and not actor.is_system_admin:
        raise PermissionDeniedError("Only system admins can assign system_admin.")
    if member_role == "owner" and not actor.is_system_admin:
        membership = OrganizationMember.query.filter_by(
            organization_id=organization_id, user_id=actor.id
        ).first()
        if membership is None or membership.role != "owner":
            raise PermissionDeniedError("Only owners can add owners.")

    user = create_user(
        email=email,
        password=None,
        first_name=first_name,
        last_name=last_name,
        role=role,
        organization_id=organization_id,
        confirmed=True,
    )
    db.session.add(
        OrganizationMember(
            organization_id=organization_id, user_id=user.id, role=member_role
        )
    )
    audit_service.log_change(
        user_id=actor.id,
        action_type="CREATE",
        entity_type="user",
        entity_id=user.id,
        new_value={
            "email": user.email,
            "first_name": first_name,
            "last_name": last_name,
            "role": role,
        },
        organization_id=organization_id,
    )
    db.session.commit()

    logger.info("Provisioned user %s with role %s", user.email, role)
    return user


# -- Profile updates -------------------------------------------------------


def update_profile(actor: User, user_id: int, data: dict) -> User:
    """
    Update profile fields of a user.

    Raises:
        NotFoundError, PermissionDeniedError, ValidationError.
    """
    user = get_user_or_404(user_id)
    if not can_edit_user(actor, user):
        raise PermissionDeniedError("You cannot edit this user.")

    previous: dict = {}
    changed: dict = {}
    for key, attr in PROFILE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if attr == "preferences" and not isinstance(value, dict):
            raise ValidationError("preferences must be an object.")
        if attr in ("first_name", "last_name"):
            value = (value or "").strip()
            if not value:
                raise ValidationError(f"{key} cannot be empty.")
            if len(value) > 100:
                raise ValidationError(f"{key} must be 100 characters or fewer.")
        if getattr(user, attr) != value:
            previous[attr] = getattr(user, attr)
            changed[attr] = value
            setattr(user, attr, value)

    if changed:
        audit_service.log_change(
            user_id=actor.id,
            action_type="UPDATE",
            entity_type="user",
            entity_id=user.id,
            previous_value=previous,
            new_value=changed,
            organization_id=user.organization_id,
        )
        db.session.commit()
    return user


# -- Role management -------------------------------------------------------


def _count_org_admins(organization_id: int) -> int:
    return User.query.filter(
        User.organization_id == organization_id,
        User.role == rbac.ORG_ADMIN,
        User.is_active.is_(True),
    ).count()


def update_user_role(actor: User, user_id: int, new_role: str) -> User:
    """
    Change a user's global role.

    Rules:
      - The role must be known.
      - Nobody changes their own role.
      - Org admins change roles only inside their own organization and
        may assign at most ``org_admin``.
      - Only system admins assign ``system_admin``.
      - The last active ``org_admin`` of an organization cannot be
        demoted.

    Raises:
        ValidationError, PermissionDeniedError, NotFoundError, ConflictError.
    """
    if not isinstance(new_role, str) or not rbac.is_valid_role(new_role):
        raise ValidationError(
            f"Invalid role '{new_role}'. Valid roles: {', '.join(rbac.ROLES)}"
        )
    if actor.id == user_id:
        raise PermissionDeniedError("You cannot change your own role.")

    user = get_user_or_404(user_id)

    if not actor.is_system_admin:
        if not actor.has_permission(rbac.USER_EDIT_ORG):
            raise PermissionDeniedError("Insufficient permissions to change roles.")
        if (
            actor.organization_id is None
            or actor.organization_id != user.organization_id
            or not actor.api_key_allows_organization(user.organization_id)
        ):
            raise PermissionDeniedError(
                "You can only change roles within your organization."
            )
        if new_role == rbac.SYSTEM_ADMIN or user.role == rbac.SYSTEM_ADMIN:
            raise PermissionDeniedError(
                "Only system admins can grant or revoke system_admin."
            )

    old_role = user.role
    if old_role == new_role:
        return user

    if (
        old_role == rbac.ORG_ADMIN
        and user.organization_id is not None
        and _count_org_admins(user.organization_id) <= 1
    ):
        raise ConflictError(
            "Cannot demote the last organization admin of this organization."
        )

    user.role = new_role
    audit_service.log_change(
        user_id=actor.id,
        action_type="user.role_changed",
        entity_type="user",
        entity_id=user.id,
        previous_value={"role": old_role},
        new_value={"role": new_role},
        organization_id=user.organization_id,
    )
    db.session.commit()

    logger.info(
        "User %s role changed from %s to %s by user %s",
        user.email,
        old_role,
        new_role,
        actor.id,
    )
    return user


# -- Activation ------------------------------------------------------------


def deactivate_user(actor: User, user_id: int) -> User:
    """
    Deactivate a user account (soft delete).

    Raises:
        PermissionDeniedError: Deactivating yourself or a user outside
                               your organization.
        ConflictError: Deactivating the last org admin.
    """
    if actor.id == user_id:
        raise PermissionDeniedError("You cannot deactivate your own account.")
    user = get_user_or_404(user_id)
    if not actor.is_system_admin and not (
        actor.has_permission(rbac.USER_EDIT_ORG)
        and actor.organization_id is not None
        and actor.organization_id == user.organization_id
        and actor.api_key_allows_organization(user.organization_id)
    ):
        raise PermissionDeniedError("You cannot deactivate this user.")
    if user.role == rbac.SYSTEM_ADMIN and not actor.is_system_admin:
        raise PermissionDeniedError("Only system admins can deactivate system admins.")
    if (
        user.role == rbac.ORG_ADMIN
        and user.is_active
        and user.organization_id is not None
        and _count_org_admins(user.organization_id) <= 1
    ):
        raise ConflictError(
            "Cannot deactivate the last organization admin of this organization."
        )

    if user.is_active:
        user.is_active = False
        audit_service.log_change(
            user_id=actor.id,
            action_type="UPDATE",
            entity_type="user",
            entity_id=user.id,
            previous_value={"is_active": True},
            new_value={"is_active": False},
            organization_id=user.organization_id,
        )
        db.session.commit()
        logger.info("Deactivated user %s", user.email)
    return user


def record_login(user: User) -> None:
    """Update login timestamps; the caller commits."""
    now = utcnow()
    if user.first_login_at is None:
        user.first_login_at = now
    user.last_login = now
