"""
Organization service — tenants, memberships, invitations and overview.

Access rules live here so both the route decorators and other services
(surveys, analytics, templates) answer "may this user see organization
N?" the same way.
"""

import logging
import re
import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from readiness import rbac
from readiness.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from readiness.extensions import db
from readiness.models.organization import (
    DEFAULT_SETTINGS,
    MANAGING_MEMBER_ROLES,
    MEMBER_ROLES,
    ORGANIZATION_SIZES,
    Organization,
    OrganizationInvitation,
    OrganizationMember,
)
from readiness.models.survey import (
    SURVEY_STATUSES,
    Survey,
    SurveyResponse,
    SurveyTemplate,
)
from readiness.models.user import User
from readiness.services import audit_service, user_service
from readiness.utils import isoformat, utcnow

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MIN_RETENTION_DAYS = 30
MAX_RETENTION_DAYS = 2555


# -- Lookup ----------------------------------------------------------------


def get_organization(org_id: int) -> Organization | None:
    """Return a live (not soft-deleted) organization, or None."""
    org = db.session.get(Organization, org_id)
    if org is None or org.deleted_at is not None:
        return None
    return org


def get_organization_or_404(org_id: int) -> Organization:
    org = get_organization(org_id)
    if org is None:
        raise NotFoundError("Organization not found.")
    return org


def get_membership(user_id: int, org_id: int) -> OrganizationMember | None:
    return OrganizationMember.query.filter_by(
        organization_id=org_id, user_id=user_id
    ).first()


def list_organizations_for_user(user: User) -> list[Organization]:
    """All organizations for system admins; memberships otherwise."""
    query = Organization.query.filter(Organization.deleted_at.is_(None))
    api_key = user.request_api_key
    if api_key is not None:
        query = query.filter(Organization.id == api_key.organization_id)
    if not user.is_system_admin:
        query = query.join(
            OrganizationMember,
            OrganizationMember.organization_id == Organization.id,
        ).filter(OrganizationMember.user_id == user.id)
    return query.order_by(Organization.name).all()


# -- Access checks ---------------------------------------------------------


def user_can_access_organization(user: User, org_id: int) -> bool:
    """
    Return True if ``user`` may read data of organization ``org_id``.

    The primary organization is checked with the static RBAC rules;
    users with an explicit membership row are also allowed unless their
    global role is ``viewer``.  API key requests are limited to the key's organization.
    """
    if not user.api_key_allows_organization(org_id):
        return False
    if rbac.can_access_organization(user.role, user.organization_id, org_id):
        return True
    if user.role in (rbac.USER, rbac.ANALYST, rbac.ORG_ADMIN):
        return get_membership(user.id, org_id) is not None
    return False


def accessible_organization_ids(user: User) -> list[int]:
    """
    Organizations whose data ``user`` may read, for non-system-admins.

    Mirrors ``user_can_access_organization`` as a list for SQL filters.
    """
    api_key = user.request_api_key
    if api_key is not None:
        org_id = api_key.organization_id
        return [org_id] if user_can_access_organization(user, org_id) else []
    if user.role not in (rbac.USER, rbac.ANALYST, rbac.ORG_ADMIN):
        return []
    ids = {
        m.organization_id
        for m in OrganizationMember.query.filter_by(user_id=user.id).all()
    }
    if user.organization_id is not None:
        ids.add(user.organization_id)
    return sorted(ids)


def user_can_manage_organization(user: User, org_id: int) -> bool:
    """
    System admins, org admins of that organization, and members with
    an ``owner`` or ``admin`` member role may manage it.
    """
    if user.is_system_admin:
        return True
    if user.request_api_key is not None and not (
        user.api_key_allows_organization(org_id)
        and user.has_permission(rbac.ORG_EDIT_OWN)
    ):
        return False
    if user.role == rbac.SYSTEM_ADMIN:
        return True
    if user.role == rbac.ORG_ADMIN and user.organization_id == org_id:
        return True
    membership = get_membership(user.id, org_id)
    return membership is not None and membership.role in MANAGING_MEMBER_ROLES


def _require_manager(user: User, org_id: int) -> None:
    if not user_can_manage_organization(user, org_id):
        raise PermissionDeniedError(
            "You must be an administrator of this organization."
        )


# -- Create / update / delete ---------------------------------------------


def _validate_org_fields(data: dict, partial: bool) -> dict:
    """Return validated column values from a camelCase request body."""
    values: dict = {}

    if "name" in data or not partial:
        name = (data.get("name") or "").strip()
        if len(name) < 2 or len(name) > 100:
            raise ValidationError(
                "Organization name must be between 2 and 100 characters."
            )
        values["name"] = name

    if "description" in data:
        description = data.get("description") or None
        if description and len(description) > 1000:
            raise ValidationError("Description too long (max 1000 characters).")
        values["description"] = description

    if "industry" in data:
        industry = data.get("industry") or None
        if industry and len(industry) > 100:
            raise ValidationError("Industry must be 100 characters or fewer.")
        values["industry"] = industry

    if "size" in data:
        size = data.get("size") or None
        if size is not None and size not in ORGANIZATION_SIZES:
            raise ValidationError(
                f"Invalid size value. Valid sizes: {', '.join(ORGANIZATION_SIZES)}"
            )
        values["size"] = size

    if "website" in data:
        website = data.get("website") or None
        if website is not None:
            if len(website) > 255:
                raise ValidationError("Website URL too long.")
            if not _URL_RE.match(website):
                raise ValidationError("Website must be a valid http(s) URL.")
        values["website"] = website

    if "settings" in data and data["settings"] is not None:
        values["settings"] = _validate_settings(data["settings"])

    return values


def _validate_settings(settings) -> dict:
    if not isinstance(settings, dict):
        raise ValidationError("settings must be an object.")
    unknown = sorted(set(settings) - set(DEFAULT_SETTINGS))
    if unknown:
        raise ValidationError(
            f"Unknown settings: {', '.join(unknown)}",
            details={"allowed": sorted(DEFAULT_SETTINGS)},
        )
    if "dataRetentionDays" in settings:
        days = settings["dataRetentionDays"]
        if (
            isinstance(days, bool)
            or not isinstance(days, int)
            or not MIN_RETENTION_DAYS <= days <= MAX_RETENTION_DAYS
        ):
            raise ValidationError(
                f"dataRetentionDays must be an integer between "
                f"{MIN_RETENTION_DAYS} and {MAX_RETENTION_DAYS}."
            )
    if "defaultRole" in settings and not rbac.is_valid_role(settings["defaultRole"]):
        raise ValidationError("defaultRole must be a valid role.")
    return settings


def build_organization(actor: User, data: dict) -> Organization:
    """
    Add an organization with ``actor`` as owner, without committing.

    Used by ``create_organization`` and by signup, which creates the
    user and organization in one transaction.
    """
    values = _validate_org_fields(data, partial=False)
    org = Organization(**values)
    if org.settings is None:
        org.settings = {}
    db.session.add(org)
    db.session.flush()

    db.session.add(
        OrganizationMember(organization_id=org.id, user_id=actor.id, role="owner")
    )
    if actor.organization_id is None:
        actor.organization_id = org.id

    audit_service.log_change(
        user_id=actor.id,
        action_type="CREATE",
        entity_type="organization",
        entity_id=org.id,
        new_value={"name": org.name, "size": org.size, "industry": org.industry},
        organization_id=org.id,
    )
    return org


def create_organization(actor: User, data: dict) -> Organization:
    if actor.request_api_key is not None:
        raise PermissionDeniedError("API keys cannot create organizations.")
    org = build_organization(actor, data)
    db.session.commit()
    logger.info("Organization %s created by user %s", org.id, actor.id)
    return org


def update_organization(actor: User, org_id: int, data: dict) -> Organization:
    """
    Apply a partial update; ``settings`` are merged into stored settings.

    Raises:
        NotFoundError, ValidationError.
    """
    org = get_organization_or_404(org_id)
    values = _validate_org_fields(data, partial=True)

    previous: dict = {}
    changed: dict = {}
    for attr, value in values.items():
        if attr == "settings":
            merged = dict(org.settings or {})
            merged.update(value)
            value = merged
        if getattr(org, attr) != value:
            previous[attr] = getattr(org, attr)
            changed[attr] = value
            setattr(org, attr, value)

    if changed:
        audit_service.log_change(
            user_id=actor.id,
            action_type="UPDATE",
            entity_type="organization",
            entity_id=org.id,
            previous_value=previous,
            new_value=changed,
            organization_id=org.id,
        )
        db.session.commit()
    return org


def delete_organization(actor: User, org_id: int) -> None:
    """
    Soft-delete an organization.

    Raises:
        PermissionDeniedError: Unless the actor is a system admin or an
                               owner of the organization.
    """
    org = get_organization_or_404(org_id)
    if actor.request_api_key is not None:
        _require_manager(actor, org_id)
    membership = get_membership(actor.id, org_id)
    if not actor.is_system_admin and (membership is None or membership.role != "owner"):
        raise PermissionDeniedError(
            "Only organization owners or system admins can delete organizations."
        )

    org.deleted_at = utcnow()
    audit_service.log_change(
        user_id=actor.id,
        action_type="DELETE",
        entity_type="organization",
        entity_id=org.id,
        previous_value={"name": org.name},
        organization_id=org.id,
    )
    db.session.commit()
    logger.info("Organization %s soft-deleted by user %s", org.id, actor.id)


# -- Overview --------------------------------------------------------------


def get_overview(org_id: int) -> dict:
    """Counts and recent activity for the organization dashboard."""
    org = get_organization_or_404(org_id)

    status_rows = (
        db.session.query(Survey.status, func.count(Survey.id))
        .filter(Survey.organization_id == org_id)
        .group_by(Survey.status)
        .all()
    )
    surveys_by_status = {status: 0 for status in SURVEY_STATUSES}
    surveys_by_status.update({status: count for status, count in status_rows})

    response_count = (
        db.session.query(func.count(SurveyResponse.id))
        .join(Survey, Survey.id == SurveyResponse.survey_id)
        .filter(Survey.organization_id == org_id)
        .scalar()
    )
    template_count = SurveyTemplate.query.filter(
        SurveyTemplate.organization_id == org_id,
        SurveyTemplate.deleted_at.is_(None),
    ).count()

    activity = [
        {
            "id": entry.id,
            "action": entry.action_type,
            "entityType": entry.entity_type,
            "entityId": entry.entity_id,
            "userId": entry.user_id,
            "timestamp": isoformat(entry.created_at),
        }
        for entry in audit_service.get_recent_activity(org_id)
    ]

    return {
        "organization": org.to_dict(),
        "stats": {
            "memberCount": org.members.count(),
            "totalSurveys": sum(surveys_by_status.values()),
            "surveysByStatus": surveys_by_status,
            "totalResponses": response_count or 0,
            "templateCount": template_count,
            "lastActivity": activity[0]["timestamp"] if activity else None,
        },
        "recentActivity": activity,
    }


# -- Members ---------------------------------------------------------------


def list_members(org_id: int) -> list[OrganizationMember]:
    get_organization_or_404(org_id)
    return (
        OrganizationMember.query.filter_by(organization_id=org_id)
        .order_by(OrganizationMember.joined_at, OrganizationMember.id)
        .all()
    )


def _validate_member_role(role: str) -> str:
    if role not in MEMBER_ROLES:
        raise ValidationError(
            f"Invalid member role '{role}'. Valid roles: {', '.join(MEMBER_ROLES)}"
        )
    return role


def _owner_count(org_id: int) -> int:
    return OrganizationMember.query.filter_by(
        organization_id=org_id, role="owner"
    ).count()


def add_member(
    actor: User,
    org_id: int,
    user_id: int | None = None,
    email: str | None = None,
    role: str = "member",
) -> OrganizationMember:
    """
    Add an existing user to an organization by id or email.

    Raises:
        PermissionDeniedError, NotFoundError, ValidationError, ConflictError.
    """
    get_organization_or_404(org_id)
    _require_manager(actor, org_id)
    _validate_member_role(role)
    if role == "owner" and not actor.is_system_admin:
        membership = get_membership(actor.id, org_id)
        if membership is None or membership.role != "owner":
            raise PermissionDeniedError("Only owners can add owners.")

    if user_id is not None:
        user = db.session.get(User, user_id)
    elif email:
        user = user_service.get_user_by_email(email)
    else:
        raise ValidationError("userId or email is required.")
    if user is None:
        raise NotFoundError("User not found.")
    if get_membership(user.id, org_id) is not None:
        raise ConflictError("User is already a member of this organization.")

    member = OrganizationMember(organization_id=org_id, user_id=user.id, role=role)
    db.session.add(member)
    if user.organization_id is None:
        user.organization_id = org_id
    db.session.flush()

    audit_service.log_change(
        user_id=actor.id,
        action_type="CREATE",
        entity_type="organization_member",
        entity_id=member.id,
        new_value={"user_id": user.id, "role": role},
        organization_id=org_id,
    )
    db.session.commit()
    return member


def update_member_role(
    actor: User, org_id: int, user_id: int, role: str
) -> OrganizationMember:
    """
    Change a member's role; the last owner cannot be demoted.

    Raises:
        PermissionDeniedError, NotFoundError, ValidationError, ConflictError.
    """
    get_organization_or_404(org_id)
    _require_manager(actor, org_id)
    _validate_member_role(role)

    member = get_membership(user_id, org_id)
    if member is None:
        raise NotFoundError("Member not found.")
    if member.role == role:
        return member
    if (member.role == "owner" or role == "owner") and not actor.is_system_admin:
        actor_membership = get_membership(actor.id, org_id)
        if actor_membership is None or actor_membership.role != "owner":
            raise PermissionDeniedError("Only owners can change owner roles.")
    if member.role == "owner" and _owner_count(org_id) <= 1:
        raise ConflictError("Cannot demote the last owner of this organization.")

    previous_role = member.role
    member.role = role
    audit_service.log_change(
        user_id=actor.id,
        action_type="UPDATE",
        entity_type="organization_member",
        entity_id=member.id,
        previous_value={"role": previous_role},
        new_value={"role": role},
        organization_id=org_id,
    )
    db.session.commit()
    return member


def remove_member(actor: User, org_id: int, user_id: int) -> None:
    """
    Remove a member; members may remove themselves.

    Raises:
        PermissionDeniedError, NotFoundError, ConflictError.
    """
    get_organization_or_404(org_id)
    if actor.id != user_id:
        _require_manager(actor, org_id)

    member = get_membership(user_id, org_id)
    if member is None:
        raise NotFoundError("Member not found.")
    if member.role == "owner" and _owner_count(org_id) <= 1:
        raise ConflictError("Cannot remove the last owner of this organization.")

    user = member.user
    if user is not None and user.organization_id == org_id:
        user.organization_id = None

    audit_service.log_change(
        user_id=actor.id,
        action_type="DELETE",
        entity_type="organization_member",
        entity_id=member.id,
        previous_value={"user_id": user_id, "role": member.role},
        organization_id=org_id,
    )
    db.session.delete(member)
    db.session.commit()


# -- Invitations -----------------------------------------------------------


def _expire_stale_invitations(org_id: int | None = None) -> None:
    query = OrganizationInvitation.query.filter(
        OrganizationInvitation.status == "pending",
        OrganizationInvitation.expires_at <= utcnow(),
    )
    if org_id is not None:
        query = query.filter(OrganizationInvitation.organization_id == org_id)
    stale = query.all()
    for invitation in stale:
        invitation.status = "expired"
    if stale:
        db.session.commit()
        logger.info("Marked %d invitation(s) expired", len(stale))


def list_invitations(actor: User, org_id: int) -> list[OrganizationInvitation]:
    """Pending, unexpired invitations of an organization."""
    get_organization_or_404(org_id)
    _require_manager(actor, org_id)
    _expire_stale_invitations(org_id)
    return (
        OrganizationInvitation.query.filter_by(organization_id=org_id, status="pending")
        .order_by(OrganizationInvitation.created_at.desc())
        .all()
    )


def create_invitation(
    actor: User,
    org_id: int,
    email: str,
    role: str = "member",
    message: str | None = None,
) -> OrganizationInvitation:
    """
    Invite an email address to join an organization.

    The token is 32 URL-safe characters and expires after
    ``INVITATION_EXPIRY_DAYS``.

    Raises:
        PermissionDeniedError, ValidationError, ConflictError.
    """
    get_organization_or_404(org_id)
    _require_manager(actor, org_id)

    email = (email or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("A valid email address is required.")
    _validate_member_role(role)
    if role == "owner":
        raise ValidationError("Invitations cannot grant the owner role.")

    existing_user = user_service.get_user_by_email(email)
    if existing_user is not None and get_membership(existing_user.id, org_id):
        raise ConflictError("User is already a member of this organization.")

    _expire_stale_invitations(org_id)
    if OrganizationInvitation.query.filter_by(
        organization_id=org_id, email=email, status="pending"
    ).first():
        raise ConflictError("A pending invitation already exists for this email.")

    days = current_app.config.get("INVITATION_EXPIRY_DAYS", 7)
    invitation = OrganizationInvitation(
        organization_id=org_id,
        email=email,
        role=role,
        token=secrets.token_urlsafe(24),
        status="pending",
        message=message,
        invited_by=actor.id,
        expires_at=utcnow() + timedelta(days=days),
    )
    db.session.add(invitation)
    db.session.flush()

    audit_service.log_change(
        user_id=actor.id,
        action_type="CREATE",
        entity_type="organization_invitation",
        entity_id=invitation.id,
        new_value={"email": email, "role": role},
        organization_id=org_id,
    )
    db.session.commit()
    logger.info("Invitation %s sent to %s for org %s", invitation.id, email, org_id)
    return invitation


def revoke_invitation(actor: User, org_id: int, invitation_id: int) -> None:
    get_organization_or_404(org_id)
    _require_manager(actor, org_id)

    invitation = db.session.get(OrganizationInvitation, invitation_id)
    if invitation is None or invitation.organization_id != org_id:
        raise NotFoundError("Invitation not found.")
    if invitation.status != "pending":
        raise ValidationError(f"Invitation is already {invitation.status}.")

    invitation.status = "revoked"
    audit_service.log_change(
        user_id=actor.id,
        action_type="UPDATE",
        entity_type="organization_invitation",
        entity_id=invitation.id,
        previous_value={"status": "pending"},
        new_value={"status": "revoked"},
        organization_id=org_id,
    )
    db.session.commit()


def accept_invitation(user: User, token: str) -> OrganizationMember:
    """
    Redeem an invitation for the logged-in user.

    Raises:
        NotFoundError: Unknown token.
        PermissionDeniedError: The invitation was sent to another email.
        ValidationError: The invitation is expired, revoked or used.
    """
    if user.request_api_key is not None:
        raise PermissionDeniedError("API keys cannot accept invitations.")
    invitation = OrganizationInvitation.query.filter_by(token=token).first()
    if invitation is None:
        raise NotFoundError("Invitation not found.")

    if invitation.status == "pending" and invitation.is_expired:
        invitation.status = "expired"
        db.session.commit()
    if invitation.status == "expired":
        raise ValidationError("This invitation has expired.")
    if invitation.status != "pending":
        raise ValidationError(f"This invitation has been {invitation.status}.")
    if invitation.email.lower() != user.email.lower():
        raise PermissionDeniedError("This invitation was sent to a different email.")
    if get_organization(invitation.organization_id) is None:
        raise NotFoundError("Organization not found.")

    member = get_membership(user.id, invitation.organization_id)
    if member is None:
        member = OrganizationMember(
            organization_id=invitation.organization_id,
            user_id=user.id,
            role=invitation.role,
        )
        db.session.add(member)
    if user.organization_id is None:
        user.organization_id = invitation.organization_id

    invitation.status = "accepted"
    invitation.accepted_at = utcnow()
    db.session.flush()

    audit_service.log_change(
        user_id=user.id,
        action_type="UPDATE",
        entity_type="organization_invitation",
        entity_id=invitation.id,
        previous_value={"status": "pending"},
        new_value={"status": "accepted"},
        organization_id=invitation.organization_id,
    )
    db.session.commit()
    logger.info(
        "User %s joined organization %s by invitation",
        user.id,
        invitation.organization_id,
    )
    return member
