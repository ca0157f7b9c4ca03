"""
Organization (tenant) models.

``Organization`` is the tenant boundary for surveys, responses and
analytics.  Users belong to organizations through ``OrganizationMember``
rows, each carrying a member role that is distinct from the user's
global role.  ``OrganizationInvitation`` and ``ApiKey`` hang off an
organization as well.
"""

from readiness.extensions import db
from readiness.utils import isoformat, utcnow

ORGANIZATION_SIZES = ("startup", "small", "medium", "large", "enterprise")

MEMBER_ROLES = ("owner", "admin", "manager", "member", "viewer")

# Member roles allowed to manage members, invitations and settings.
MANAGING_MEMBER_ROLES = ("owner", "admin")

INVITATION_STATUSES = ("pending", "accepted", "expired", "revoked")

# Values returned for any setting the organization has not overridden.
DEFAULT_SETTINGS = {
    "allowSelfRegistration": False,
    "defaultRole": "user",
    "requireEmailVerification": True,
    "dataRetentionDays": 365,
    "enableAuditLogs": False,
    "enable2FA": False,
    "enableSSO": False,
    "ssoProvider": None,
    "ssoConfig": None,
}


class Organization(db.Model):
    """
    A customer organization.

    Deleting an organization sets ``deleted_at``; soft-deleted rows are
    excluded from every lookup in ``organization_service``.
    """

    __tablename__ = "organization"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    industry = db.Column(db.String(100), nullable=True)
    size = db.Column(db.String(20), nullable=True)
    website = db.Column(db.String(500), nullable=True)
    settings = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    deleted_at = db.Column(db.DateTime, nullable=True)

    # -- Relationships -----------------------------------------------------
    members = db.relationship(
        "OrganizationMember",
        back_populates="organization",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def merged_settings(self) -> dict:
        """Stored settings layered over ``DEFAULT_SETTINGS``."""
        merged = dict(DEFAULT_SETTINGS)
        merged.update(self.settings or {})
        return merged

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "industry": self.industry,
            "size": self.size,
            "website": self.website,
            "settings": self.merged_settings,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Organization {self.name}>"


class OrganizationMember(db.Model):
    """A user's membership in one organization."""

    __tablename__ = "organization_member"
    __table_args__ = (
        db.UniqueConstraint(
            "organization_id",
            "user_id",
            name="UQ_organization_member_org_user",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organization.id"), nullable=False
    )
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="member")
    joined_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # -- Relationships -----------------------------------------------------
    organization = db.relationship("Organization", back_populates="members")
    user = db.relationship("User", back_populates="memberships")

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "email": self.user.email if self.user else None,
            "fullName": self.user.full_name if self.user else None,
            "role": self.role,
            "joinedAt": isoformat(self.joined_at),
        }

    def __repr__(self) -> str:
        return f"<OrganizationMember org={self.organization_id} user={self.user_id}>"


class OrganizationInvitation(db.Model):
    """
    An emailed invitation to join an organization.

    ``status`` values: pending, accepted, expired, revoked.  Pending
    invitations past ``expires_at`` are marked expired when next read.
    """

    __tablename__ = "organization_invitation"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organization.id"), nullable=False
    )
    email = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="member")
    token = db.Column(db.String(64), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    message = db.Column(db.Text, nullable=True)
    invited_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    accepted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # -- Relationships -----------------------------------------------------
    organization = db.relationship("Organization")
    inviter = db.relationship("User", foreign_keys=[invited_by])

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "message": self.message,
            "invitedBy": self.invited_by,
            "expiresAt": isoformat(self.expires_at),
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<OrganizationInvitation {self.email} status={self.status}>"


class ApiKey(db.Model):
    """
    Organization-scoped bearer token for programmatic access.

    Only the SHA-256 hex digest of the key is stored.  ``key_prefix``
    keeps the first characters so users can tell keys apart.
    ``scopes`` is a list of permission strings; an empty list means the
    key carries the owning user's full permissions.
    """

    __tablename__ = "api_key"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organization.id"), nullable=False
    )
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    key_prefix = db.Column(db.String(16), nullable=False)
    key_hash = db.Column(db.String(64), unique=True, nullable=False)
    scopes = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    last_used_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # -- Relationships -----------------------------------------------------
    organization = db.relationship("Organization")
    user = db.relationship("User")

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "name": self.name,
            "keyPrefix": self.key_prefix,
            "scopes": self.scopes or [],
            "isActive": self.is_active,
            "expiresAt": isoformat(self.expires_at),
            "lastUsedAt": isoformat(self.last_used_at),
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<ApiKey {self.key_prefix}... org={self.organization_id}>"
