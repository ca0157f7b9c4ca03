"""
User accounts.

Users sign up with email and password.  The global ``role`` column holds
one of the names defined in ``readiness.rbac``; permissions are derived
from it rather than stored per user.

Role = what you can do.  Organization = where you can do it.
"""

from flask import g, has_request_context
from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from readiness import rbac
from readiness.extensions import db
from readiness.utils import isoformat, utcnow


class User(UserMixin, db.Model):
    """
    Application user record.

    ``password_hash`` is NULL for users provisioned by an admin until
    they set a password with their reset token.

    Inherits from ``UserMixin`` to satisfy Flask-Login requirements
    (``is_authenticated``, ``is_active``, ``get_id``).
    """

    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=rbac.USER)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organization.id"), nullable=True
    )
    department = db.Column(db.String(100), nullable=True)
    job_title = db.Column(db.String(100), nullable=True)
    preferences = db.Column(db.JSON, nullable=False, default=dict)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    email_confirmed_at = db.Column(db.DateTime, nullable=True)
    first_login_at = db.Column(db.DateTime, nullable=True)
    last_login = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # -- Relationships -----------------------------------------------------
    organization = db.relationship("Organization", foreign_keys=[organization_id])
    memberships = db.relationship(
        "OrganizationMember", back_populates="user", lazy="dynamic"
    )

    # ---- Convenience properties ------------------------------------------

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_system_admin(self) -> bool:
        """API key requests never get the system admin bypass."""
        return self.role == rbac.SYSTEM_ADMIN and self.request_api_key is None

    @property
    def permissions(self) -> list[str]:
        return rbac.get_role_permissions(self.role)

    def has_permission(self, permission: str) -> bool:
        """
        Check if the user's role grants a specific permission.

        When the current request is authenticated with one of this user's
        API keys, the key's scopes must include the permission as well.
        """
        if not rbac.has_permission(self.role, permission):
            return False
        api_key = self.request_api_key
        return api_key is None or permission in (api_key.scopes or [])

    # ---- API key narrowing -----------------------------------------------

    @property
    def request_api_key(self):
        """The ``ApiKey`` authenticating this request, if it is this user's."""
        if not has_request_context():
            return None
        api_key = g.get("api_key")
        if api_key is None or api_key.user_id != self.id:
            return None
        return api_key

    @property
    def home_organization_id(self) -> int | None:
        """The key's organization during key requests, else the primary one."""
        api_key = self.request_api_key
        if api_key is not None:
            return api_key.organization_id
        return self.organization_id

    def api_key_allows_organization(self, org_id: int | None) -> bool:
        api_key = self.request_api_key
        return api_key is None or api_key.organization_id == org_id

    def has_role(self, *roles: str) -> bool:
        return self.role in roles

    # ---- Passwords -------------------------------------------------------

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    # ---- Serialization ---------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "fullName": self.full_name,
            "role": self.role,
            "roleDisplayName": rbac.role_display_name(self.role),
            "organizationId": self.organization_id,
            "department": self.department,
            "jobTitle": self.job_title,
            "preferences": self.preferences or {},
            "isActive": self.is_active,
            "emailConfirmed": self.email_confirmed_at is not None,
            "lastLogin": isoformat(self.last_login),
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<User {self.email}>"
