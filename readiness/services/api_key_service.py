"""
API key service — issue, list, revoke and authenticate organization keys.

Plaintext keys are returned exactly once, at creation.  Only the
SHA-256 hex digest is stored, so lookups hash the presented key and
compare digests.
"""

import hashlib
import logging
import secrets
from datetime import timedelta

from flask import current_app

from readiness import rbac
from readiness.errors import NotFoundError, PermissionDeniedError, ValidationError
from readiness.extensions import db
from readiness.models.organization import ApiKey
from readiness.models.user import User
from readiness.services import audit_service, organization_service
from readiness.utils import utcnow

logger = logging.getLogger(__name__)

MAX_EXPIRY_DAYS = 365


def hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def _require_key_admin(actor: User, org_id: int) -> None:
    """
    Org admins of that organization or system admins.

    Through an API key this also needs ``org:edit:own`` in the key's
    scopes and the key's own organization.
    """
    if actor.is_system_admin:
        return
    if (
        actor.role in (rbac.ORG_ADMIN, rbac.SYSTEM_ADMIN)
        and actor.has_permission(rbac.ORG_EDIT_OWN)
        and organization_service.user_can_access_organization(actor, org_id)
    ):
        return
    raise PermissionDeniedError("Only organization admins can manage API keys.")


def list_keys(actor: User, org_id: int) -> list[ApiKey]:
    organization_service.get_organization_or_404(org_id)
    _require_key_admin(actor, org_id)
    return (
        ApiKey.query.filter_by(organization_id=org_id)
        .order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
        .all()
    )


def create_key(
    actor: User,
    org_id: int,
    name: str,
    scopes: list,
    expires_in_days: int | None = None,
) -> tuple[ApiKey, str]:
    """
    Issue a new key for an organization.

    Args:
        actor:           The admin creating the key; it acts as this user.
        org_id:          Organization the key is bound to.
        name:            Human-readable label.
        scopes:          Non-empty list of permission strings.
        expires_in_days: Optional lifetime, 1 to 365 days.

    Returns:
        ``(api_key, plaintext)``; the plaintext is never stored.

    Raises:
        ValidationError, PermissionDeniedError, NotFoundError.
    """
    organization_service.get_organization_or_404(org_id)
    _require_key_admin(actor, org_id)

    name = (name or "").strip()
    if not name or len(name) > 100:
        raise ValidationError("API key name is required (max 100 characters).")
    if not isinstance(scopes, list) or not scopes:
        raise ValidationError("scopes must be a non-empty list of permissions.")
    invalid = [
        s for s in scopes if not isinstance(s, str) or s not in rbac.ALL_PERMISSIONS
    ]
    if invalid:
        raise ValidationError(
            f"Invalid permissions: {', '.join(map(str, invalid))}",
            details={"validPermissions": sorted(rbac.ALL_PERMISSIONS)},
        )
    # Scopes of a key used for this request bound what it can grant.
    ungranted = [s for s in scopes if not actor.has_permission(s)]
    if ungranted:
        raise PermissionDeniedError(
            f"You cannot grant permissions you do not hold: {', '.join(ungranted)}"
        )

    expires_at = None
    if expires_in_days is not None:
        if (
            isinstance(expires_in_days, bool)
            or not isinstance(expires_in_days, int)
            or not 1 <= expires_in_days <= MAX_EXPIRY_DAYS
        ):
            raise ValidationError(
                f"expiresInDays must be between 1 and {MAX_EXPIRY_DAYS}."
            )
        expires_at = utcnow() + timedelta(days=expires_in_days)

    prefix = current_app.config.get("API_KEY_PREFIX", "ark_")
    plaintext = f"{prefix}{secrets.token_hex(32)}"
    api_key = ApiKey(
        organization_id=org_id,
        user_id=actor.id,
        name=name,
        key_prefix=plaintext[: len(prefix) + 8],
        key_hash=hash_key(plaintext),
        scopes=list(dict.fromkeys(scopes)),
        is_active=True,
        expires_at=expires_at,
    )
    db.session.add(api_key)
    db.session.flush()

    audit_service.log_change(
        user_id=actor.id,
        action_type="CREATE",
        entity_type="api_key",
        entity_id=api_key.id,
        new_value={"name": name, "scopes": api_key.scopes},
        organization_id=org_id,
    )
    db.session.commit()
    logger.info("API key %s created for organization %s", api_key.id, org_id)
    return api_key, plaintext


def revoke_key(actor: User, org_id: int, key_id: int) -> ApiKey:
    organization_service.get_organization_or_404(org_id)
    _require_key_admin(actor, org_id)

    api_key = db.session.get(ApiKey, key_id)
    if api_key is None or api_key.organization_id != org_id:
        raise NotFoundError("API key not found.")
    if api_key.is_active:
        api_key.is_active = False
        audit_service.log_change(
            user_id=actor.id,
            action_type="DELETE",
            entity_type="api_key",
            entity_id=api_key.id,
            previous_value={"name": api_key.name, "is_active": True},
            organization_id=org_id,
        )
        db.session.commit()
    return api_key


def authenticate(raw_key: str) -> ApiKey | None:
    """
    Resolve a presented key to an active, unexpired ``ApiKey``.

    Updates ``last_used_at`` on success.  Returns None for unknown,
    revoked or expired keys, or keys whose owner is inactive.
    """
    if not raw_key:
        return None
    api_key = ApiKey.query.filter_by(key_hash=hash_key(raw_key)).first()
    if api_key is None or not api_key.is_active or api_key.is_expired:
        return None
    if api_key.user is None or not api_key.user.is_active:
        return None
    if organization_service.get_organization(api_key.organization_id) is None:
        return None

    api_key.last_used_at = utcnow()
    db.session.commit()
    return api_key
