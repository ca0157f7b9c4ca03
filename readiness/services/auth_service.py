"""
Auth service — signup, password login, email tokens and API key auth.

Passwords are hashed with ``werkzeug.security``.  Email confirmation
and password reset links carry ``itsdangerous`` signed tokens, each
bound to its own salt so one kind of token cannot be replayed as the
other.  Login attempts are throttled per client IP in process memory.
"""

import logging
import re
from collections import defaultdict
from datetime import datetime, timedelta

from flask import current_app, g
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from readiness import rbac
from readiness.errors import (
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)
from readiness.extensions import db
from readiness.models.user import User
from readiness.services import (
    api_key_service,
    audit_service,
    organization_service,
    user_service,
)
from readiness.utils import utcnow

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_CONFIRM_SALT = "email-confirm"
_RESET_SALT = "password-reset"

# IP -> timestamps of recent login attempts.
_login_attempts: dict[str, list[datetime]] = defaultdict(list)


# -- Login throttle --------------------------------------------------------


def _check_rate_limit(ip: str) -> None:
    """
    Raise ``RateLimitError`` once ``LOGIN_RATE_LIMIT`` attempts from ``ip``
    fall inside the last ``LOGIN_RATE_WINDOW`` seconds.
    """
    limit = current_app.config.get("LOGIN_RATE_LIMIT", 5)
    window = current_app.config.get("LOGIN_RATE_WINDOW", 300)
    now = utcnow()
    cutoff = now - timedelta(seconds=window)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    if len(_login_attempts[ip]) >= limit:
        oldest = _login_attempts[ip][0]
        retry_after = max(1, int((oldest - cutoff).total_seconds()) + 1)
        logger.warning("Login rate limit hit for %s", ip)
        raise RateLimitError(
            "Too many login attempts. Please try again later.", retry_after
        )


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(utcnow())


def reset_login_attempts() -> None:
    """Forget all recorded attempts."""
    _login_attempts.clear()


# -- Validation ------------------------------------------------------------


def validate_email(email) -> str:
    email = (email or "").strip().lower() if isinstance(email, str) else ""
    if not email or len(email) > 255 or not _EMAIL_RE.match(email):
        raise ValidationError("A valid email address is required.")
    return email


def validate_password(password) -> str:
    """At least 8 characters with a letter and a digit."""
    if not isinstance(password, str) or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long.")
    if not re.search(r"[A-Za-z]", password) or not re.search(r"\d", password):
        raise ValidationError("Password must contain a letter and a number.")
    return password


# -- Tokens ----------------------------------------------------------------


def _serializer(salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=salt)


def generate_confirmation_token(user: User) -> str:
    return _serializer(_CONFIRM_SALT).dumps({"uid": user.id, "email": user.email})


def generate_reset_token(user: User) -> str:
    # The hash fragment invalidates the token once the password changes.
    fingerprint = (user.password_hash or "")[-12:]
    return _serializer(_RESET_SALT).dumps({"uid": user.id, "pw": fingerprint})


def _load_token(token: str, salt: str) -> dict:
    max_age = current_app.config.get("EMAIL_TOKEN_MAX_AGE", 86400)
    try:
        data = _serializer(salt).loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise ValidationError("This link has expired.") from exc
    except BadSignature as exc:
        raise ValidationError("This link is invalid.") from exc
    if not isinstance(data, dict) or "uid" not in data:
        raise ValidationError("This link is invalid.")
    return data


# -- Signup ----------------------------------------------------------------


def signup(data: dict) -> tuple[User, bool]:
    """
    Register a new account.

    When ``organizationName`` is given, an organization is created in
    the same transaction, the user becomes its owner and gets the
    ``org_admin`` role.

    Returns:
        ``(user, email_confirmation_required)``.

    Raises:
        PermissionDeniedError: Signup is disabled.
        ValidationError: Bad email, password or names.
        ConflictError: The email is already registered.
    """
    if not current_app.config.get("SIGNUP_ENABLED", True):
        raise PermissionDeniedError("Signup is currently disabled.")

    email = validate_email(data.get("email"))
    password = validate_password(data.get("password"))
    first_name = (data.get("firstName") or "").strip()
    last_name = (data.get("lastName") or "").strip()
    if not first_name or not last_name:
        raise ValidationError("firstName and lastName are required.")
    if len(first_name) > 100 or len(last_name) > 100:
        raise ValidationError("Names must be 100 characters or fewer.")
    org_name = (data.get("organizationName") or "").strip()

    confirmation_required = current_app.config.get("REQUIRE_EMAIL_CONFIRMATION", False)
    user = user_service.create_user(
        email=email,
        password=password,
        first_name=first_name,
        last_name=last_name,
        role=rbac.ORG_ADMIN if org_name else rbac.USER,
        confirmed=not confirmation_required,
    )
    if org_name:
        organization_service.build_organization(user, {"name": org_name})

    audit_service.log_change(
        user_id=user.id,
        action_type="user.signup",
        entity_type="user",
        entity_id=user.id,
        new_value={"email": email, "role": user.role},
        organization_id=user.organization_id,
    )
    db.session.commit()

    if confirmation_required:
        token = generate_confirmation_token(user)
        # Delivery is out of band; the token is logged at DEBUG only.
        logger.debug("Confirmation token for %s: %s", email, token)
    logger.info("New signup: %s (role %s)", email, user.role)
    return user, confirmation_required


# -- Login -----------------------------------------------------------------


def authenticate(email, password, ip: str) -> User:
    """
    Check credentials and record the login.

    Raises:
        RateLimitError:        Too many attempts from ``ip``.
        AuthenticationError:   Unknown email, wrong password or inactive
                               account.
        PermissionDeniedError: Email not yet confirmed while
                               confirmation is required.
    """
    _check_rate_limit(ip)
    _record_attempt(ip)

    email = email.strip().lower() if isinstance(email, str) else ""
    password = password if isinstance(password, str) else ""
    if not email or not password:
        raise ValidationError("Email and password are required.")

    user = user_service.get_user_by_email(email)
    if user is None or not user.is_active or not user.check_password(password):
        audit_service.log_failed_login(email, user.id if user else None)
        db.session.commit()
        logger.warning("Failed login for %s from %s", email, ip)
        raise AuthenticationError("Invalid email or password.")

    if (
        current_app.config.get("REQUIRE_EMAIL_CONFIRMATION", False)
        and user.email_confirmed_at is None
    ):
        raise PermissionDeniedError("Please confirm your email before logging in.")

    user_service.record_login(user)
    audit_service.log_login(user.id, user.organization_id)
    db.session.commit()
    logger.info("User %s logged in", user.email)
    return user


def record_logout(user: User) -> None:
    audit_service.log_logout(user.id, user.organization_id)
    db.session.commit()


# -- Email confirmation (auth callback) ------------------------------------


def exchange_code_for_user(code: str) -> User:
    """
    Redeem an email confirmation code.

    Marks the email confirmed and records a login.  The caller starts
    the session.

    Raises:
        ValidationError: Missing, malformed or expired code.
        AuthenticationError: The account no longer exists or is inactive.
    """
    if not code:
        raise ValidationError("Missing confirmation code.")
    data = _load_token(code, _CONFIRM_SALT)
    user = user_service.get_user_by_id(data["uid"])
    if user is None or not user.is_active or user.email != data.get("email"):
        raise AuthenticationError("Account not found or inactive.")

    if user.email_confirmed_at is None:
        user.email_confirmed_at = utcnow()
        audit_service.log_change(
            user_id=user.id,
            action_type="UPDATE",
            entity_type="user",
            entity_id=user.id,
            new_value={"email_confirmed": True},
            organization_id=user.organization_id,
        )
    user_service.record_login(user)
    audit_service.log_login(user.id, user.organization_id)
    db.session.commit()
    return user


# -- Passwords -------------------------------------------------------------


def request_password_reset(email) -> str | None:
    """
    Issue a reset token for an existing active account.

    Returns the token, or None when no such account exists.  Callers
    must respond identically in both cases.
    """
    try:
        email = validate_email(email)
    except ValidationError:
        return None
    user = user_service.get_user_by_email(email)
    if user is None or not user.is_active:
        logger.info("Password reset requested for unknown email")
        return None
    token = generate_reset_token(user)
    logger.debug("Password reset token for %s: %s", email, token)
    logger.info("Password reset issued for user %s", user.id)
    return token


def reset_password(token: str, new_password) -> User:
    """
    Set a new password from a reset token.

    Raises:
        ValidationError: Bad token, reused token or weak password.
    """
    if not token:
        raise ValidationError("Reset token is required.")
    data = _load_token(token, _RESET_SALT)
    validate_password(new_password)

    user = user_service.get_user_by_id(data["uid"])
    if user is None or not user.is_active:
        raise ValidationError("This link is invalid.")
    if (user.password_hash or "")[-12:] != data.get("pw"):
        raise ValidationError("This link has already been used.")

    user.set_password(new_password)
    # Holding a valid reset token proves control of the mailbox.
    if user.email_confirmed_at is None:
        user.email_confirmed_at = utcnow()
    audit_service.log_change(
        user_id=user.id,
        action_type="UPDATE",
        entity_type="user",
        entity_id=user.id,
        new_value={"password": "reset"},
        organization_id=user.organization_id,
    )
    db.session.commit()
    return user


def change_password(user: User, current_password, new_password) -> None:
    """
    Raises:
        AuthenticationError: The current password is wrong.
        ValidationError: The new password fails the policy.
    """
    if not isinstance(current_password, str) or not user.check_password(
        current_password
    ):
        raise AuthenticationError("Current password is incorrect.")
    validate_password(new_password)
    if current_password == new_password:
        raise ValidationError("New password must differ from the current one.")

    user.set_password(new_password)
    audit_service.log_change(
        user_id=user.id,
        action_type="UPDATE",
        entity_type="user",
        entity_id=user.id,
        new_value={"password": "changed"},
        organization_id=user.organization_id,
    )
    db.session.commit()


# -- API keys --------------------------------------------------------------


def load_user_from_authorization(header: str | None) -> User | None:
    """
    Resolve ``Authorization: Bearer <key>`` to the key's owner.

    The matched key is stored on ``g.api_key`` so permission checks can
    narrow to its scopes.
    """
    if not header or not header.lower().startswith("bearer "):
        return None
    api_key = api_key_service.authenticate(header[7:].strip())
    if api_key is None:
        return None
    g.api_key = api_key
    return api_key.user
