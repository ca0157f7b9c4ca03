"""
Small helpers shared by services and routes.

Timestamps are stored as naive UTC datetimes so that values read back
from SQLite and PostgreSQL compare cleanly with ``utcnow()``.
"""

from datetime import datetime, timezone

from flask import request

from readiness.errors import ValidationError


def utcnow() -> datetime:
    """Return the current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    """Serialize a stored timestamp for JSON output."""
    return value.isoformat() if value else None


def parse_datetime(value: str | None, field: str) -> datetime | None:
    """
    Parse an ISO-8601 date or datetime string from a request.

    Aware values are converted to naive UTC.

    Raises:
        ValidationError: If the value is not a valid ISO-8601 string.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an ISO-8601 date.") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def get_json_body() -> dict:
    """
    Return the request's JSON object body.

    Raises:
        ValidationError: If the body is missing or not a JSON object.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def require_text(value, field: str, max_length: int = 255) -> str:
    """
    Return a required string field with surrounding whitespace removed.

    Raises:
        ValidationError: If the value is missing, not a string, blank or
                         longer than ``max_length``.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required.")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be {max_length} characters or fewer.")
    return value


def get_pagination(default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """
    Read ``page`` and ``limit`` from the query string.

    Raises:
        ValidationError: If either value is out of range.
    """
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", default_limit, type=int)
    if page < 1:
        raise ValidationError("page must be 1 or greater.")
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}.")
    return page, limit


def pagination_dict(pagination) -> dict:
    """Describe a Flask-SQLAlchemy pagination object."""
    return {
        "page": pagination.page,
        "limit": pagination.per_page,
        "total": pagination.total,
        "pages": pagination.pages,
    }
