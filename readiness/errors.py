"""
Service-layer exceptions and the JSON error envelope.

Services raise these instead of returning error codes.  They subclass
``ValueError`` so callers that only care about "the operation was
rejected" can keep catching ``ValueError``.  The application factory
registers ``register_error_handlers`` so every failure, including
plain HTTP errors raised with ``abort()``, reaches the client as::

    {"error": "Template not found."}
"""

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ServiceError(ValueError):
    """Base class for expected, client-facing failures."""

    status_code = 400

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ServiceError):
    """The request body or query string is malformed."""

    status_code = 400


class AuthenticationError(ServiceError):
    """Credentials are missing or wrong."""

    status_code = 401


class PermissionDeniedError(ServiceError):
    """The caller is authenticated but not allowed to do this."""

    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    """The change would violate a uniqueness or last-admin invariant."""

    status_code = 409


class RateLimitError(ServiceError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, details={"retryAfter": retry_after})
        self.retry_after = retry_after


def error_response(message: str, status_code: int, details=None):
    """Build the JSON error envelope used by every route."""
    body = {"error": message}
    if details is not None:
        body["details"] = details
    return jsonify(body), status_code


def register_error_handlers(app: Flask) -> None:
    """Map service exceptions and HTTP errors to the JSON envelope."""
    # pylint: disable=import-outside-toplevel
    from readiness.extensions import db

    @app.errorhandler(ServiceError)
    def handle_service_error(error: ServiceError):
        response, status = error_response(
            error.message, error.status_code, error.details
        )
        if isinstance(error, RateLimitError):
            response.headers["Retry-After"] = str(error.retry_after)
        return response, status

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return error_response(error.description or error.name, error.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # pylint: disable=unused-argument
        """Roll back the failed unit of work and hide the details."""
        db.session.rollback()
        logger.exception("Unhandled error while serving request")
        return error_response("Internal server error", 500)
