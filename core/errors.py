"""
core/errors.py -- Error taxonomy shared by the auth core and the HTTP layer.

Every failure the service reports to a client is one of these. The API layer
maps them to the response envelope in api/main.py; nothing below the API
layer builds HTTP responses itself.

  ValidationError      400  missing or malformed input
  ConflictError        400  duplicate identity
  AuthenticationError  401  missing/invalid/expired token or credentials
  AuthorizationError   403  insufficient role or unverified email
  NotFoundError        404  unknown resource (not on enumeration-sensitive paths)
  RateLimitError       429  carries retry_after seconds
  DependencyError      500  notifier or store failure, always with an error_id
"""

from __future__ import annotations

import uuid


def new_error_id() -> str:
    """Return a fresh correlation id for a server-side failure."""
    return str(uuid.uuid4())


class ServiceError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400
    default_message = "Invalid request."


class ConflictError(ServiceError):
    status_code = 400
    default_message = "Resource already exists."


class AuthenticationError(ServiceError):
    status_code = 401
    default_message = "Authentication required."


class AuthorizationError(ServiceError):
    status_code = 403
    default_message = "Insufficient permissions to access this resource."


class NotFoundError(ServiceError):
    status_code = 404
    default_message = "Not found."


class RateLimitError(ServiceError):
    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class DependencyError(ServiceError):
    """A collaborator (mail relay, database) failed after the request was accepted.

    The error_id is generated here so the same value reaches both the log
    line and the client.
    """

    status_code = 500

    def __init__(self, message: str | None = None, error_id: str | None = None) -> None:
        super().__init__(message)
        self.error_id = error_id or new_error_id()
