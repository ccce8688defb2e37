"""
core/errors.py -- Domain error taxonomy for TaskBoard.

Every failure a use case can report to a caller is one of the classes below.
Each carries a stable machine-readable code and the HTTP status the API layer
maps it to, so api/main.py installs a single exception handler for the base
class instead of one per kind.

  ValidationFailure      422  malformed input (reasons lists every problem)
  AuthenticationFailure  401  bad credentials; expired/forged/wrong-kind/revoked token
  AuthorizationFailure   403  valid principal, insufficient rights
  ConflictFailure        409  duplicate email
  NotFound               404  resource absent, or not visible to the principal
  InfrastructureFailure  500  store or hashing fault; message is never shown to clients

ConfigurationError is not part of the request taxonomy: it is raised at
startup (bad duration strings, missing secrets) and aborts the process.

Layer rule: core/ is the kernel. No imports from api/, auth/, projects/, cache/.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Deployment configuration is invalid."""


class DomainError(Exception):
    """Base class for failures that are recoverable at the HTTP boundary."""

    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, message: str, *, reasons: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reasons = list(reasons or [])


class ValidationFailure(DomainError):
    status_code = 422
    code = "validation_error"


class AuthenticationFailure(DomainError):
    status_code = 401
    code = "unauthorized"


class AuthorizationFailure(DomainError):
    status_code = 403
    code = "forbidden"


class ConflictFailure(DomainError):
    status_code = 409
    code = "conflict"


class NotFound(DomainError):
    status_code = 404
    code = "not_found"


class InfrastructureFailure(DomainError):
    """A store, cache or hashing backend failed.

    The message is for logs only; the API handler replaces it with a generic
    one before anything reaches the client.
    """

    status_code = 500
    code = "internal_error"
