"""
core/errors.py -- Error taxonomy shared by every TeamGate service.

Services raise these; they never raise HTTPException. The api/ layer maps
each class to its status code and renders the standard error envelope, so
the same error reads the same way whether the caller is a route, a CLI, or
a test.

  ValidationError  400  malformed input
  AuthError        401  missing, invalid, or expired credential
  ForbiddenError   403  same-tenant caller lacking privilege
  NotFoundError    404  absent resource OR cross-tenant resource (deliberately
                        indistinguishable to the caller)
  ConflictError    409  duplicate email/slug, already-a-member, duplicate
                        active invitation, team deletion blocked by members
  InternalError    500  anything unexpected; the message is always generic

Layer rule: no imports from outside core/.
"""

from __future__ import annotations

from typing import Any


class TeamGateError(Exception):
    """Base class. `code` is the stable machine-readable identifier."""

    code = "error"
    status_code = 500

    def __init__(self, message: str, **metadata: Any) -> None:
        super().__init__(message)
        self.message = message
        self.metadata: dict[str, Any] = metadata


class ValidationError(TeamGateError):
    code = "validation_error"
    status_code = 400


class AuthError(TeamGateError):
    code = "unauthorized"
    status_code = 401


class ForbiddenError(TeamGateError):
    code = "forbidden"
    status_code = 403


class NotFoundError(TeamGateError):
    code = "not_found"
    status_code = 404


class ConflictError(TeamGateError):
    code = "conflict"
    status_code = 409


class InternalError(TeamGateError):
    """Unexpected failure. The original exception is chained as __cause__ and
    logged server-side; only the generic message reaches the caller."""

    code = "internal_error"
    status_code = 500
