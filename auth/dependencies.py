"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Credentials arrive as an Authorization: Bearer <access token> header. The
token is verified and the account reloaded by AccountService.authenticate(),
so a soft-deleted account is rejected even while its token is unexpired.

try_get_current_account() is the soft variant (returns None on failure).
get_current_account() wraps it and raises AuthError (401) if unauthenticated.
require_admin() wraps get_current_account() and raises ForbiddenError (403)
if the account is not a platform ADMIN.

Errors are TeamGateError subclasses, rendered by the handler in api/main.py.

Layer rule: may import from fastapi (for Request) because this module is
part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import Account
from core.errors import AuthError, ForbiddenError
from core.models import PlatformRole


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_account(request: Request) -> Account | None:
    """Authenticate the request via its Bearer header; None on any failure."""
    token = _bearer_token(request)
    if token is None:
        return None
    try:
        return request.app.state.accounts.authenticate(token)
    except AuthError:
        return None


def get_current_account(request: Request) -> Account:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    account = try_get_current_account(request)
    if account is None:
        raise AuthError("Authentication required.")
    return account


def require_admin(request: Request) -> Account:
    account = get_current_account(request)
    if account.platform_role != PlatformRole.ADMIN:
        raise ForbiddenError("Admin access required.")
    return account
