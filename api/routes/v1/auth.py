"""
api/routes/v1/auth.py -- Signup, login, and account administration REST endpoints.

Routes:
  POST   /api/v1/auth/signup                 -- create an account (first one becomes ADMIN)
  POST   /api/v1/auth/login                  -- password login; returns access/refresh pair
  POST   /api/v1/auth/refresh                -- exchange a refresh token for a new pair
  GET    /api/v1/auth/me                     -- current account (requires auth)
  PATCH  /api/v1/auth/accounts/{id}/role     -- change platform role (admin only)
  DELETE /api/v1/auth/accounts/{id}          -- soft-delete an account (admin only)

Security:
  Login failures return the same generic 401 for unknown email and wrong
  password; AccountService.login() equalizes timing with a dummy hash.
  Cache-Control: no-store on every response that carries credentials.
  Last-admin demotion/deletion is blocked in AccountService, not here.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.models import (
    AccountResponse,
    LoginRequest,
    PlatformRoleUpdate,
    RefreshRequest,
    RoleChangeResponse,
    SignupRequest,
    TokenResponse,
)
from auth.dependencies import get_current_account, require_admin
from auth.models import Account, Profile

# Auth policy:
# - POST   /api/v1/auth/signup:                public -- bootstrap and self-service signup
# - POST   /api/v1/auth/login:                 public
# - POST   /api/v1/auth/refresh:               public -- the refresh token is the credential
# - GET    /api/v1/auth/me:                    requires auth (get_current_account)
# - PATCH  /api/v1/auth/accounts/{id}/role:    requires admin (require_admin)
# - DELETE /api/v1/auth/accounts/{id}:         requires admin (require_admin)
router = APIRouter()


def _no_store(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=AccountResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> AccountResponse:
    """Create an account with its own personal team.

    Duplicate email -> 409; no partial team is left behind. Joining an
    existing team goes through an invitation, never through this route.
    """
    account = request.app.state.signup.signup(
        body.email,
        body.password,
        Profile(first_name=body.first_name, last_name=body.last_name),
    )
    return AccountResponse.from_account(account)


@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    credentials = request.app.state.accounts.login(body.email, body.password)
    return _no_store(TokenResponse.from_credentials(credentials).model_dump())


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    credentials = request.app.state.accounts.refresh(body.refresh_token)
    return _no_store(TokenResponse.from_credentials(credentials).model_dump())


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountResponse)
def me(current_account: Account = Depends(get_current_account)) -> AccountResponse:
    return AccountResponse.from_account(current_account)


# ---------------------------------------------------------------------------
# Account administration (admin only)
# ---------------------------------------------------------------------------


@router.patch("/auth/accounts/{account_id}/role", response_model=RoleChangeResponse)
def change_platform_role(
    request: Request,
    account_id: int,
    body: PlatformRoleUpdate,
    current_account: Account = Depends(require_admin),
) -> RoleChangeResponse:
    change = request.app.state.accounts.change_platform_role(current_account, account_id, body.role)
    return RoleChangeResponse(account_id=change.account_id, old_role=change.old_role, new_role=change.new_role)


@router.delete("/auth/accounts/{account_id}", status_code=204)
def delete_account(
    request: Request,
    account_id: int,
    current_account: Account = Depends(require_admin),
) -> Response:
    request.app.state.accounts.delete_account(current_account, account_id)
    return Response(status_code=204)
