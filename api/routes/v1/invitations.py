"""
api/routes/v1/invitations.py -- Invitation REST endpoints.

Routes:
  POST /api/v1/invitations                   -- invite an email to a team (owner/admin)
  GET  /api/v1/invitations/validate?token=   -- public pre-check for the landing page
  POST /api/v1/invitations/accept            -- public; creates the account, returns credentials
  GET  /api/v1/teams/{id}/invitations        -- list a team's invitations (owner/admin)

Token exposure: the raw token is in the POST /invitations response and
nowhere else. List responses use InvitationResponse, which has no token
field; after acceptance the token resolves to 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import (
    AcceptedInvitationResponse,
    AccountResponse,
    InvitationAccept,
    InvitationCreate,
    InvitationCreatedResponse,
    InvitationResponse,
    InvitationValidationResponse,
    TokenResponse,
)
from auth.dependencies import get_current_account
from auth.models import Account, Profile

# Auth policy:
# - POST /api/v1/invitations:              requires auth; INVITE checked in the service
# - GET  /api/v1/invitations/validate:     public -- the token is the credential
# - POST /api/v1/invitations/accept:       public -- the token is the credential
# - GET  /api/v1/teams/{id}/invitations:   requires auth; LIST_INVITATIONS checked in the service
router = APIRouter()


@router.post("/invitations", response_model=InvitationCreatedResponse, status_code=201)
def create_invitation(
    request: Request,
    body: InvitationCreate,
    current_account: Account = Depends(get_current_account),
) -> InvitationCreatedResponse:
    invitation = request.app.state.invitations.invite(
        current_account, body.email, body.team_id, role=body.role, message=body.message
    )
    listed = InvitationResponse.from_invitation(invitation)
    return InvitationCreatedResponse(**listed.model_dump(), token=invitation.token)


@router.get("/invitations/validate", response_model=InvitationValidationResponse)
def validate_invitation(request: Request, token: str = Query(default="", max_length=128)) -> InvitationValidationResponse:
    result = request.app.state.invitations.validate(token)
    return InvitationValidationResponse.from_validation(result)


@router.post("/invitations/accept", response_model=AcceptedInvitationResponse, status_code=201)
def accept_invitation(request: Request, body: InvitationAccept) -> JSONResponse:
    accepted = request.app.state.invitations.accept(
        body.token,
        body.password,
        Profile(first_name=body.first_name, last_name=body.last_name),
    )
    payload = AcceptedInvitationResponse(
        account=AccountResponse.from_account(accepted.account),
        tokens=TokenResponse.from_credentials(accepted.credentials),
    )
    resp = JSONResponse(status_code=201, content=payload.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/teams/{team_id}/invitations", response_model=list[InvitationResponse])
def list_team_invitations(
    request: Request,
    team_id: int,
    current_account: Account = Depends(get_current_account),
) -> list[InvitationResponse]:
    invitations = request.app.state.invitations.list_for_team(current_account, team_id)
    return [InvitationResponse.from_invitation(i) for i in invitations]
