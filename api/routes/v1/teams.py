"""
api/routes/v1/teams.py -- Team and membership REST endpoints.

Routes:
  GET    /api/v1/teams                                  -- teams visible to the caller
  POST   /api/v1/teams                                  -- create a team (caller becomes OWNER)
  GET    /api/v1/teams/{id}                             -- team detail
  DELETE /api/v1/teams/{id}                             -- soft-delete an empty team
  GET    /api/v1/teams/{id}/members                     -- list memberships
  POST   /api/v1/teams/{id}/members                     -- add an account as MEMBER
  PATCH  /api/v1/teams/{id}/members/{account_id}        -- change a member's team role
  DELETE /api/v1/teams/{id}/members/{account_id}        -- remove a member (or leave)

Every route requires authentication. Authorization is decided by
MembershipService via RoleAuthority: a team outside the caller's
memberships answers 404, exactly like a team that does not exist.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import MemberAdd, MemberRoleUpdate, MembershipResponse, RoleChangeResponse, TeamCreate, TeamResponse
from auth.dependencies import get_current_account
from auth.models import Account

router = APIRouter()


@router.get("/teams", response_model=list[TeamResponse])
def list_teams(request: Request, current_account: Account = Depends(get_current_account)) -> list[TeamResponse]:
    teams = request.app.state.memberships.list_teams(current_account)
    return [TeamResponse.from_team(t) for t in teams]


@router.post("/teams", response_model=TeamResponse, status_code=201)
def create_team(
    request: Request,
    body: TeamCreate,
    current_account: Account = Depends(get_current_account),
) -> TeamResponse:
    team = request.app.state.memberships.create_team(current_account, body.name, body.slug, body.description)
    return TeamResponse.from_team(team)


@router.get("/teams/{team_id}", response_model=TeamResponse)
def get_team(request: Request, team_id: int, current_account: Account = Depends(get_current_account)) -> TeamResponse:
    return TeamResponse.from_team(request.app.state.memberships.get_team(current_account, team_id))


@router.delete("/teams/{team_id}", status_code=204)
def delete_team(request: Request, team_id: int, current_account: Account = Depends(get_current_account)) -> Response:
    """Soft-delete a team. 409 with metadata.member_count while members remain."""
    request.app.state.memberships.delete_team(team_id, actor=current_account)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.get("/teams/{team_id}/members", response_model=list[MembershipResponse])
def list_members(
    request: Request,
    team_id: int,
    current_account: Account = Depends(get_current_account),
) -> list[MembershipResponse]:
    members = request.app.state.memberships.list_members(current_account, team_id)
    return [MembershipResponse.from_membership(m) for m in members]


@router.post("/teams/{team_id}/members", response_model=MembershipResponse, status_code=201)
def add_member(
    request: Request,
    team_id: int,
    body: MemberAdd,
    current_account: Account = Depends(get_current_account),
) -> MembershipResponse:
    membership = request.app.state.memberships.add_member(current_account, team_id, body.account_id)
    return MembershipResponse.from_membership(membership)


@router.patch("/teams/{team_id}/members/{account_id}", response_model=RoleChangeResponse)
def change_member_role(
    request: Request,
    team_id: int,
    account_id: int,
    body: MemberRoleUpdate,
    current_account: Account = Depends(get_current_account),
) -> RoleChangeResponse:
    change = request.app.state.memberships.change_member_role(current_account, team_id, account_id, body.role)
    return RoleChangeResponse(
        account_id=change.account_id,
        old_role=change.old_role,
        new_role=change.new_role,
        team_id=change.team_id,
    )


@router.delete("/teams/{team_id}/members/{account_id}", status_code=204)
def remove_member(
    request: Request,
    team_id: int,
    account_id: int,
    current_account: Account = Depends(get_current_account),
) -> Response:
    request.app.state.memberships.remove_member(current_account, team_id, account_id)
    return Response(status_code=204)
