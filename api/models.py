"""
API request and response models for TeamGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/, teams/, and
invitations/, which own the internal domain representation. Route handlers
map between the two.

Secrets policy: no response model here has a password_hash or token_hash
field, and InvitationResponse has no token field at all. The raw invitation
token appears only in InvitationCreatedResponse, returned once by POST.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Account, Credentials
from core.models import EMAIL_PATTERN, SLUG_PATTERN, PlatformRole, TeamRole
from invitations.models import Invitation, TokenValidation
from teams.models import Membership, Team

# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    metadata: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    database: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    # bcrypt reads at most 72 bytes; the service re-checks the byte length.
    password: str = Field(min_length=8, max_length=72)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=72)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class PlatformRoleUpdate(BaseModel):
    role: PlatformRole


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: PlatformRole
    team_id: Optional[int] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            role=account.platform_role,
            team_id=account.primary_team_id,
            first_name=account.first_name,
            last_name=account.last_name,
            created_at=account.created_at,
            last_login_at=account.last_login_at,
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int

    @classmethod
    def from_credentials(cls, credentials: Credentials) -> "TokenResponse":
        return cls(
            access_token=credentials.access_token,
            refresh_token=credentials.refresh_token,
            token_type=credentials.token_type,
            expires_in=credentials.expires_in,
        )


class RoleChangeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int
    old_role: str
    new_role: str
    team_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=1, max_length=255, pattern=SLUG_PATTERN)
    description: Optional[str] = Field(default=None, max_length=2000)


class MemberAdd(BaseModel):
    account_id: int


class MemberRoleUpdate(BaseModel):
    role: TeamRole


class TeamResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    slug: str
    description: Optional[str] = None
    created_at: str
    deleted_at: Optional[str] = None

    @classmethod
    def from_team(cls, team: Team) -> "TeamResponse":
        return cls(
            id=team.id,
            name=team.name,
            slug=team.slug,
            description=team.description,
            created_at=team.created_at,
            deleted_at=team.deleted_at,
        )


class MembershipResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int
    team_id: int
    role: TeamRole
    created_at: str

    @classmethod
    def from_membership(cls, membership: Membership) -> "MembershipResponse":
        return cls(
            account_id=membership.account_id,
            team_id=membership.team_id,
            role=membership.role,
            created_at=membership.created_at,
        )


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


class InvitationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    team_id: int
    role: PlatformRole = PlatformRole.USER
    message: Optional[str] = Field(default=None, max_length=1000)


class InvitationAccept(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=8, max_length=72)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class InvitationResponse(BaseModel):
    """Invitation as listed to team owners. Never carries the token."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: PlatformRole
    team_id: int
    invited_by_id: int
    message: Optional[str] = None
    expires_at: str
    used_at: Optional[str] = None
    created_at: str

    @classmethod
    def from_invitation(cls, invitation: Invitation) -> "InvitationResponse":
        return cls(
            id=invitation.id,
            email=invitation.email,
            role=invitation.role,
            team_id=invitation.team_id,
            invited_by_id=invitation.invited_by_id,
            message=invitation.message,
            expires_at=invitation.expires_at,
            used_at=invitation.used_at,
            created_at=invitation.created_at,
        )


class InvitationCreatedResponse(InvitationResponse):
    """Returned once by POST /invitations: the only place the raw token appears."""

    token: str


class InvitationValidationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    email: Optional[str] = None
    team_name: Optional[str] = None
    expires_at: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_validation(cls, result: TokenValidation) -> "InvitationValidationResponse":
        return cls(
            valid=result.valid,
            email=result.email,
            team_name=result.team_name,
            expires_at=result.expires_at,
            reason=result.reason,
        )


class AcceptedInvitationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    tokens: TokenResponse
