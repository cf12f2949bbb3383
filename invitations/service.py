"""
invitations/service.py -- InvitationService: issue, pre-check, and consume team invitations.

Lifecycle:
  invite()    owner/admin creates an invitation; the raw token leaves the
              service exactly once, on the returned object, for delivery to
              the invitee. Only its HMAC digest is stored.
  validate()  read-only pre-check for the invitee's landing page. Returns a
              reason instead of raising; never says whether an account
              exists for the email.
  accept()    one transaction: re-check the token, create the account with
              the invitation's platform role and team, add a MEMBER
              membership, and mark the invitation used. The used_at stamp is
              a conditional UPDATE, so of two concurrent acceptances exactly
              one commits; the other rolls back with NotFoundError and no
              second account exists.

Escalation guard: anyone allowed to invite (team OWNER or ADMIN) may invite
at role USER, but only an ADMIN may issue an invitation that grants ADMIN.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from audit.models import AuditAction
from audit.recorder import AuditRecorder
from auth.authority import Action, Resource, enforce
from auth.models import Account, Profile
from auth.principal import load_principal
from auth.signup import BootstrapSignup, validate_email, validate_password
from auth.tokens import TokenIssuer, generate_invitation_token, hash_invitation_token
from core.config import Settings, get_settings
from core.errors import ConflictError, NotFoundError, ValidationError
from core.models import PlatformRole, TeamRole, mask_email, parse_iso
from invitations.models import AcceptedInvitation, Invitation, TokenValidation
from store.db import Database, translate_errors
from store.repositories import AccountRepository, InvitationRepository, MembershipRepository, TeamRepository
from teams.models import Membership

logger = logging.getLogger("teamgate.invitations")

_INVALID_TOKEN = "Invalid or expired invitation token."
_MAX_MESSAGE_LENGTH = 1000


def _is_expired(invitation: Invitation, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    return parse_iso(invitation.expires_at) <= now


class InvitationService:
    def __init__(
        self,
        db: Database,
        signup: BootstrapSignup,
        issuer: TokenIssuer,
        audit: AuditRecorder,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.signup = signup
        self.issuer = issuer
        self.audit = audit
        self.settings = settings or get_settings()

    def _digest(self, raw_token: str) -> str:
        return hash_invitation_token(raw_token, self.settings.secret_key)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def invite(
        self,
        inviter: Account,
        email: str,
        team_id: int,
        role: PlatformRole = PlatformRole.USER,
        message: Optional[str] = None,
    ) -> Invitation:
        email = validate_email(email)
        role = PlatformRole(role)
        if message is not None and len(message) > _MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message must be at most {_MAX_MESSAGE_LENGTH} characters.")

        with translate_errors(logger, "invite", "An active invitation already exists for this email."):
            with self.db.transaction() as conn:
                inviter, principal = load_principal(conn, inviter)
                team = TeamRepository(conn).get(team_id)
                enforce(principal, Action.INVITE, Resource(team_id=team_id, deleted=team is None), entity="Team")
                if role == PlatformRole.ADMIN:
                    enforce(principal, Action.PROMOTE_PLATFORM_ADMIN, Resource(), entity="Team")

                if AccountRepository(conn).email_exists(email):
                    raise ConflictError("An account with this email already exists.")
                repo = InvitationRepository(conn)
                if repo.has_active(email, team_id):
                    raise ConflictError("An active invitation already exists for this email and team.")

                raw_token = generate_invitation_token()
                expires_at = datetime.now(timezone.utc) + timedelta(days=self.settings.invitation_ttl_days)
                invitation = repo.create(
                    Invitation(
                        email=email,
                        team_id=team_id,
                        invited_by_id=inviter.id,
                        role=role,
                        token_hash=self._digest(raw_token),
                        message=message,
                        expires_at=expires_at.isoformat(timespec="microseconds"),
                    )
                )

        invitation.token = raw_token
        logger.info("Invitation created: id=%d team=%d email=%s role=%s", invitation.id, team_id, mask_email(email), role.value)
        self.audit.record(
            AuditAction.INVITATION_CREATED,
            actor_id=inviter.id,
            entity_type="invitation",
            entity_id=invitation.id,
            metadata={"team_id": team_id, "email": mask_email(email), "role": role.value},
        )
        return invitation

    # ------------------------------------------------------------------
    # Pre-check
    # ------------------------------------------------------------------

    def validate(self, token: str) -> TokenValidation:
        if not token:
            return TokenValidation(valid=False, reason="not_found")
        with self.db.connect() as conn:
            invitation = InvitationRepository(conn).get_by_token_hash(self._digest(token))
            team = TeamRepository(conn).get(invitation.team_id) if invitation is not None else None

        if invitation is None or team is None:
            return TokenValidation(valid=False, reason="not_found")
        if invitation.used_at is not None:
            return TokenValidation(valid=False, reason="used")
        if _is_expired(invitation):
            return TokenValidation(valid=False, reason="expired")
        return TokenValidation(
            valid=True,
            email=invitation.email,
            team_name=team.name,
            expires_at=invitation.expires_at,
        )

    # ------------------------------------------------------------------
    # Consume
    # ------------------------------------------------------------------

    def accept(self, token: str, raw_password: str, profile: Optional[Profile] = None) -> AcceptedInvitation:
        """Create the invitee's account and consume the invitation.

        Raises:
            NotFoundError:   unknown or already-used token (or a lost race).
            ValidationError: expired token, or an unusable password.
            ConflictError:   an account already exists for the email.
        """
        if not token:
            raise NotFoundError(_INVALID_TOKEN)
        validate_password(raw_password)
        profile = profile or Profile()

        with translate_errors(logger, "accept_invitation", "An account with this email already exists."):
            with self.db.transaction() as conn:
                repo = InvitationRepository(conn)
                invitation = repo.get_by_token_hash(self._digest(token), for_update=True)
                if invitation is None or invitation.used_at is not None:
                    raise NotFoundError(_INVALID_TOKEN)
                if _is_expired(invitation):
                    raise ValidationError("Invitation token has expired.")

                account, _ = self.signup.create_in(
                    conn,
                    invitation.email,
                    raw_password,
                    profile,
                    team_id=invitation.team_id,
                    role=invitation.role,
                )
                MembershipRepository(conn).create(Membership(account.id, invitation.team_id, TeamRole.MEMBER))
                if not repo.mark_used(invitation.id):
                    raise NotFoundError(_INVALID_TOKEN)

        credentials = self.issuer.issue(account)
        logger.info("Invitation accepted: id=%d account=%d", invitation.id, account.id)
        self.audit.record(
            AuditAction.ACCOUNT_CREATED,
            actor_id=account.id,
            entity_type="account",
            entity_id=account.id,
            metadata={"email": mask_email(account.email), "role": account.platform_role.value, "team_id": invitation.team_id},
        )
        self.audit.record(
            AuditAction.INVITATION_ACCEPTED,
            actor_id=account.id,
            entity_type="invitation",
            entity_id=invitation.id,
            metadata={"team_id": invitation.team_id, "invited_by_id": invitation.invited_by_id},
        )
        return AcceptedInvitation(account=account, credentials=credentials)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_for_team(self, requester: Account, team_id: int) -> list[Invitation]:
        """Invitations for a team, newest first. Tokens are never included."""
        with self.db.connect() as conn:
            _, principal = load_principal(conn, requester)
            team = TeamRepository(conn).get(team_id)
            enforce(principal, Action.LIST_INVITATIONS, Resource(team_id=team_id, deleted=team is None), entity="Team")
            return InvitationRepository(conn).list_for_team(team_id)
