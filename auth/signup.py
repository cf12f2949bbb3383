"""
auth/signup.py -- BootstrapSignup: atomic account creation and first-admin detection.

The very first active account becomes a platform ADMIN; every later one is a
USER unless a role is given explicitly. "Am I first?" is a read-then-write
decision, so it runs under the accounts table lock inside one transaction:

  1. re-check email uniqueness
  2. lock accounts, count active rows
  3. hash the password
  4. role = explicit > ADMIN if first > USER
  5. no team given -> create a personal team, the account becomes its OWNER
     team given     -> it must be an active team
  6. insert the account

Any failure rolls the whole unit back, so a duplicate email never leaves a
stray personal team behind. N concurrent signups on an empty table yield
exactly one ADMIN: the lock serializes the count, and the loser of an email
race hits the partial unique index and gets a ConflictError.

Audit entries are written after commit (see audit/recorder.py).
"""

from __future__ import annotations

import logging
import re
import time
from typing import Optional

from sqlalchemy.engine import Connection

from audit.models import AuditAction
from audit.recorder import AuditRecorder
from auth.models import Account, Profile
from auth.tokens import PasswordHasher
from core.errors import ConflictError, NotFoundError, ValidationError
from core.models import EMAIL_PATTERN, PlatformRole, TeamRole, mask_email, normalize_email
from store.db import Database, lock_table, translate_errors
from store.repositories import AccountRepository, MembershipRepository, TeamRepository
from teams.models import Membership, Team

logger = logging.getLogger("teamgate.signup")

_EMAIL_RE = re.compile(EMAIL_PATTERN)
_SLUG_UNSAFE = re.compile(r"[^a-z0-9-]+")

DUPLICATE_EMAIL = "An account with this email already exists."


def validate_email(email: str) -> str:
    """Normalize and check an email. Raises ValidationError when malformed."""
    normalized = normalize_email(email)
    if not normalized or len(normalized) > 255 or not _EMAIL_RE.match(normalized):
        raise ValidationError("A valid email address is required.")
    return normalized


def validate_password(raw_password: str) -> None:
    if not raw_password:
        raise ValidationError("Password must not be empty.")
    # bcrypt ignores everything past 72 bytes.
    if len(raw_password.encode("utf-8")) > 72:
        raise ValidationError("Password must be at most 72 bytes.")


def personal_team_for(email: str, profile: Profile) -> Team:
    local = email.split("@", 1)[0]
    slug_local = _SLUG_UNSAFE.sub("-", local).strip("-") or "user"
    stamp = time.time_ns() // 1000
    return Team(
        name=f"{profile.first_name or local}'s Team",
        slug=f"personal-{slug_local}-{stamp}",
        description="Personal team",
    )


class BootstrapSignup:
    def __init__(self, db: Database, hasher: PasswordHasher, audit: AuditRecorder) -> None:
        self.db = db
        self.hasher = hasher
        self.audit = audit

    def create_in(
        self,
        conn: Connection,
        email: str,
        raw_password: str,
        profile: Profile,
        team_id: Optional[int] = None,
        role: Optional[PlatformRole] = None,
    ) -> tuple[Account, Optional[Team]]:
        """Run steps 1-6 on an open transaction.

        Returns the new account and the personal team, if one was created.
        Used directly by invitation acceptance so the account and the
        invitation's consumption commit together.
        """
        account_repo = AccountRepository(conn)
        if account_repo.email_exists(email):
            raise ConflictError(DUPLICATE_EMAIL)

        lock_table(conn, "accounts")
        is_first = account_repo.count_active() == 0

        password_hash = self.hasher.hash(raw_password)

        if role is not None:
            platform_role = PlatformRole(role)
        else:
            platform_role = PlatformRole.ADMIN if is_first else PlatformRole.USER

        personal_team = None
        if team_id is None:
            personal_team = TeamRepository(conn).create(personal_team_for(email, profile))
            team_id = personal_team.id
        elif TeamRepository(conn).get(team_id) is None:
            raise NotFoundError("Team not found.")

        account = account_repo.create(
            Account(
                email=email,
                password_hash=password_hash,
                platform_role=platform_role,
                primary_team_id=team_id,
                first_name=profile.first_name,
                last_name=profile.last_name,
            )
        )
        if personal_team is not None:
            MembershipRepository(conn).create(Membership(account.id, personal_team.id, TeamRole.OWNER))

        if is_first and platform_role == PlatformRole.ADMIN:
            logger.info("Bootstrap: first account %s granted ADMIN", mask_email(email))
        return account, personal_team

    def signup(
        self,
        email: str,
        raw_password: str,
        profile: Optional[Profile] = None,
        team_id: Optional[int] = None,
        role: Optional[PlatformRole] = None,
    ) -> Account:
        """Create an account atomically. See the module docstring for the steps.

        Raises:
            ValidationError: malformed email or empty password.
            ConflictError:   an active account already uses the email.
            NotFoundError:   team_id does not name an active team.
            InternalError:   anything unexpected (logged with traceback).
        """
        email = validate_email(email)
        validate_password(raw_password)
        profile = profile or Profile()

        with translate_errors(logger, "signup", DUPLICATE_EMAIL):
            with self.db.transaction() as conn:
                account, personal_team = self.create_in(conn, email, raw_password, profile, team_id, role)

        logger.info("Account created: id=%d email=%s role=%s", account.id, mask_email(email), account.platform_role.value)
        self.audit.record(
            AuditAction.ACCOUNT_CREATED,
            actor_id=account.id,
            entity_type="account",
            entity_id=account.id,
            metadata={"email": mask_email(email), "role": account.platform_role.value, "team_id": account.primary_team_id},
        )
        if personal_team is not None:
            self.audit.record(
                AuditAction.TEAM_CREATED,
                actor_id=account.id,
                entity_type="team",
                entity_id=personal_team.id,
                metadata={"name": personal_team.name, "slug": personal_team.slug, "personal": True},
            )
        return account
