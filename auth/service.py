"""
auth/service.py -- AccountService: login, credential refresh, and platform-role administration.

Login:
  Unknown emails still pay for one bcrypt verify against the hasher's dummy
  hash, so response time does not reveal whether an account exists. Every
  failure -- unknown email, wrong password, soft-deleted account -- raises
  the same AuthError.

Platform roles:
  Only an ADMIN may change another account's platform role or delete an
  account (RoleAuthority CHANGE_PLATFORM_ROLE / PROMOTE_PLATFORM_ADMIN). The
  last active ADMIN can be neither demoted nor deleted: the check runs under
  the accounts table lock so two admins demoting each other concurrently
  cannot both succeed. Deleting an account that is the last OWNER of a team
  with other members is refused the same way remove_member refuses it.
"""

from __future__ import annotations

import logging
from typing import Optional

from audit.models import AuditAction
from audit.recorder import AuditRecorder
from auth.authority import Action, Resource, enforce
from auth.models import Account, Credentials
from auth.principal import load_principal
from auth.tokens import ACCESS, REFRESH, PasswordHasher, TokenIssuer
from core.errors import AuthError, ConflictError, NotFoundError
from core.models import PlatformRole, TeamRole, mask_email, normalize_email
from store.db import Database, lock_table, translate_errors
from store.repositories import AccountRepository, MembershipRepository, TeamRepository
from teams.models import RoleChange

logger = logging.getLogger("teamgate.accounts")

_LOGIN_FAILED = "Invalid email or password."


class AccountService:
    def __init__(self, db: Database, hasher: PasswordHasher, issuer: TokenIssuer, audit: AuditRecorder) -> None:
        self.db = db
        self.hasher = hasher
        self.issuer = issuer
        self.audit = audit

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> Credentials:
        email = normalize_email(email)
        with self.db.connect() as conn:
            account = AccountRepository(conn).get_by_email(email)

        if account is None:
            self.hasher.verify(password or "", self.hasher.dummy_hash)
            logger.info("Login failed: unknown email %s", mask_email(email))
            raise AuthError(_LOGIN_FAILED)
        if not self.hasher.verify(password or "", account.password_hash or ""):
            logger.info("Login failed: bad password for account id=%d", account.id)
            raise AuthError(_LOGIN_FAILED)

        with translate_errors(logger, "login"):
            with self.db.transaction() as conn:
                AccountRepository(conn).update_last_login(account.id)

        self.audit.record(AuditAction.ACCOUNT_LOGIN, actor_id=account.id, entity_type="account", entity_id=account.id)
        return self.issuer.issue(account)

    def refresh(self, refresh_token: str) -> Credentials:
        """Exchange a refresh credential for a fresh pair.

        The account is reloaded, so a soft-deleted account or a changed
        platform role takes effect at the next refresh at the latest.
        """
        account = self._account_from(refresh_token, REFRESH)
        return self.issuer.issue(account)

    def authenticate(self, access_token: str) -> Account:
        """Resolve a bearer access credential to the current active Account."""
        return self._account_from(access_token)

    def _account_from(self, credential: str, expected_type: str = ACCESS) -> Account:
        payload = self.issuer.verify(credential, expected_type=expected_type)
        try:
            account_id = int(payload["sub"])
        except (TypeError, ValueError) as exc:
            raise AuthError("Invalid or expired credential.") from exc
        with self.db.connect() as conn:
            account = AccountRepository(conn).get(account_id)
        if account is None:
            raise AuthError("Invalid or expired credential.")
        return account

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def get_account(self, account_id: int) -> Optional[Account]:
        with self.db.connect() as conn:
            return AccountRepository(conn).get(account_id)

    def change_platform_role(self, actor: Account, target_id: int, new_role: PlatformRole) -> RoleChange:
        new_role = PlatformRole(new_role)
        action = Action.PROMOTE_PLATFORM_ADMIN if new_role == PlatformRole.ADMIN else Action.CHANGE_PLATFORM_ROLE

        with translate_errors(logger, "change_platform_role"):
            with self.db.transaction() as conn:
                _, principal = load_principal(conn, actor)
                enforce(principal, action, Resource(target_account_id=target_id), entity="Account")

                repo = AccountRepository(conn)
                target = repo.get(target_id)
                if target is None:
                    raise NotFoundError("Account not found.")
                old_role = target.platform_role
                if old_role != new_role:
                    if old_role == PlatformRole.ADMIN:
                        lock_table(conn, "accounts")
                        if repo.count_active_admins() <= 1:
                            raise ConflictError("Cannot demote the last active administrator.")
                    repo.update(target_id, platform_role=new_role)

        change = RoleChange(account_id=target_id, old_role=old_role.value, new_role=new_role.value)
        if old_role != new_role:
            logger.info("Platform role changed: account id=%d %s -> %s", target_id, change.old_role, change.new_role)
            self.audit.record_role_change(actor.id, target_id, change.old_role, change.new_role)
        return change

    def delete_account(self, actor: Account, target_id: int) -> None:
        """Soft-delete an account and drop its memberships. ADMIN only.

        Refused while the account is the sole OWNER of a team that still has
        other members, so no team is left without an owner.
        """
        with translate_errors(logger, "delete_account"):
            with self.db.transaction() as conn:
                _, principal = load_principal(conn, actor)
                enforce(principal, Action.CHANGE_PLATFORM_ROLE, Resource(target_account_id=target_id), entity="Account")

                repo = AccountRepository(conn)
                target = repo.get(target_id)
                if target is None:
                    raise NotFoundError("Account not found.")
                if target.platform_role == PlatformRole.ADMIN:
                    lock_table(conn, "accounts")
                    if repo.count_active_admins() <= 1:
                        raise ConflictError("Cannot delete the last active administrator.")
                members = MembershipRepository(conn)
                owned = [t for t, role in members.roles_for_account(target_id).items() if role == TeamRole.OWNER]
                if owned:
                    lock_table(conn, "memberships")
                    teams = TeamRepository(conn)
                    for team_id in owned:
                        if members.count_owners(team_id) <= 1 and teams.count_active_members(team_id) > 1:
                            raise ConflictError(
                                "Account is the last owner of a team with other members. Transfer ownership first."
                            )
                removed = members.delete_for_account(target_id)
                repo.soft_delete(target_id)

        logger.info("Account soft-deleted: id=%d (%d membership(s) removed)", target_id, removed)
        self.audit.record_deletion(actor.id, "account", target_id, mask_email(target.email))
