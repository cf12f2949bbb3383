"""
auth/principal.py -- Build a RoleAuthority Principal from stored state.

Services never trust the Account object they were handed: it may be stale
(role changed, account soft-deleted since the credential was issued). The
actor is reloaded by id inside the caller's transaction and its memberships
are read from the same snapshot the mutation will run against.
"""

from __future__ import annotations

from sqlalchemy.engine import Connection

from auth.authority import Principal
from auth.models import Account
from core.errors import AuthError
from store.repositories import AccountRepository, MembershipRepository


def principal_for(account: Account, memberships: dict) -> Principal:
    return Principal(
        account_id=account.id,
        platform_role=account.platform_role,
        memberships=dict(memberships),
        deleted=not account.is_active,
    )


def load_principal(conn: Connection, actor: Account) -> tuple[Account, Principal]:
    """Reload actor and its memberships. Raises AuthError if the account is gone."""
    if actor is None or actor.id is None:
        raise AuthError("Authentication required.")
    current = AccountRepository(conn).get(actor.id)
    if current is None:
        raise AuthError("Authentication required.")
    roles = MembershipRepository(conn).roles_for_account(current.id)
    return current, principal_for(current, roles)
