"""Tests for teams/service.py -- MembershipService.

Covers:
- create_team: creator becomes the single OWNER, platform role untouched
- duplicate active slug -> ConflictError, first team unaffected
- add_member / remove_member including the last-owner guard
- change_member_role escalation guards (member promotion, self-demotion)
- cross-tenant reads and writes -> NotFoundError, never ForbiddenError
- delete_team blocked by members (count in the error), then soft-deleted
"""

import pytest

from audit.models import AuditAction
from core.errors import AuthError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from core.models import PlatformRole, TeamRole
from store.repositories import AccountRepository, AuditRepository, MembershipRepository, TeamRepository
from teams.models import Team


@pytest.fixture
def admin(make_account):
    return make_account("admin@example.com")


@pytest.fixture
def owner(admin, make_account):
    return make_account("owner@example.com")


@pytest.fixture
def team(memberships, owner):
    return memberships.create_team(owner, "Platform", "platform", "Platform squad")


@pytest.fixture
def member(memberships, make_account, owner, team):
    """An account that signed up straight into `team`, then was added as MEMBER."""
    account = make_account("member@example.com", team_id=team.id)
    memberships.add_member(owner, team.id, account.id)
    return account


@pytest.fixture
def outsider(make_account, admin):
    return make_account("outsider@example.com")


# ---------------------------------------------------------------------------
# create_team
# ---------------------------------------------------------------------------


def test_create_team_makes_creator_owner(db, memberships, owner):
    team = memberships.create_team(owner, "Data", "data")
    with db.connect() as conn:
        members = MembershipRepository(conn).list_for_team(team.id)
        refreshed = AccountRepository(conn).get(owner.id)
    assert [(m.account_id, m.role) for m in members] == [(owner.id, TeamRole.OWNER)]
    assert refreshed.platform_role == PlatformRole.USER


def test_create_team_duplicate_slug_conflict(db, memberships, owner, team):
    with pytest.raises(ConflictError):
        memberships.create_team(owner, "Another", "platform")
    with db.connect() as conn:
        assert TeamRepository(conn).get_by_slug("platform").id == team.id


@pytest.mark.parametrize("name,slug", [("  ", "ok"), ("Fine", "Bad Slug"), ("Fine", "UPPER"), ("Fine", "")])
def test_create_team_validates_fields(memberships, owner, name, slug):
    with pytest.raises(ValidationError):
        memberships.create_team(owner, name, slug)


def test_slug_reusable_after_soft_delete(db, memberships, admin, owner):
    with db.transaction() as conn:
        empty = TeamRepository(conn).create(Team(name="Temp", slug="temp"))
    memberships.delete_team(empty.id, actor=admin)
    again = memberships.create_team(owner, "Temp", "temp")
    assert again.id != empty.id


def test_soft_deleted_creator_cannot_create_team(db, memberships, owner):
    with db.transaction() as conn:
        AccountRepository(conn).soft_delete(owner.id)
    with pytest.raises(AuthError):
        memberships.create_team(owner, "Ghost", "ghost")


# ---------------------------------------------------------------------------
# add_member
# ---------------------------------------------------------------------------


def test_add_member_creates_member_membership(db, memberships, owner, team, member):
    with db.connect() as conn:
        membership = MembershipRepository(conn).get(member.id, team.id)
        refreshed = AccountRepository(conn).get(member.id)
    assert membership.role == TeamRole.MEMBER
    assert refreshed.primary_team_id == team.id


def test_add_member_twice_conflicts(memberships, owner, team, member):
    with pytest.raises(ConflictError):
        memberships.add_member(owner, team.id, member.id)


def test_add_member_from_another_active_team_conflicts(memberships, owner, team, outsider):
    # outsider's primary team is its personal team
    with pytest.raises(ConflictError) as excinfo:
        memberships.add_member(owner, team.id, outsider.id)
    # The other tenant's team id must not leak to the caller.
    assert excinfo.value.metadata == {}
    assert str(outsider.primary_team_id) not in excinfo.value.message


def test_add_member_requires_owner(memberships, make_account, team, member):
    newcomer = make_account("newcomer@example.com", team_id=team.id)
    with pytest.raises(ForbiddenError):
        memberships.add_member(member, team.id, newcomer.id)


def test_add_member_unknown_target(memberships, owner, team):
    with pytest.raises(NotFoundError):
        memberships.add_member(owner, team.id, 99999)


def test_add_member_cross_tenant_is_not_found(memberships, outsider, team, make_account):
    newcomer = make_account("newcomer@example.com", team_id=team.id)
    with pytest.raises(NotFoundError):
        memberships.add_member(outsider, team.id, newcomer.id)


def test_admin_may_add_member_without_membership(memberships, admin, team, make_account):
    newcomer = make_account("newcomer@example.com", team_id=team.id)
    membership = memberships.add_member(admin, team.id, newcomer.id)
    assert membership.role == TeamRole.MEMBER


# ---------------------------------------------------------------------------
# change_member_role
# ---------------------------------------------------------------------------


def test_owner_promotes_member(db, memberships, owner, team, member):
    change = memberships.change_member_role(owner, team.id, member.id, TeamRole.OWNER)
    assert (change.old_role, change.new_role) == ("MEMBER", "OWNER")
    with db.connect() as conn:
        assert MembershipRepository(conn).get(member.id, team.id).role == TeamRole.OWNER
        entries = AuditRepository(conn).list_entries(action=AuditAction.TEAM_MEMBER_ROLE_CHANGED)
    assert entries[0].metadata == {"account_id": member.id, "old_role": "MEMBER", "new_role": "OWNER"}


def test_admin_promotes_member(memberships, admin, team, member):
    change = memberships.change_member_role(admin, team.id, member.id, TeamRole.OWNER)
    assert change.new_role == "OWNER"


def test_member_cannot_promote_self(db, memberships, team, member):
    with pytest.raises(ForbiddenError):
        memberships.change_member_role(member, team.id, member.id, TeamRole.OWNER)
    with db.connect() as conn:
        assert MembershipRepository(conn).get(member.id, team.id).role == TeamRole.MEMBER


def test_owner_cannot_demote_self(memberships, owner, team, member):
    memberships.change_member_role(owner, team.id, member.id, TeamRole.OWNER)
    # Even with a second owner present, self-demotion is forbidden.
    with pytest.raises(ForbiddenError):
        memberships.change_member_role(owner, team.id, owner.id, TeamRole.MEMBER)


def test_owner_may_demote_other_owner(memberships, owner, team, member):
    memberships.change_member_role(owner, team.id, member.id, TeamRole.OWNER)
    change = memberships.change_member_role(owner, team.id, member.id, TeamRole.MEMBER)
    assert change.new_role == "MEMBER"


def test_role_change_cross_tenant_is_not_found(memberships, outsider, team, member):
    with pytest.raises(NotFoundError):
        memberships.change_member_role(outsider, team.id, member.id, TeamRole.OWNER)


def test_role_change_missing_membership(memberships, owner, team, outsider):
    with pytest.raises(NotFoundError):
        memberships.change_member_role(owner, team.id, outsider.id, TeamRole.OWNER)


# ---------------------------------------------------------------------------
# remove_member
# ---------------------------------------------------------------------------


def test_member_may_leave(db, memberships, team, member):
    memberships.remove_member(member, team.id, member.id)
    with db.connect() as conn:
        assert MembershipRepository(conn).get(member.id, team.id) is None
        assert AccountRepository(conn).get(member.id).primary_team_id is None


def test_member_cannot_remove_owner(memberships, owner, team, member):
    with pytest.raises(ForbiddenError):
        memberships.remove_member(member, team.id, owner.id)


def test_last_owner_cannot_leave_while_members_remain(memberships, owner, team, member):
    with pytest.raises(ConflictError):
        memberships.remove_member(owner, team.id, owner.id)


def test_last_owner_may_leave_empty_team(db, memberships, owner, team):
    memberships.remove_member(owner, team.id, owner.id)
    with db.connect() as conn:
        assert MembershipRepository(conn).list_for_team(team.id) == []


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def test_member_reads_team_and_members(memberships, team, member, owner):
    assert memberships.get_team(member, team.id).slug == "platform"
    ids = {m.account_id for m in memberships.list_members(member, team.id)}
    assert ids == {owner.id, member.id}


def test_cross_tenant_read_is_not_found(memberships, outsider, team):
    with pytest.raises(NotFoundError):
        memberships.get_team(outsider, team.id)
    with pytest.raises(NotFoundError):
        memberships.list_members(outsider, team.id)


def test_list_teams_scoped_to_memberships(memberships, admin, owner, team, outsider):
    assert [t.id for t in memberships.list_teams(outsider)] == [outsider.primary_team_id]
    visible = {t.id for t in memberships.list_teams(owner)}
    assert team.id in visible
    assert outsider.primary_team_id not in visible
    assert {team.id, outsider.primary_team_id} <= {t.id for t in memberships.list_teams(admin)}


# ---------------------------------------------------------------------------
# delete_team
# ---------------------------------------------------------------------------


def test_delete_team_with_members_conflicts_with_count(memberships, admin, team, member):
    with pytest.raises(ConflictError) as excinfo:
        memberships.delete_team(team.id, actor=admin)
    assert excinfo.value.metadata["member_count"] == 2
    assert "2 active member" in excinfo.value.message


def test_delete_empty_team_soft_deletes(db, memberships, admin, owner, team):
    memberships.remove_member(owner, team.id, owner.id)
    deleted = memberships.delete_team(team.id, actor=admin)

    assert deleted.deleted_at is not None
    with db.connect() as conn:
        repo = TeamRepository(conn)
        assert repo.get(team.id) is None
        assert team.id not in {t.id for t in repo.list_active()}
        assert repo.get(team.id, include_deleted=True).slug == "platform"
        entries = AuditRepository(conn).list_entries(entity_type="team", entity_id=str(team.id))
    assert entries[-1].action == AuditAction.TEAM_DELETED
    assert entries[-1].metadata == {"name": "Platform"}


def test_delete_team_without_actor(memberships, owner, team):
    memberships.remove_member(owner, team.id, owner.id)
    assert memberships.delete_team(team.id).deleted_at is not None


def test_delete_team_by_non_member_is_not_found(memberships, outsider, owner, team):
    memberships.remove_member(owner, team.id, owner.id)
    with pytest.raises(NotFoundError):
        memberships.delete_team(team.id, actor=outsider)


def test_deleted_team_reads_as_not_found(memberships, admin, owner, team):
    memberships.remove_member(owner, team.id, owner.id)
    memberships.delete_team(team.id, actor=admin)
    with pytest.raises(NotFoundError):
        memberships.get_team(admin, team.id)
