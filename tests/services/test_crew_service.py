"""Service tests for crew membership transitions."""

from __future__ import annotations

from decimal import Decimal

import pytest

from rundao.crews.service import (
    approve_member,
    count_active_members,
    create_crew,
    get_crew,
    join_crew,
    leave_crew,
    list_crews,
)
from rundao.errors import AuthorizationError, StateConflictError
from rundao.quests.service import join_quest
from tests.conftest import T0, make_quest, make_user

pytestmark = pytest.mark.asyncio


class TestCrewMembership:
    async def test_creator_leads_with_active_membership(self, db_session, runners):
        crew = await create_crew(db_session, runners["alice"].id, "Dawn Patrol", region="Busan")
        assert crew.leader_id == runners["alice"].id
        assert await count_active_members(db_session, crew.id) == 1

        [(listed, leader_name, count)] = await list_crews(db_session)
        assert listed.id == crew.id
        assert (leader_name, count) == ("alice", 1)

    async def test_public_join_is_active(self, db_session, runners):
        crew = await create_crew(db_session, runners["alice"].id, "Open Crew")
        membership = await join_crew(db_session, crew.id, runners["bob"].id)
        assert membership.status == "active"

        with pytest.raises(StateConflictError, match="already active"):
            await join_crew(db_session, crew.id, runners["bob"].id)

    async def test_private_join_waits_for_leader(self, db_session, runners):
        alice, bob = runners["alice"], runners["bob"]
        crew = await create_crew(db_session, alice.id, "Invite Only", is_private=True)
        membership = await join_crew(db_session, crew.id, bob.id)
        assert membership.status == "pending"

        with pytest.raises(AuthorizationError):
            await approve_member(db_session, crew.id, bob.id, bob.id)
        membership = await approve_member(db_session, crew.id, alice.id, bob.id)
        assert membership.status == "active"

        with pytest.raises(StateConflictError, match="No pending"):
            await approve_member(db_session, crew.id, alice.id, bob.id)

    async def test_member_cap(self, db_session, runners):
        crew = await create_crew(db_session, runners["alice"].id, "Tiny", max_members=2)
        await join_crew(db_session, crew.id, runners["bob"].id)
        with pytest.raises(StateConflictError, match="full"):
            await join_crew(db_session, crew.id, runners["carol"].id)

    async def test_approval_rechecks_cap(self, db_session, runners):
        alice = runners["alice"]
        crew = await create_crew(db_session, alice.id, "Tiny Private", is_private=True, max_members=2)
        await join_crew(db_session, crew.id, runners["bob"].id)
        await join_crew(db_session, crew.id, runners["carol"].id)
        await approve_member(db_session, crew.id, alice.id, runners["bob"].id)
        with pytest.raises(StateConflictError, match="full"):
            await approve_member(db_session, crew.id, alice.id, runners["carol"].id)

    async def test_leave_and_rejoin_reuses_row(self, db_session, runners):
        crew = await create_crew(db_session, runners["alice"].id, "Revolving Door")
        first = await join_crew(db_session, crew.id, runners["bob"].id)
        left = await leave_crew(db_session, crew.id, runners["bob"].id)
        assert left.status == "left"
        assert left.left_at is not None

        again = await join_crew(db_session, crew.id, runners["bob"].id)
        assert again.id == first.id
        assert again.status == "active"
        assert again.left_at is None

    async def test_leaving_leader_hands_over(self, db_session, runners):
        alice, bob, carol = runners["alice"], runners["bob"], runners["carol"]
        crew = await create_crew(db_session, alice.id, "Succession")
        await join_crew(db_session, crew.id, bob.id)
        await join_crew(db_session, crew.id, carol.id)

        await leave_crew(db_session, crew.id, alice.id)

        crew = await get_crew(db_session, crew.id)
        assert crew.leader_id == bob.id

    async def test_last_leader_blocked_by_open_quest(self, db_session, runners):
        alice = runners["alice"]
        crew = await create_crew(db_session, alice.id, "Solo")
        quest = await make_quest(db_session, alice, crew)
        outsider = await make_user(db_session, "outsider")
        await join_quest(db_session, quest.id, outsider, Decimal("10"), now=T0)

        with pytest.raises(StateConflictError, match="last leader"):
            await leave_crew(db_session, crew.id, alice.id)

    async def test_non_member_cannot_leave(self, db_session, runners):
        crew = await create_crew(db_session, runners["alice"].id, "Closed")
        with pytest.raises(StateConflictError, match="not a member"):
            await leave_crew(db_session, crew.id, runners["bob"].id)
