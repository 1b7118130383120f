"""Service tests for the quest lifecycle: create, join, complete, cancel."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from rundao.database import get_session_factory
from rundao.db.models import Medal, Participation, User, VaultTransfer
from rundao.errors import (
    ArithmeticInvariantError,
    AuthorizationError,
    StateConflictError,
    ValidationError,
)
from rundao.escrow import vault
from rundao.escrow.guard import guard
from rundao.escrow.vault import distribute_quest_rewards, get_vault_balance, list_escrow_records
from rundao.quests import service as quest_service
from rundao.quests.service import (
    activate_due_quests,
    cancel_quest,
    complete_quest,
    get_participation,
    get_quest,
    join_quest,
    publish_quest,
)
from tests.conftest import DAO_TREASURY, END, FEE_RECIPIENT, START, T0, make_quest, make_user

pytestmark = pytest.mark.asyncio


async def _transfers(db, quest_id):
    result = await db.execute(
        select(VaultTransfer).where(VaultTransfer.quest_id == quest_id).order_by(VaultTransfer.id)
    )
    return list(result.scalars().all())


class TestCreateQuest:
    async def test_defaults(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew)
        assert quest.status == "open"
        assert quest.participant_count == 0
        assert quest.stake_token == "USDC"
        assert (quest.success_rate_bps, quest.dao_rate_bps, quest.protocol_fee_rate_bps) == (8000, 1000, 1000)

    async def test_draft_then_publish(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew, publish=False)
        assert quest.status == "draft"

        with pytest.raises(AuthorizationError):
            await publish_quest(db_session, quest.id, runners["bob"], now=T0)
        quest = await publish_quest(db_session, quest.id, runners["alice"], now=T0)
        assert quest.status == "open"

        with pytest.raises(StateConflictError, match="Invalid transition"):
            await publish_quest(db_session, quest.id, runners["alice"], now=T0)

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"end_at": START}, "end_at must be after start_at"),
            ({"start_at": T0 - timedelta(hours=1)}, "start_at must be in the future"),
            ({"distance_km": 0}, "distance_km"),
            ({"times_per_week": 0}, "times_per_week"),
            ({"stake": "0"}, "stake_amount"),
            ({"max_slots": 0}, "max_slots"),
            ({"stake_token": "DOGE"}, "Unsupported stake token"),
        ],
    )
    async def test_rejects_bad_parameters(self, db_session, runners, crew, overrides, message):
        with pytest.raises(ValidationError, match=message):
            await make_quest(db_session, runners["alice"], crew, **overrides)

    async def test_rates_must_sum_to_whole(self, db_session, runners, crew):
        with pytest.raises(ArithmeticInvariantError, match="sum to 100%"):
            await make_quest(
                db_session, runners["alice"], crew,
                success_rate_bps=7000, dao_rate_bps=1000, protocol_fee_rate_bps=1000,
            )

    async def test_fee_cap(self, db_session, runners, crew):
        with pytest.raises(ArithmeticInvariantError, match="cap"):
            await make_quest(
                db_session, runners["alice"], crew,
                success_rate_bps=7000, dao_rate_bps=0, protocol_fee_rate_bps=3000,
            )

    async def test_creator_must_be_crew_member(self, db_session, runners, crew):
        outsider = await make_user(db_session, "outsider")
        with pytest.raises(AuthorizationError, match="crew members"):
            await make_quest(db_session, outsider, crew)


class TestJoinQuest:
    async def test_join_escrows_stake(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew)
        participation = await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)

        assert participation.status == "active"
        assert quest.participant_count == 1
        records = await list_escrow_records(db_session, quest.id, locked_only=True)
        assert [(r.user_id, r.locked_amount) for r in records] == [(runners["bob"].id, Decimal("10"))]
        balance = await get_vault_balance(db_session, "USDC")
        assert balance.custodied == Decimal("10")
        assert balance.locked == Decimal("10")

    async def test_full_quest_rejects_further_joins(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew, max_slots=2)
        await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)
        await join_quest(db_session, quest.id, runners["carol"], Decimal("10"), now=T0)

        for user in (runners["alice"], runners["admin"]):
            with pytest.raises(StateConflictError, match="full"):
                await join_quest(db_session, quest.id, user, Decimal("10"), now=T0)
        assert quest.participant_count == 2

    async def test_slot_claim_ignores_stale_counts(self, db_session, runners, crew):
        """A session holding an outdated participant_count still cannot overbook."""
        quest = await make_quest(db_session, runners["alice"], crew, max_slots=2)
        await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)
        await db_session.commit()

        async with get_session_factory()() as other:
            stale = await get_quest(other, quest.id)
            assert stale.participant_count == 1

            await join_quest(db_session, quest.id, runners["carol"], Decimal("10"), now=T0)
            await db_session.commit()

            admin = await other.get(User, runners["admin"].id)
            with pytest.raises(StateConflictError, match="full"):
                await join_quest(other, quest.id, admin, Decimal("10"), now=T0)
            await other.rollback()

    async def test_parallel_joins_for_the_last_slot(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew, max_slots=1)
        await db_session.commit()
        factory = get_session_factory()

        async def join_in_own_session(user_id):
            async with factory() as session:
                user = await session.get(User, user_id)
                participation = await join_quest(session, quest.id, user, Decimal("10"), now=T0)
                await session.commit()
                return participation

        results = await asyncio.gather(
            join_in_own_session(runners["bob"].id),
            join_in_own_session(runners["carol"].id),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], StateConflictError)
        assert "full" in str(failures[0])
        result = await db_session.execute(select(Participation).where(Participation.quest_id == quest.id))
        assert len(result.scalars().all()) == 1
        await db_session.refresh(quest)
        assert quest.participant_count == 1

    async def test_duplicate_join_racing_past_checks_is_a_conflict(self, db_session, runners, crew, monkeypatch):
        """A second join by the same user that misses the first one's rows still fails cleanly."""
        quest = await make_quest(db_session, runners["alice"], crew, max_slots=5)
        await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)
        await db_session.commit()

        async def not_found(*_args):
            return None

        monkeypatch.setattr(quest_service, "get_participation", not_found)
        monkeypatch.setattr(vault, "get_escrow_record", not_found)

        async with get_session_factory()() as other:
            bob = await other.get(User, runners["bob"].id)
            with pytest.raises(StateConflictError, match="already joined"):
                await join_quest(other, quest.id, bob, Decimal("10"), now=T0)
            await other.rollback()

        await db_session.refresh(quest)
        assert quest.participant_count == 1

    async def test_cannot_join_twice(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew, max_slots=5)
        await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)
        with pytest.raises(StateConflictError, match="already joined"):
            await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)

    async def test_stake_must_match(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew)
        with pytest.raises(ValidationError, match="exactly 10"):
            await join_quest(db_session, quest.id, runners["bob"], Decimal("5"), now=T0)
        assert quest.participant_count == 0

    async def test_cannot_join_draft(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew, publish=False)
        with pytest.raises(StateConflictError, match="not open"):
            await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)

    async def test_cannot_join_after_start(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew, max_slots=5)
        await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)
        with pytest.raises(StateConflictError, match="not open"):
            await join_quest(db_session, quest.id, runners["carol"], Decimal("10"), now=START)
        assert quest.status == "active"


class TestAutomaticTransitions:
    async def test_sweep_activates_and_cancels(self, db_session, runners, crew):
        staffed = await make_quest(db_session, runners["alice"], crew, title="staffed")
        empty = await make_quest(db_session, runners["alice"], crew, title="empty")
        later = await make_quest(
            db_session, runners["alice"], crew, title="later",
            start_at=END, end_at=END + timedelta(days=7),
        )
        await join_quest(db_session, staffed.id, runners["bob"], Decimal("10"), now=T0)

        moved = await activate_due_quests(db_session, now=START + timedelta(hours=1))

        assert {q.id for q in moved} == {staffed.id, empty.id}
        assert staffed.status == "active"
        assert empty.status == "cancelled"
        assert later.status == "open"


class TestCompleteQuest:
    async def test_one_winner_one_loser_settles_eight_one_one(self, db_session, runners, crew):
        alice, bob, carol = runners["alice"], runners["bob"], runners["carol"]
        quest = await make_quest(db_session, alice, crew, stake="10", max_slots=2)
        await join_quest(db_session, quest.id, bob, Decimal("10"), now=T0)
        await join_quest(db_session, quest.id, carol, Decimal("10"), now=T0)

        records = await list_escrow_records(db_session, quest.id, locked_only=True)
        assert sum(r.locked_amount for r in records) == Decimal("20")

        quest, settlement = await complete_quest(
            db_session, quest.id, alice, [bob.id], now=END + timedelta(hours=1)
        )

        assert quest.status == "completed"
        assert settlement.winners_count == 1
        assert settlement.losers_count == 1
        assert settlement.total_stake_amount == Decimal("20")
        assert settlement.distributable_amount == Decimal("10")
        assert settlement.winner_payout == Decimal("8")
        assert settlement.per_winner_amount == Decimal("8")
        assert settlement.dao_payout == Decimal("1")
        assert settlement.protocol_fee == Decimal("1")
        assert settlement.dust_amount == Decimal("0")

        paid = [(t.kind, t.recipient_user_id, t.recipient_address, t.amount) for t in await _transfers(db_session, quest.id)]
        assert paid == [
            ("stake_return", bob.id, None, Decimal("10")),
            ("reward", bob.id, None, Decimal("8")),
            ("dao_share", None, DAO_TREASURY, Decimal("1")),
            ("protocol_fee", None, FEE_RECIPIENT, Decimal("1")),
        ]

        for record in await list_escrow_records(db_session, quest.id):
            assert record.is_locked is False
            assert record.locked_amount == Decimal("0")
        balance = await get_vault_balance(db_session, "USDC")
        assert balance.custodied == Decimal("0")
        assert balance.locked == Decimal("0")

        assert (await get_participation(db_session, quest.id, bob.id)).status == "success"
        assert (await get_participation(db_session, quest.id, carol.id)).status == "fail"

        medals = (await db_session.execute(select(Medal).where(Medal.quest_id == quest.id))).scalars().all()
        by_user = {m.user_id: m for m in medals}
        assert by_user[bob.id].medal_type == "gold"
        assert by_user[bob.id].is_winner is True
        assert by_user[bob.id].total_participants == 2
        assert by_user[carol.id].medal_type == "grey"
        assert by_user[carol.id].is_upgradeable is True

    async def test_no_winners_sends_winner_pool_to_dao(self, db_session, runners, crew):
        alice, bob, carol = runners["alice"], runners["bob"], runners["carol"]
        quest = await make_quest(db_session, alice, crew)
        await join_quest(db_session, quest.id, bob, Decimal("10"), now=T0)
        await join_quest(db_session, quest.id, carol, Decimal("10"), now=T0)

        _quest, settlement = await complete_quest(db_session, quest.id, alice, [], now=END)

        assert settlement.winners_count == 0
        assert settlement.dust_amount == Decimal("16")
        paid = {t.kind: t.amount for t in await _transfers(db_session, quest.id)}
        assert paid == {"dao_share": Decimal("18"), "protocol_fee": Decimal("2")}

    async def test_uneven_split_dust_goes_to_dao(self, db_session, runners, crew):
        alice = runners["alice"]
        quest = await make_quest(db_session, alice, crew, stake="0.00001", max_slots=4)
        players = [runners["alice"], runners["bob"], runners["carol"], runners["admin"]]
        for player in players:
            await join_quest(db_session, quest.id, player, Decimal("0.00001"), now=T0)

        winners = [p.id for p in players[:3]]
        _quest, settlement = await complete_quest(db_session, quest.id, alice, winners, now=END)

        # 10 micro-units forfeited: 8 to winners (2 each, 2 left over), 1 DAO, 1 fee
        assert settlement.per_winner_amount == Decimal("0.000002")
        assert settlement.dust_amount == Decimal("0.000002")
        dao = [t for t in await _transfers(db_session, quest.id) if t.kind == "dao_share"]
        assert [t.amount for t in dao] == [Decimal("0.000003")]
        balance = await get_vault_balance(db_session, "USDC")
        assert balance.custodied == Decimal("0")

    async def test_rejected_before_end(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew)
        await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)
        with pytest.raises(StateConflictError, match="not ended"):
            await complete_quest(db_session, quest.id, runners["alice"], [], now=END - timedelta(seconds=1))

    async def test_rejected_unless_active(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew)
        with pytest.raises(StateConflictError, match="not open|active"):
            await complete_quest(db_session, quest.id, runners["alice"], [], now=T0)

    async def test_only_creator_or_admin(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew)
        await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)
        with pytest.raises(AuthorizationError):
            await complete_quest(db_session, quest.id, runners["bob"], [runners["bob"].id], now=END)

        _quest, settlement = await complete_quest(
            db_session, quest.id, runners["admin"], [runners["bob"].id], now=END
        )
        assert settlement.winners == [runners["bob"].id]

    async def test_winners_must_be_participants(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew)
        await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)
        with pytest.raises(ValidationError, match="active participants"):
            await complete_quest(db_session, quest.id, runners["alice"], [runners["carol"].id], now=END)

    async def test_settlement_happens_once(self, db_session, runners, crew):
        alice, bob, carol = runners["alice"], runners["bob"], runners["carol"]
        quest = await make_quest(db_session, alice, crew)
        await join_quest(db_session, quest.id, bob, Decimal("10"), now=T0)
        await join_quest(db_session, quest.id, carol, Decimal("10"), now=T0)
        await complete_quest(db_session, quest.id, alice, [bob.id], now=END)
        transfers_before = len(await _transfers(db_session, quest.id))

        with pytest.raises(StateConflictError):
            await complete_quest(db_session, quest.id, alice, [bob.id], now=END)
        with pytest.raises(StateConflictError, match="already been settled"):
            await distribute_quest_rewards(
                db_session, quest,
                total_amount=Decimal("10"), winners=[bob.id], losers=[carol.id],
                success_rate_bps=8000, dao_rate_bps=1000, fee_rate_bps=1000, fee_cap_bps=2000,
                dao_treasury=DAO_TREASURY, fee_recipient=FEE_RECIPIENT,
            )
        assert len(await _transfers(db_session, quest.id)) == transfers_before

    async def test_distribute_is_not_reentrant(self, db_session, runners, crew):
        alice, bob = runners["alice"], runners["bob"]
        quest = await make_quest(db_session, alice, crew)
        await join_quest(db_session, quest.id, bob, Decimal("10"), now=T0)

        with guard.hold("distribute", quest.id):
            with pytest.raises(StateConflictError, match="in progress"):
                await complete_quest(db_session, quest.id, alice, [bob.id], now=END)


class TestCancelQuest:
    async def test_cancel_refunds_everyone(self, db_session, runners, crew):
        alice, bob, carol = runners["alice"], runners["bob"], runners["carol"]
        quest = await make_quest(db_session, alice, crew)
        await join_quest(db_session, quest.id, bob, Decimal("10"), now=T0)
        await join_quest(db_session, quest.id, carol, Decimal("10"), now=T0)

        quest = await cancel_quest(db_session, quest.id, alice, now=T0 + timedelta(hours=1))

        assert quest.status == "cancelled"
        refunds = {(t.kind, t.recipient_user_id, t.amount) for t in await _transfers(db_session, quest.id)}
        assert refunds == {("refund", bob.id, Decimal("10")), ("refund", carol.id, Decimal("10"))}
        assert await list_escrow_records(db_session, quest.id, locked_only=True) == []
        assert (await get_participation(db_session, quest.id, bob.id)).status == "forfeit"
        balance = await get_vault_balance(db_session, "USDC")
        assert (balance.custodied, balance.locked) == (Decimal("0"), Decimal("0"))

    async def test_cannot_cancel_after_start(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew)
        await join_quest(db_session, quest.id, runners["bob"], Decimal("10"), now=T0)
        with pytest.raises(StateConflictError, match="active -> cancelled"):
            await cancel_quest(db_session, quest.id, runners["alice"], now=START)

    @pytest.mark.parametrize("days_after_start", [-1, 2])
    async def test_draft_cannot_be_cancelled(self, db_session, runners, crew, days_after_start):
        quest = await make_quest(db_session, runners["alice"], crew, publish=False)
        with pytest.raises(StateConflictError, match="draft -> cancelled"):
            await cancel_quest(
                db_session, quest.id, runners["alice"], now=START + timedelta(days=days_after_start)
            )
        assert quest.status == "draft"

    async def test_only_creator_or_admin(self, db_session, runners, crew):
        quest = await make_quest(db_session, runners["alice"], crew)
        with pytest.raises(AuthorizationError):
            await cancel_quest(db_session, quest.id, runners["bob"], now=T0)
        quest = await cancel_quest(db_session, quest.id, runners["admin"], now=T0)
        assert quest.status == "cancelled"
