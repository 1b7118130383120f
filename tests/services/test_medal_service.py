"""Service tests for medal minting, upgrades and metadata."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from rundao.db.models import Medal
from rundao.errors import AuthorizationError, NotFoundError, ValidationError
from rundao.medals.service import (
    get_medal,
    list_user_medals,
    medal_counts,
    mint_quest_medal,
    update_medal_metadata,
    upgrade_medals,
)

pytestmark = pytest.mark.asyncio


async def _mint(db, user, medal_type="grey", sessions=2, distance=6.0, participants=2):
    return await mint_quest_medal(
        db,
        recipient_id=user.id,
        quest_id=None,
        medal_type=medal_type,
        session_count=sessions,
        total_participants=participants,
        distance_km=distance,
    )


class TestMint:
    async def test_rarity_and_flags(self, db_session, runners):
        gold = await _mint(db_session, runners["bob"], "gold", participants=60)
        grey = await _mint(db_session, runners["bob"], "grey", sessions=5)

        assert (gold.rarity, gold.is_upgradeable) == ("epic", False)
        assert (grey.rarity, grey.is_upgradeable) == ("uncommon", True)
        assert grey.upgrade_level == 0
        assert grey.source_medal_ids == []

    async def test_unknown_type(self, db_session, runners):
        with pytest.raises(ValidationError):
            await _mint(db_session, runners["bob"], "bronze")

    async def test_counts_per_type(self, db_session, runners):
        bob = runners["bob"]
        await _mint(db_session, bob, "grey")
        await _mint(db_session, bob, "grey")
        await _mint(db_session, bob, "gold")

        assert await medal_counts(db_session, bob.id) == {"gold": 1, "grey": 2, "special": 0}
        assert len(await list_user_medals(db_session, bob.id)) == 3
        assert await medal_counts(db_session, runners["carol"].id) == {"gold": 0, "grey": 0, "special": 0}


class TestUpgrade:
    async def test_three_grey_become_uncommon_special(self, db_session, runners):
        bob = runners["bob"]
        sources = [
            await _mint(db_session, bob, sessions=2, distance=6.0),
            await _mint(db_session, bob, sessions=3, distance=9.0),
            await _mint(db_session, bob, sessions=4, distance=12.0),
        ]
        source_ids = [m.id for m in sources]

        medal = await upgrade_medals(db_session, bob, source_ids, title="Spring Grinder")

        assert medal.medal_type == "special"
        assert medal.rarity == "uncommon"
        assert medal.session_count == 9
        assert medal.distance_km == 27.0
        assert medal.upgrade_level == 1
        assert medal.is_upgradeable is False
        assert medal.source_medal_ids == sorted(source_ids)
        for medal_id in source_ids:
            with pytest.raises(NotFoundError):
                await get_medal(db_session, medal_id)
        remaining = (await db_session.execute(select(Medal).where(Medal.user_id == bob.id))).scalars().all()
        assert [m.id for m in remaining] == [medal.id]

    async def test_five_grey_become_rare(self, db_session, runners):
        bob = runners["bob"]
        ids = [(await _mint(db_session, bob)).id for _ in range(5)]
        medal = await upgrade_medals(db_session, bob, ids, title="Five")
        assert medal.rarity == "rare"

    async def test_needs_three(self, db_session, runners):
        bob = runners["bob"]
        ids = [(await _mint(db_session, bob)).id for _ in range(2)]
        with pytest.raises(ValidationError, match="At least 3"):
            await upgrade_medals(db_session, bob, ids, title="Too few")

    async def test_duplicate_ids_rejected(self, db_session, runners):
        bob = runners["bob"]
        medal = await _mint(db_session, bob)
        with pytest.raises(ValidationError, match="distinct"):
            await upgrade_medals(db_session, bob, [medal.id] * 3, title="Dup")

    async def test_foreign_medal_aborts_without_burning(self, db_session, runners):
        bob, carol = runners["bob"], runners["carol"]
        mine = [(await _mint(db_session, bob)).id for _ in range(2)]
        theirs = (await _mint(db_session, carol)).id

        with pytest.raises(AuthorizationError):
            await upgrade_medals(db_session, bob, [*mine, theirs], title="Heist")

        assert len(await list_user_medals(db_session, bob.id)) == 2
        assert len(await list_user_medals(db_session, carol.id)) == 1

    async def test_mixed_types_rejected(self, db_session, runners):
        bob = runners["bob"]
        ids = [(await _mint(db_session, bob, "grey")).id for _ in range(2)]
        ids.append((await _mint(db_session, bob, "gold")).id)
        with pytest.raises(ValidationError, match="same type"):
            await upgrade_medals(db_session, bob, ids, title="Mixed")
        assert len(await list_user_medals(db_session, bob.id)) == 3

    async def test_gold_not_upgradeable(self, db_session, runners):
        bob = runners["bob"]
        ids = [(await _mint(db_session, bob, "gold")).id for _ in range(3)]
        with pytest.raises(ValidationError, match="upgradeable"):
            await upgrade_medals(db_session, bob, ids, title="Gold")

    async def test_missing_medal(self, db_session, runners):
        bob = runners["bob"]
        ids = [(await _mint(db_session, bob)).id for _ in range(2)]
        with pytest.raises(NotFoundError):
            await upgrade_medals(db_session, bob, [*ids, 9999], title="Ghost")


class TestMetadata:
    async def test_owner_and_admin_may_edit(self, db_session, runners):
        medal = await _mint(db_session, runners["bob"])

        medal = await update_medal_metadata(db_session, medal.id, runners["bob"], title="First 5k")
        assert medal.title == "First 5k"
        medal = await update_medal_metadata(
            db_session, medal.id, runners["admin"], metadata_uri="ipfs://meta/1"
        )
        assert medal.metadata_uri == "ipfs://meta/1"
        assert medal.title == "First 5k"

        with pytest.raises(AuthorizationError):
            await update_medal_metadata(db_session, medal.id, runners["carol"], title="Mine now")
