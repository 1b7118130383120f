"""Medal rarity rules.

Quest medals:
- gold: legendary at 100+ participants, epic at 50+, rare at 20+, else uncommon
- grey: uncommon at 5+ sessions, else common
- anything else: common

Upgrades use UPGRADE_RARITY keyed by source type; the highest threshold not
above the number of burned medals decides the new rarity.
"""

from __future__ import annotations

MIN_UPGRADE_SOURCES = 3

RARITY_ORDER: tuple[str, ...] = ("common", "uncommon", "rare", "epic", "legendary")

UPGRADEABLE_TYPES = frozenset({"grey"})

UPGRADE_RARITY: dict[str, tuple[tuple[int, str], ...]] = {
    "grey": ((3, "uncommon"), (5, "rare"), (10, "epic")),
    "gold": ((3, "uncommon"), (5, "rare"), (10, "epic")),
}


def quest_medal_rarity(medal_type: str, session_count: int, total_participants: int) -> str:
    """Rarity for a medal minted at quest settlement."""
    if medal_type == "gold":
        if total_participants >= 100:
            return "legendary"
        if total_participants >= 50:
            return "epic"
        if total_participants >= 20:
            return "rare"
        return "uncommon"
    if medal_type == "grey":
        return "uncommon" if session_count >= 5 else "common"
    return "common"


def is_upgradeable(medal_type: str) -> bool:
    return medal_type in UPGRADEABLE_TYPES


def upgrade_rarity(source_type: str, source_count: int) -> str:
    """Rarity of the medal produced by merging ``source_count`` medals of ``source_type``.

    Raises:
        ValueError: if the type has no upgrade path or too few sources are given.
    """
    table = UPGRADE_RARITY.get(source_type)
    if not table:
        raise ValueError(f"{source_type} medals have no upgrade path")
    rarity = None
    for threshold, tier in table:
        if source_count >= threshold:
            rarity = tier
    if rarity is None:
        raise ValueError(f"At least {table[0][0]} medals are required to upgrade")
    return rarity
