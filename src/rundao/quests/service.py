"""Quest lifecycle: creation, enrollment, run attribution, settlement.

Every operation that acts on a quest first applies its due automatic
transition (open -> active/cancelled once start_at passes), so callers
always see the status the clock implies.

Rules:
- success + DAO + fee rates sum to 10000 bps and the fee stays under its cap
- participant_count never exceeds max_slots (atomic conditional increment)
- one participation per (quest, user); stake must equal the quest stake
- participations only reach success/fail once the quest is completed
- escrow for a quest equals participant_count * stake_amount until settlement
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.clock import ensure_utc, utcnow
from rundao.config import get_settings
from rundao.crews.service import get_crew, is_active_member
from rundao.db.models import Participation, Quest, QuestRun, RunRecord, Settlement, User
from rundao.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from rundao.escrow.splits import to_units, validate_rates
from rundao.escrow.vault import (
    batch_refund_participants,
    deposit_for_quest,
    distribute_quest_rewards,
    get_settlement,
)
from rundao.medals.service import mint_quest_medal
from rundao.quests.lifecycle import (
    due_transition,
    has_ended,
    has_started,
    required_sessions,
    transition,
    within_window,
)

logger = logging.getLogger(__name__)


async def get_quest(db: AsyncSession, quest_id: int) -> Quest:
    """Fetch a quest or raise NotFoundError."""
    quest = await db.get(Quest, quest_id)
    if quest is None:
        raise NotFoundError("Quest not found")
    return quest


async def get_participation(db: AsyncSession, quest_id: int, user_id: int) -> Participation | None:
    result = await db.execute(
        select(Participation).where(
            Participation.quest_id == quest_id,
            Participation.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def list_participations(db: AsyncSession, quest_id: int) -> list[tuple[Participation, User]]:
    result = await db.execute(
        select(Participation, User)
        .join(User, User.id == Participation.user_id)
        .where(Participation.quest_id == quest_id)
        .order_by(Participation.joined_at.asc(), Participation.id.asc())
    )
    return [(p, u) for p, u in result.all()]


async def list_crew_quests(db: AsyncSession, crew_id: int) -> list[Quest]:
    await get_crew(db, crew_id)
    result = await db.execute(
        select(Quest).where(Quest.crew_id == crew_id).order_by(Quest.start_at.desc(), Quest.id.desc())
    )
    return list(result.scalars().all())


async def apply_automatic_transitions(db: AsyncSession, quest: Quest, now: datetime | None = None) -> bool:
    """Move an open quest past its start time to active (or cancelled if empty)."""
    target = due_transition(quest, now or utcnow())
    if target is None:
        return False
    transition(quest, target)
    await db.flush()
    logger.info("Quest %d moved to %s at start (participants=%d)", quest.id, target, quest.participant_count)
    return True


async def activate_due_quests(db: AsyncSession, now: datetime | None = None) -> list[Quest]:
    """Sweep every open quest and apply its due transition."""
    now = now or utcnow()
    result = await db.execute(select(Quest).where(Quest.status == "open").order_by(Quest.id))
    moved = []
    for quest in result.scalars().all():
        if await apply_automatic_transitions(db, quest, now):
            moved.append(quest)
    return moved


async def create_quest(
    db: AsyncSession,
    creator: User,
    crew_id: int,
    *,
    title: str,
    start_at: datetime,
    end_at: datetime,
    distance_km: float,
    times_per_week: int,
    stake_amount: Decimal,
    stake_token: str = "USDC",
    description: str | None = None,
    max_slots: int | None = None,
    success_rate_bps: int | None = None,
    dao_rate_bps: int | None = None,
    protocol_fee_rate_bps: int | None = None,
    publish: bool = True,
    now: datetime | None = None,
) -> Quest:
    """Create a quest for a crew. Published (open) unless ``publish`` is False."""
    settings = get_settings()
    now = now or utcnow()

    start_at, end_at = ensure_utc(start_at), ensure_utc(end_at)
    if end_at <= start_at:
        raise ValidationError("end_at must be after start_at")
    if start_at <= ensure_utc(now):
        raise ValidationError("start_at must be in the future")
    if distance_km <= 0:
        raise ValidationError("distance_km must be positive")
    if times_per_week <= 0:
        raise ValidationError("times_per_week must be positive")
    if stake_amount <= 0:
        raise ValidationError("stake_amount must be positive")
    to_units(stake_amount)

    max_slots = settings.default_max_slots if max_slots is None else max_slots
    if max_slots <= 0:
        raise ValidationError("max_slots must be positive")

    stake_token = stake_token.upper()
    if stake_token not in settings.supported_stake_tokens:
        raise ValidationError(
            f"Unsupported stake token {stake_token}. "
            f"Supported: {', '.join(settings.supported_stake_tokens)}"
        )

    success_rate_bps = settings.default_success_rate_bps if success_rate_bps is None else success_rate_bps
    dao_rate_bps = settings.default_dao_rate_bps if dao_rate_bps is None else dao_rate_bps
    if protocol_fee_rate_bps is None:
        protocol_fee_rate_bps = settings.default_protocol_fee_rate_bps
    validate_rates(success_rate_bps, dao_rate_bps, protocol_fee_rate_bps, settings.protocol_fee_cap_bps)

    await get_crew(db, crew_id)
    if not await is_active_member(db, crew_id, creator.id):
        raise AuthorizationError("Only active crew members can create quests for this crew")

    quest = Quest(
        crew_id=crew_id,
        creator_id=creator.id,
        title=title,
        description=description,
        start_at=start_at,
        end_at=end_at,
        distance_km=distance_km,
        times_per_week=times_per_week,
        stake_token=stake_token,
        stake_amount=stake_amount,
        max_slots=max_slots,
        participant_count=0,
        status="open" if publish else "draft",
        success_rate_bps=success_rate_bps,
        dao_rate_bps=dao_rate_bps,
        protocol_fee_rate_bps=protocol_fee_rate_bps,
    )
    db.add(quest)
    await db.flush()

    logger.info(
        "Quest created: %s (id=%d, crew=%d, stake=%s %s, status=%s)",
        title, quest.id, crew_id, stake_amount, stake_token, quest.status,
    )
    return quest


async def publish_quest(
    db: AsyncSession,
    quest_id: int,
    actor: User,
    now: datetime | None = None,
) -> Quest:
    """Open a draft quest for enrollment (creator only, before it starts)."""
    quest = await get_quest(db, quest_id)
    if quest.creator_id != actor.id:
        raise AuthorizationError("Only the quest creator can publish it")
    if has_started(quest, now or utcnow()):
        raise StateConflictError("Quest start time has already passed")
    transition(quest, "open")
    await db.flush()
    logger.info("Quest %d published", quest.id)
    return quest


async def join_quest(
    db: AsyncSession,
    quest_id: int,
    user: User,
    stake_amount: Decimal,
    now: datetime | None = None,
) -> Participation:
    """Enroll a user, take their stake into escrow, and claim a slot."""
    now = now or utcnow()
    quest = await get_quest(db, quest_id)
    await apply_automatic_transitions(db, quest, now)

    if quest.status != "open":
        raise StateConflictError(f"Quest is {quest.status}, not open for joining")
    if has_started(quest, now):
        raise StateConflictError("Quest has already started")
    if await get_participation(db, quest_id, user.id) is not None:
        raise StateConflictError("You have already joined this quest")
    if stake_amount != quest.stake_amount:
        raise ValidationError(f"Stake must be exactly {quest.stake_amount} {quest.stake_token}")

    # The slot is claimed in one conditional UPDATE so concurrent joins can't overbook.
    result = await db.execute(
        update(Quest)
        .where(
            Quest.id == quest_id,
            Quest.status == "open",
            Quest.participant_count < Quest.max_slots,
        )
        .values(participant_count=Quest.participant_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StateConflictError(f"Quest is full ({quest.max_slots} slots)")
    await db.refresh(quest)

    # A concurrent join by the same user only shows up as a unique violation.
    try:
        async with db.begin_nested():
            await deposit_for_quest(db, quest, user.id, stake_amount)
            participation = Participation(
                quest_id=quest_id,
                user_id=user.id,
                status="active",
                stake_amount=stake_amount,
                stake_token=quest.stake_token,
                completed_sessions=0,
                total_distance_km=0.0,
                joined_at=now,
            )
            db.add(participation)
    except IntegrityError as exc:
        logger.warning("Duplicate join for user %d on quest %d: %s", user.id, quest_id, exc.orig)
        raise StateConflictError("You have already joined this quest") from exc

    logger.info(
        "User %d joined quest %d (%d/%d)", user.id, quest_id, quest.participant_count, quest.max_slots
    )
    return participation


async def record_run(
    db: AsyncSession,
    quest_id: int,
    user: User,
    run_record_id: int,
    now: datetime | None = None,
) -> QuestRun:
    """Attribute one of the user's runs to a quest they are running.

    The attribution is always stored. It only counts (and bumps the
    participation counters) when the run started inside the quest window,
    covers the per-session distance and is not flagged suspicious.
    """
    quest = await get_quest(db, quest_id)
    await apply_automatic_transitions(db, quest, now)
    if quest.status != "active":
        raise StateConflictError(f"Runs can only be recorded for active quests (quest is {quest.status})")

    participation = await get_participation(db, quest_id, user.id)
    if participation is None or participation.status != "active":
        raise StateConflictError("You are not an active participant of this quest")

    run = await db.get(RunRecord, run_record_id)
    if run is None:
        raise NotFoundError("Run not found")
    if run.user_id != user.id:
        raise AuthorizationError("You can only record your own runs")

    existing = await db.execute(
        select(QuestRun.id).where(QuestRun.quest_id == quest_id, QuestRun.run_record_id == run.id)
    )
    if existing.scalar_one_or_none() is not None:
        raise StateConflictError("This run is already recorded for this quest")

    reason = None
    if run.is_suspicious:
        reason = "Run is flagged as suspicious"
    elif not within_window(quest, run.started_at):
        reason = "Run is outside the quest window"
    elif run.distance_km < quest.distance_km:
        reason = f"Run distance below the {quest.distance_km:g} km session target"

    quest_run = QuestRun(
        quest_id=quest_id,
        user_id=user.id,
        run_record_id=run.id,
        is_valid=reason is None,
        validation_reason=reason,
    )
    db.add(quest_run)
    if reason is None:
        participation.completed_sessions += 1
        participation.total_distance_km += run.distance_km
    await db.flush()

    logger.info("Run %d recorded for quest %d user %d (valid=%s)", run.id, quest_id, user.id, reason is None)
    return quest_run


async def complete_quest(
    db: AsyncSession,
    quest_id: int,
    actor: User,
    winners: list[int],
    now: datetime | None = None,
) -> tuple[Quest, Settlement]:
    """Close a finished quest: settle the escrow and mint medals.

    Winners are the explicit list; every other active participant loses.
    """
    settings = get_settings()
    now = now or utcnow()
    quest = await get_quest(db, quest_id)
    if quest.creator_id != actor.id and not actor.is_admin:
        raise AuthorizationError("Only the quest creator or an administrator can complete it")

    await apply_automatic_transitions(db, quest, now)
    if quest.status != "active":
        raise StateConflictError(f"Only active quests can be completed (quest is {quest.status})")
    if not has_ended(quest, now):
        raise StateConflictError("Quest has not ended yet")

    participations = [
        p for p, _u in await list_participations(db, quest_id) if p.status == "active"
    ]
    by_user = {p.user_id: p for p in participations}

    winner_ids = list(dict.fromkeys(winners))
    strangers = [u for u in winner_ids if u not in by_user]
    if strangers:
        raise ValidationError(f"Winners must be active participants: {strangers}")
    winner_set = set(winner_ids)
    loser_ids = [p.user_id for p in participations if p.user_id not in winner_set]

    settlement = await distribute_quest_rewards(
        db,
        quest,
        total_amount=sum((by_user[u].stake_amount for u in loser_ids), Decimal("0")),
        winners=winner_ids,
        losers=loser_ids,
        success_rate_bps=quest.success_rate_bps,
        dao_rate_bps=quest.dao_rate_bps,
        fee_rate_bps=quest.protocol_fee_rate_bps,
        fee_cap_bps=settings.protocol_fee_cap_bps,
        dao_treasury=settings.dao_treasury_address or None,
        fee_recipient=settings.protocol_fee_recipient or None,
    )

    for participation in participations:
        won = participation.user_id in winner_set
        participation.status = "success" if won else "fail"
        participation.completed_at = now
        await mint_quest_medal(
            db,
            recipient_id=participation.user_id,
            quest_id=quest.id,
            medal_type="gold" if won else "grey",
            session_count=participation.completed_sessions,
            total_participants=quest.participant_count,
            distance_km=participation.total_distance_km,
            is_winner=won,
            title=quest.title,
        )

    transition(quest, "completed")
    await db.flush()
    logger.info("Quest %d completed: %d winners, %d losers", quest.id, len(winner_ids), len(loser_ids))
    return quest, settlement


async def cancel_quest(
    db: AsyncSession,
    quest_id: int,
    actor: User,
    now: datetime | None = None,
) -> Quest:
    """Cancel a quest before it starts and refund every stake in full."""
    now = now or utcnow()
    quest = await get_quest(db, quest_id)
    if quest.creator_id != actor.id and not actor.is_admin:
        raise AuthorizationError("Only the quest creator or an administrator can cancel it")

    await apply_automatic_transitions(db, quest, now)
    transition(quest, "cancelled")

    refunds = await batch_refund_participants(db, quest.id)
    for participation, _user in await list_participations(db, quest.id):
        if participation.status == "active":
            participation.status = "forfeit"
            participation.completed_at = now
    await db.flush()

    logger.info("Quest %d cancelled by user %d (%d refunds)", quest.id, actor.id, len(refunds))
    return quest


async def get_quest_settlement(db: AsyncSession, quest_id: int) -> Settlement:
    await get_quest(db, quest_id)
    settlement = await get_settlement(db, quest_id)
    if settlement is None:
        raise NotFoundError("Quest has not been settled")
    return settlement


async def get_quest_detail(
    db: AsyncSession,
    quest_id: int,
    now: datetime | None = None,
) -> tuple[Quest, int, list[tuple[Participation, User]]]:
    """Quest with its required session count and participants."""
    quest = await get_quest(db, quest_id)
    await apply_automatic_transitions(db, quest, now)
    return quest, required_sessions(quest), await list_participations(db, quest_id)
