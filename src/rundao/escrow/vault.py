"""Escrow vault: custody of stakes and settlement payouts.

Every stake is an ``EscrowRecord`` locked against a quest. Per-token
``VaultBalance`` rows track what the vault holds (``custodied``) and how
much of it is committed to running quests (``locked``); the difference is
the available balance. Money leaving the vault is appended to the
``vault_transfers`` ledger.

Rules:
- locked never exceeds custodied, for any token
- refunds only come out of a locked record and never exceed what it locks
- a quest is settled at most once (guarded by its Settlement row)
- settlement unlocks every record of the quest and drains its escrow to zero
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.clock import utcnow
from rundao.db.models import (
    EscrowRecord,
    Quest,
    Settlement,
    User,
    VaultBalance,
    VaultTransfer,
)
from rundao.errors import (
    ArithmeticInvariantError,
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from rundao.escrow.guard import guard
from rundao.escrow.splits import compute_split, from_units, to_units

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


async def get_vault_balance(db: AsyncSession, token: str) -> VaultBalance:
    """Fetch (creating if needed) the balance row for a token, locked for update."""
    result = await db.execute(
        select(VaultBalance).where(VaultBalance.token == token).with_for_update()
    )
    balance = result.scalar_one_or_none()
    if balance is not None:
        return balance
    try:
        async with db.begin_nested():
            balance = VaultBalance(token=token, custodied=ZERO, locked=ZERO, updated_at=utcnow())
            db.add(balance)
    except IntegrityError:
        # Another session created the row first
        logger.debug("Vault balance for %s created concurrently, reloading", token)
        result = await db.execute(
            select(VaultBalance).where(VaultBalance.token == token).with_for_update()
        )
        balance = result.scalar_one()
    return balance


async def list_vault_balances(db: AsyncSession) -> list[VaultBalance]:
    result = await db.execute(select(VaultBalance).order_by(VaultBalance.token))
    return list(result.scalars().all())


async def get_escrow_record(db: AsyncSession, quest_id: int, user_id: int) -> EscrowRecord | None:
    result = await db.execute(
        select(EscrowRecord).where(
            EscrowRecord.quest_id == quest_id,
            EscrowRecord.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def list_escrow_records(
    db: AsyncSession,
    quest_id: int,
    *,
    locked_only: bool = False,
) -> list[EscrowRecord]:
    query = select(EscrowRecord).where(EscrowRecord.quest_id == quest_id)
    if locked_only:
        query = query.where(EscrowRecord.is_locked.is_(True))
    result = await db.execute(query.order_by(EscrowRecord.id))
    return list(result.scalars().all())


async def get_settlement(db: AsyncSession, quest_id: int) -> Settlement | None:
    result = await db.execute(
        select(Settlement)
        .where(Settlement.quest_id == quest_id)
        .order_by(Settlement.batch_number)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_transfers(db: AsyncSession, quest_id: int | None = None) -> list[VaultTransfer]:
    query = select(VaultTransfer).order_by(VaultTransfer.id)
    if quest_id is not None:
        query = query.where(VaultTransfer.quest_id == quest_id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def _pay(
    db: AsyncSession,
    balance: VaultBalance,
    amount: Decimal,
    kind: str,
    *,
    quest_id: int | None = None,
    recipient_user_id: int | None = None,
    recipient_address: str | None = None,
) -> VaultTransfer:
    """Move ``amount`` out of custody and record it."""
    if balance.custodied - amount < balance.locked:
        raise ArithmeticInvariantError(
            f"Paying {amount} {balance.token} would leave locked funds uncovered"
        )
    balance.custodied -= amount
    balance.updated_at = utcnow()
    transfer = VaultTransfer(
        token=balance.token,
        amount=amount,
        kind=kind,
        quest_id=quest_id,
        recipient_user_id=recipient_user_id,
        recipient_address=recipient_address,
        created_at=utcnow(),
    )
    db.add(transfer)
    return transfer


def _unlock(balance: VaultBalance, record: EscrowRecord, amount: Decimal) -> None:
    record.locked_amount -= amount
    balance.locked -= amount
    if record.locked_amount == ZERO:
        record.is_locked = False
        record.released_at = utcnow()


async def deposit_for_quest(
    db: AsyncSession,
    quest: Quest,
    user_id: int,
    amount: Decimal,
) -> EscrowRecord:
    """Take custody of a participant's stake and lock it against the quest."""
    if amount <= ZERO:
        raise ValidationError("Deposit amount must be positive")
    to_units(amount)

    if await get_escrow_record(db, quest.id, user_id) is not None:
        raise StateConflictError("Stake already deposited for this quest")

    balance = await get_vault_balance(db, quest.stake_token)
    record = EscrowRecord(
        quest_id=quest.id,
        user_id=user_id,
        token=quest.stake_token,
        amount=amount,
        locked_amount=amount,
        is_locked=True,
        deposited_at=utcnow(),
    )
    db.add(record)
    balance.custodied += amount
    balance.locked += amount
    balance.updated_at = utcnow()
    await db.flush()

    logger.info("Stake deposited: quest=%d user=%d amount=%s %s", quest.id, user_id, amount, quest.stake_token)
    return record


async def refund_participant(
    db: AsyncSession,
    quest_id: int,
    user_id: int,
    amount: Decimal | None = None,
) -> VaultTransfer:
    """Return (part of) a locked stake directly to its participant."""
    with guard.hold("refund", user_id):
        record = await get_escrow_record(db, quest_id, user_id)
        if record is None:
            raise NotFoundError("No escrow record for this participant")
        if not record.is_locked:
            raise StateConflictError("Escrow record is no longer locked")

        amount = record.locked_amount if amount is None else amount
        if amount <= ZERO:
            raise ValidationError("Refund amount must be positive")
        if amount > record.locked_amount:
            raise ValidationError(f"Refund exceeds locked amount ({record.locked_amount})")

        balance = await get_vault_balance(db, record.token)
        _unlock(balance, record, amount)
        transfer = await _pay(
            db, balance, amount, "refund", quest_id=quest_id, recipient_user_id=user_id
        )
        await db.flush()

    logger.info("Stake refunded: quest=%d user=%d amount=%s", quest_id, user_id, amount)
    return transfer


async def batch_refund_participants(db: AsyncSession, quest_id: int) -> list[VaultTransfer]:
    """Refund every still-locked stake of a quest in full."""
    transfers = []
    for record in await list_escrow_records(db, quest_id, locked_only=True):
        transfers.append(await refund_participant(db, quest_id, record.user_id))
    return transfers


async def distribute_quest_rewards(
    db: AsyncSession,
    quest: Quest,
    *,
    total_amount: Decimal,
    winners: list[int],
    losers: list[int],
    success_rate_bps: int,
    dao_rate_bps: int,
    fee_rate_bps: int,
    fee_cap_bps: int,
    dao_treasury: str | None,
    fee_recipient: str | None,
) -> Settlement:
    """Settle a quest's escrow.

    ``total_amount`` is the forfeited pool (the losers' stakes). Winners get
    their own stake back plus an even share of the winner bucket; the DAO
    treasury gets its bucket plus split dust; the fee recipient gets the fee.
    Buckets whose recipient is unset stay in the vault as available balance.
    Every escrow record of the quest ends unlocked with nothing locked.
    """
    with guard.hold("distribute", quest.id):
        if await get_settlement(db, quest.id) is not None:
            raise StateConflictError("Quest has already been settled")

        winner_set, loser_set = set(winners), set(losers)
        if len(winner_set) != len(winners) or len(loser_set) != len(losers):
            raise ValidationError("Winner and loser ids must not repeat")
        if winner_set & loser_set:
            raise ValidationError("A participant cannot be both winner and loser")

        records = await list_escrow_records(db, quest.id, locked_only=True)
        by_user = {r.user_id: r for r in records}
        if set(by_user) != winner_set | loser_set:
            raise ValidationError("Winners and losers must cover exactly the staked participants")

        locked_total = sum((r.locked_amount for r in records), ZERO)
        forfeited = sum((by_user[u].locked_amount for u in loser_set), ZERO)
        if total_amount != forfeited:
            raise ArithmeticInvariantError(
                f"Distributable amount {total_amount} does not match forfeited stake {forfeited}"
            )

        split = compute_split(
            to_units(total_amount),
            len(winner_set),
            success_rate_bps,
            dao_rate_bps,
            fee_rate_bps,
            fee_cap_bps,
        )
        balance = await get_vault_balance(db, quest.stake_token)

        for record in records:
            _unlock(balance, record, record.locked_amount)

        per_winner = from_units(split.per_winner)
        for user_id in winners:
            await _pay(
                db, balance, by_user[user_id].amount, "stake_return",
                quest_id=quest.id, recipient_user_id=user_id,
            )
            if per_winner > ZERO:
                await _pay(
                    db, balance, per_winner, "reward",
                    quest_id=quest.id, recipient_user_id=user_id,
                )

        if dao_treasury and split.dao_total > 0:
            await _pay(
                db, balance, from_units(split.dao_total), "dao_share",
                quest_id=quest.id, recipient_address=dao_treasury,
            )
        if fee_recipient and split.fee_pool > 0:
            await _pay(
                db, balance, from_units(split.fee_pool), "protocol_fee",
                quest_id=quest.id, recipient_address=fee_recipient,
            )

        settlement = Settlement(
            quest_id=quest.id,
            batch_number=1,
            winners=list(winners),
            losers=list(losers),
            winners_count=len(winner_set),
            losers_count=len(loser_set),
            stake_token=quest.stake_token,
            total_stake_amount=locked_total,
            distributable_amount=total_amount,
            winner_payout=from_units(split.winner_pool),
            per_winner_amount=per_winner,
            dao_payout=from_units(split.dao_pool),
            protocol_fee=from_units(split.fee_pool),
            dust_amount=from_units(split.dust),
            completed_at=utcnow(),
        )
        db.add(settlement)
        await db.flush()

    logger.info(
        "Quest %d settled: winners=%d losers=%d pool=%s winner_pool=%s dao=%s fee=%s dust=%s",
        quest.id,
        settlement.winners_count,
        settlement.losers_count,
        total_amount,
        settlement.winner_payout,
        settlement.dao_payout,
        settlement.protocol_fee,
        settlement.dust_amount,
    )
    return settlement


async def emergency_withdraw(
    db: AsyncSession,
    actor: User,
    token: str,
    amount: Decimal,
    to_address: str,
) -> VaultTransfer:
    """Administrator escape hatch. Only available (unlocked) balance can move."""
    if not actor.is_admin:
        raise AuthorizationError("Only administrators can withdraw from the vault")
    if amount <= ZERO:
        raise ValidationError("Withdrawal amount must be positive")
    to_units(amount)

    balance = await get_vault_balance(db, token)
    available = balance.custodied - balance.locked
    if amount > available:
        raise StateConflictError(f"Only {available} {token} is available for withdrawal")

    transfer = await _pay(db, balance, amount, "emergency_withdraw", recipient_address=to_address)
    await db.flush()
    logger.warning("Emergency withdrawal: %s %s to %s by admin %d", amount, token, to_address, actor.id)
    return transfer
