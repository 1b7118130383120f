"""Fixed-point settlement arithmetic.

Amounts are converted to integer micro-units (1e-6) and rates are basis
points (1/10000), so every split is plain integer math with no float
rounding drift.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from rundao.errors import ArithmeticInvariantError, ValidationError

BPS_DENOMINATOR = 10_000
AMOUNT_DECIMALS = 6
MICRO = Decimal(1).scaleb(-AMOUNT_DECIMALS)


def to_units(amount: Decimal) -> int:
    """Convert a token amount to integer micro-units. Rejects sub-micro precision."""
    scaled = Decimal(amount).scaleb(AMOUNT_DECIMALS)
    if scaled != scaled.to_integral_value():
        raise ValidationError(f"Amounts support at most {AMOUNT_DECIMALS} decimal places")
    return int(scaled)


def from_units(units: int) -> Decimal:
    return Decimal(units).scaleb(-AMOUNT_DECIMALS).quantize(MICRO)


def validate_rates(success_bps: int, dao_bps: int, fee_bps: int, fee_cap_bps: int) -> None:
    """Reject splits that do not add up to the whole pool or exceed the fee cap."""
    if min(success_bps, dao_bps, fee_bps) < 0:
        raise ArithmeticInvariantError("Settlement rates cannot be negative")
    total = success_bps + dao_bps + fee_bps
    if total != BPS_DENOMINATOR:
        raise ArithmeticInvariantError(
            f"Settlement rates must sum to 100% (got {total / 100:g}%)"
        )
    if fee_bps > fee_cap_bps:
        raise ArithmeticInvariantError(
            f"Protocol fee {fee_bps / 100:g}% exceeds the {fee_cap_bps / 100:g}% cap"
        )


@dataclass(frozen=True)
class SettlementSplit:
    """Result of dividing a pool, all values in micro-units."""

    total: int
    winner_pool: int
    dao_pool: int
    fee_pool: int
    winners_count: int
    per_winner: int
    dust: int

    @property
    def winners_paid(self) -> int:
        return self.per_winner * self.winners_count

    @property
    def dao_total(self) -> int:
        """DAO bucket plus whatever the winner split could not place."""
        return self.dao_pool + self.dust


def compute_split(
    total: int,
    winners_count: int,
    success_bps: int,
    dao_bps: int,
    fee_bps: int,
    fee_cap_bps: int,
) -> SettlementSplit:
    """Divide ``total`` micro-units into winner, DAO and fee buckets.

    Winner and fee buckets are floored; the DAO bucket takes the basis-point
    rounding remainder so the three always add up to ``total``. The winner
    pool is split evenly; the division remainder (or the whole pool when
    nobody won) is reported as ``dust``.
    """
    validate_rates(success_bps, dao_bps, fee_bps, fee_cap_bps)
    if total < 0:
        raise ValidationError("Pool amount cannot be negative")
    if winners_count < 0:
        raise ValidationError("Winner count cannot be negative")

    winner_pool = total * success_bps // BPS_DENOMINATOR
    fee_pool = total * fee_bps // BPS_DENOMINATOR
    dao_pool = total - winner_pool - fee_pool

    if winners_count and winner_pool > 0:
        per_winner = winner_pool // winners_count
        dust = winner_pool - per_winner * winners_count
    else:
        per_winner = 0
        dust = winner_pool

    return SettlementSplit(
        total=total,
        winner_pool=winner_pool,
        dao_pool=dao_pool,
        fee_pool=fee_pool,
        winners_count=winners_count,
        per_winner=per_winner,
        dust=dust,
    )
