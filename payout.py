"""
payout.py -- Settlement payout computation.

Pure functions over a settled Round:
  - compute_payout(): what one entry is owed
  - claim(): payout plus the round with that entry marked claimed
  - pool_multipliers() / preview_payout(): read-only views for clients

Money is integer-only.  The winner share multiplies before dividing and
uses Python's unbounded ints for the intermediate (the product can exceed
u64); the final share is checked back into u64.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from errors import AlreadyClaimed, NoBetFound, Overflow, RoundNotSettled
from state_machine import (
    MAX_FEE_BPS,
    U64_MAX,
    BetEntry,
    Round,
    RoundResult,
    RoundStatus,
    checked_add,
    checked_mul,
    checked_sub,
    find_bet,
    parse_result,
)


@dataclass(frozen=True)
class ClaimOutcome:
    round: Round
    player: str
    payout: int
    result: RoundResult


def protocol_fee(total_pool: int, fee_bps: int) -> int:
    return checked_mul(total_pool, int(fee_bps)) // MAX_FEE_BPS


def _winner_share(total_pool: int, fee_bps: int, stake: int, side_total: int) -> int:
    if side_total == 0:
        raise Overflow("division by zero: winning side pool is empty")
    pool_after_fee = checked_sub(total_pool, protocol_fee(total_pool, fee_bps))
    share = (pool_after_fee * stake) // side_total
    if share > U64_MAX:
        raise Overflow()
    return share


def compute_payout(round_: Round, bet: BetEntry, fee_bps: int) -> int:
    if round_.status != RoundStatus.SETTLED:
        raise RoundNotSettled()
    total_pool = round_.total_pool
    result = parse_result(round_.result)

    if result == RoundResult.TIE:
        # Full refund of both sides, no fee.
        return checked_add(bet.up_amount, bet.down_amount)
    if result == RoundResult.UP:
        if bet.up_amount == 0:
            return 0
        return _winner_share(total_pool, fee_bps, bet.up_amount, round_.total_up)
    if result == RoundResult.DOWN:
        if bet.down_amount == 0:
            return 0
        return _winner_share(total_pool, fee_bps, bet.down_amount, round_.total_down)
    # Pending on a settled round means the record is inconsistent.
    raise RoundNotSettled("settled round carries a pending result")


def claim(round_: Round, player: str, fee_bps: int) -> ClaimOutcome:
    """
    Resolve the claimant's entry and compute its payout.

    The returned round has the entry marked claimed; the caller credits the
    payout to the participant ledger and commits both together.
    """
    if round_.status != RoundStatus.SETTLED:
        raise RoundNotSettled()
    idx = find_bet(round_, player)
    if idx is None:
        raise NoBetFound()
    bet = round_.bets[idx]
    if bet.claimed:
        raise AlreadyClaimed()

    payout = compute_payout(round_, bet, fee_bps)
    bets = round_.bets[:idx] + (replace(bet, claimed=True),) + round_.bets[idx + 1:]
    return ClaimOutcome(
        round=replace(round_, bets=bets),
        player=player,
        payout=payout,
        result=round_.result,
    )


def preview_payout(round_: Round, player: str, fee_bps: int) -> int:
    """What claim() would pay right now; 0 when unsettled, absent or claimed."""
    if round_.status != RoundStatus.SETTLED:
        return 0
    idx = find_bet(round_, player)
    if idx is None or round_.bets[idx].claimed:
        return 0
    return compute_payout(round_, round_.bets[idx], fee_bps)


def pool_multipliers(round_: Round, fee_bps: int) -> dict[str, float]:
    """
    Implied after-fee payout multiple per side, for display only.

    A side with no stake shows 0.0.
    """
    total_pool = round_.total_pool
    if total_pool == 0:
        return {"up": 0.0, "down": 0.0, "up_share": 0.0, "down_share": 0.0}
    pool_after_fee = total_pool - (total_pool * int(fee_bps)) // MAX_FEE_BPS
    return {
        "up": pool_after_fee / round_.total_up if round_.total_up else 0.0,
        "down": pool_after_fee / round_.total_down if round_.total_down else 0.0,
        "up_share": round_.total_up / total_pool,
        "down_share": round_.total_down / total_pool,
    }


def settlement_totals(round_: Round, fee_bps: int) -> dict[str, int]:
    """
    Aggregate payout picture of a settled round.

    paid_out sums every entry's payout (claimed or not); retained is what
    stays with the protocol (fee plus rounding dust).
    """
    total_pool = round_.total_pool
    paid_out = 0
    for bet in round_.bets:
        paid_out = checked_add(paid_out, compute_payout(round_, bet, fee_bps))
    return {
        "total_pool": total_pool,
        "paid_out": paid_out,
        "retained": checked_sub(total_pool, paid_out),
    }
