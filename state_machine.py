"""
state_machine.py

Round lifecycle core for the up/down price market.

Design goals:
- Pure reducer transitions: (round, command) -> next_round
- Strict Open -> Locked -> Settled ordering, never backwards or skipped
- Fixed-capacity wager ledger (MAX_PLAYERS slots, insertion order)
- Checked unsigned 64-bit arithmetic; a failed check raises before any
  new state is built, so callers never observe a partial update
- Tag validation at the (de)serialization boundary
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum

from errors import (
    BettingClosed,
    ExponentMismatch,
    InsufficientCredits,
    InvalidAmount,
    InvalidDirection,
    InvalidFee,
    InvalidResult,
    Overflow,
    RoundFull,
    RoundNotLocked,
    RoundNotOpen,
)


U64_MAX = (1 << 64) - 1
I64_MIN = -(1 << 63)
I64_MAX = (1 << 63) - 1
MAX_FEE_BPS = 10_000


class Direction(IntEnum):
    UP = 0
    DOWN = 1


class RoundStatus(IntEnum):
    OPEN = 0
    LOCKED = 1
    SETTLED = 2


class RoundResult(IntEnum):
    PENDING = 0
    UP = 1
    DOWN = 2
    TIE = 3


@dataclass(frozen=True)
class RoundConfig:
    duration_sec: int = 120
    lock_before_end_sec: int = 5
    max_players: int = 8
    max_price_age_sec: int = 600
    min_signatures: int = 5


@dataclass(frozen=True)
class GameConfig:
    authority: str
    fee_bps: int
    round_count: int = 0


@dataclass(frozen=True)
class BetEntry:
    player: str
    up_amount: int = 0
    down_amount: int = 0
    claimed: bool = False


@dataclass(frozen=True)
class PriceSnapshot:
    price: int
    exponent: int
    publish_time: int
    feed_id: str = ""
    confidence: int = 0
    num_signatures: int = 0


@dataclass(frozen=True)
class Round:
    round_id: int
    start_ts: int
    lock_ts: int
    end_ts: int
    start_price: int
    price_exponent: int
    end_price: int = 0
    total_up: int = 0
    total_down: int = 0
    status: RoundStatus = RoundStatus.OPEN
    result: RoundResult = RoundResult.PENDING
    bets: tuple[BetEntry, ...] = ()

    @property
    def num_bets(self) -> int:
        return len(self.bets)

    @property
    def total_pool(self) -> int:
        return checked_add(self.total_up, self.total_down)


# --------------------------- Commands ---------------------------


@dataclass(frozen=True)
class PlaceWager:
    player: str
    direction: Direction
    amount: int
    balance: int
    timestamp: float


@dataclass(frozen=True)
class LockRound:
    timestamp: float


@dataclass(frozen=True)
class SettleRound:
    price: PriceSnapshot
    timestamp: float


Command = PlaceWager | LockRound | SettleRound


# --------------------------- Checked arithmetic ---------------------------


def _require_u64(value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise Overflow(f"non-integer amount: {value!r}")
    if value < 0 or value > U64_MAX:
        raise Overflow(f"value out of u64 range: {value}")
    return value


def checked_add(a: int, b: int) -> int:
    out = _require_u64(a) + _require_u64(b)
    if out > U64_MAX:
        raise Overflow()
    return out


def checked_sub(a: int, b: int) -> int:
    out = _require_u64(a) - _require_u64(b)
    if out < 0:
        raise Overflow()
    return out


def checked_mul(a: int, b: int) -> int:
    out = _require_u64(a) * _require_u64(b)
    if out > U64_MAX:
        raise Overflow()
    return out


# --------------------------- Tag parsing ---------------------------


def parse_direction(value) -> Direction:
    if isinstance(value, Direction):
        return value
    if isinstance(value, str):
        key = value.strip().upper()
        if key in Direction.__members__:
            return Direction[key]
        raise InvalidDirection(f"unknown direction {value!r}")
    try:
        return Direction(int(value))
    except (TypeError, ValueError):
        raise InvalidDirection(f"unknown direction {value!r}") from None


def parse_status(value) -> RoundStatus:
    try:
        return RoundStatus(int(value))
    except (TypeError, ValueError):
        raise InvalidResult(f"unknown round status tag {value!r}") from None


def parse_result(value) -> RoundResult:
    try:
        return RoundResult(int(value))
    except (TypeError, ValueError):
        raise InvalidResult(f"unknown round result tag {value!r}") from None


# --------------------------- Helpers ---------------------------


def init_config(authority: str, fee_bps: int) -> GameConfig:
    if not isinstance(fee_bps, int) or fee_bps < 0 or fee_bps > MAX_FEE_BPS:
        raise InvalidFee(f"fee_bps must be in 0..={MAX_FEE_BPS}, got {fee_bps!r}")
    return GameConfig(authority=str(authority), fee_bps=fee_bps, round_count=0)


def find_bet(round_: Round, player: str) -> int | None:
    # Linear scan is bounded by max_players; fine only while capacity stays small.
    for i, bet in enumerate(round_.bets):
        if bet.player == player:
            return i
    return None


def _replace_bet(bets: tuple[BetEntry, ...], idx: int, bet: BetEntry) -> tuple[BetEntry, ...]:
    return bets[:idx] + (bet,) + bets[idx + 1:]


def _compare_prices(start_price: int, end_price: int) -> RoundResult:
    if end_price > start_price:
        return RoundResult.UP
    if end_price < start_price:
        return RoundResult.DOWN
    return RoundResult.TIE


# --------------------------- Transitions ---------------------------


def open_round(
    config: GameConfig,
    price: PriceSnapshot,
    now: float,
    cfg: RoundConfig,
) -> tuple[GameConfig, Round]:
    """
    Allocate round #round_count and advance the counter.

    The price must already have passed the oracle freshness gate.
    """
    round_id = config.round_count
    next_count = checked_add(round_id, 1)
    start_ts = int(now)
    rnd = Round(
        round_id=round_id,
        start_ts=start_ts,
        lock_ts=start_ts + cfg.duration_sec - cfg.lock_before_end_sec,
        end_ts=start_ts + cfg.duration_sec,
        start_price=int(price.price),
        price_exponent=int(price.exponent),
    )
    return replace(config, round_count=next_count), rnd


def place_wager(
    round_: Round,
    player: str,
    direction,
    amount: int,
    balance: int,
    now: float,
    cfg: RoundConfig,
) -> Round:
    if round_.status != RoundStatus.OPEN:
        raise RoundNotOpen()
    if not now < round_.lock_ts:
        raise BettingClosed()
    side = parse_direction(direction)
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise InvalidAmount(f"amount must be a positive integer, got {amount!r}")
    _require_u64(amount)
    if balance < amount:
        raise InsufficientCredits()

    idx = find_bet(round_, player)
    bets = round_.bets
    if idx is None:
        if len(bets) >= cfg.max_players:
            raise RoundFull()
        bets = bets + (BetEntry(player=player),)
        idx = len(bets) - 1

    bet = bets[idx]
    if side == Direction.UP:
        bet = replace(bet, up_amount=checked_add(bet.up_amount, amount))
        return replace(
            round_,
            bets=_replace_bet(bets, idx, bet),
            total_up=checked_add(round_.total_up, amount),
        )
    bet = replace(bet, down_amount=checked_add(bet.down_amount, amount))
    return replace(
        round_,
        bets=_replace_bet(bets, idx, bet),
        total_down=checked_add(round_.total_down, amount),
    )


def lock_round(round_: Round) -> Round:
    # No deadline check: the operator may lock early or late.
    if round_.status != RoundStatus.OPEN:
        raise RoundNotOpen()
    return replace(round_, status=RoundStatus.LOCKED)


def settle_round(round_: Round, price: PriceSnapshot) -> Round:
    if round_.status != RoundStatus.LOCKED:
        raise RoundNotLocked()
    if int(price.exponent) != round_.price_exponent:
        raise ExponentMismatch(
            f"open exponent {round_.price_exponent} != settle exponent {price.exponent}"
        )
    end_price = int(price.price)
    return replace(
        round_,
        end_price=end_price,
        status=RoundStatus.SETTLED,
        result=_compare_prices(round_.start_price, end_price),
    )


def transition(round_: Round, command: Command, cfg: RoundConfig) -> Round:
    """
    Pure reducer for one round-level command.
    """
    if isinstance(command, PlaceWager):
        return place_wager(
            round_,
            command.player,
            command.direction,
            command.amount,
            command.balance,
            command.timestamp,
            cfg,
        )
    if isinstance(command, LockRound):
        return lock_round(round_)
    if isinstance(command, SettleRound):
        return settle_round(round_, command.price)
    raise TypeError(f"Unsupported command type: {type(command)!r}")


def _integrity_violations(round_: Round, max_players: int | None) -> list[str]:
    violations: list[str] = []
    if max_players is not None and len(round_.bets) > max_players:
        violations.append("num_bets exceeds max_players")
    players = [b.player for b in round_.bets]
    if len(players) != len(set(players)):
        violations.append("duplicate player entry")
    if sum(b.up_amount for b in round_.bets) != round_.total_up:
        violations.append("sum(up_amount) != total_up")
    if sum(b.down_amount for b in round_.bets) != round_.total_down:
        violations.append("sum(down_amount) != total_down")
    return violations


def check_invariants(round_: Round, cfg: RoundConfig) -> list[str]:
    """
    Strict invariant checker for a round record.
    """
    violations = _integrity_violations(round_, cfg.max_players)

    settled = round_.status == RoundStatus.SETTLED
    pending = round_.result == RoundResult.PENDING
    if settled == pending:
        violations.append("result must be pending iff round is not settled")

    if round_.lock_ts != round_.start_ts + cfg.duration_sec - cfg.lock_before_end_sec:
        violations.append("lock_ts does not match duration and lock margin")
    if round_.end_ts != round_.start_ts + cfg.duration_sec:
        violations.append("end_ts does not match duration")

    for b in round_.bets:
        if b.claimed and not settled:
            violations.append("entry claimed before settlement")
        if b.up_amount < 0 or b.down_amount < 0:
            violations.append("negative wager amount")

    return violations


# --------------------------- Serialization ---------------------------


def config_to_dict(config: GameConfig) -> dict:
    return {
        "authority": config.authority,
        "fee_bps": config.fee_bps,
        "round_count": config.round_count,
    }


def config_from_dict(data: dict) -> GameConfig:
    try:
        fee_bps = int(data.get("fee_bps", 0))
        round_count = int(data.get("round_count", 0))
    except (AttributeError, TypeError, ValueError) as e:
        raise InvalidResult(f"malformed config record: {e!r}") from None
    if fee_bps < 0 or fee_bps > MAX_FEE_BPS:
        raise InvalidFee(f"stored fee_bps out of range: {fee_bps}")
    return GameConfig(
        authority=str(data.get("authority", "")),
        fee_bps=fee_bps,
        round_count=round_count,
    )


def to_dict(round_: Round) -> dict:
    return {
        "round_id": round_.round_id,
        "start_ts": round_.start_ts,
        "lock_ts": round_.lock_ts,
        "end_ts": round_.end_ts,
        "start_price": round_.start_price,
        "end_price": round_.end_price,
        "price_exponent": round_.price_exponent,
        "total_up": round_.total_up,
        "total_down": round_.total_down,
        "status": int(round_.status),
        "result": int(round_.result),
        "num_bets": round_.num_bets,
        "bets": [dict(b.__dict__) for b in round_.bets],
    }


def _stored_u64(data: dict, key: str) -> int:
    value = int(data.get(key, 0))
    try:
        return _require_u64(value)
    except Overflow:
        raise InvalidResult(f"stored {key} out of u64 range: {value}") from None


def from_dict(data: dict, max_players: int | None = None) -> Round:
    """
    Rebuild a round from its stored form.

    Any malformed field, out-of-range amount or ledger that disagrees with
    its totals raises InvalidResult; pass max_players to bound the ledger.
    """
    try:
        bets = tuple(
            BetEntry(
                player=str(b["player"]),
                up_amount=_stored_u64(b, "up_amount"),
                down_amount=_stored_u64(b, "down_amount"),
                claimed=bool(b.get("claimed", False)),
            )
            for b in data.get("bets", [])
        )
        num_bets = int(data.get("num_bets", len(bets)))
        round_ = Round(
            round_id=int(data["round_id"]),
            start_ts=int(data.get("start_ts", 0)),
            lock_ts=int(data.get("lock_ts", 0)),
            end_ts=int(data.get("end_ts", 0)),
            start_price=int(data.get("start_price", 0)),
            price_exponent=int(data.get("price_exponent", 0)),
            end_price=int(data.get("end_price", 0)),
            total_up=_stored_u64(data, "total_up"),
            total_down=_stored_u64(data, "total_down"),
            status=parse_status(data.get("status", 0)),
            result=parse_result(data.get("result", 0)),
            bets=bets,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise InvalidResult(f"malformed round record: {e!r}") from None
    if num_bets != len(bets):
        raise InvalidResult(f"num_bets {num_bets} does not match {len(bets)} stored entries")
    violations = _integrity_violations(round_, max_players)
    if violations:
        raise InvalidResult(f"round {round_.round_id}: {', '.join(violations)}")
    return round_
