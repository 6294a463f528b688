"""
market.py -- Command surface of the up/down round market.

Runtime shell around the pure reducers:
- operator commands check the caller against the stored authority
- every command builds its new records first and commits them only once
  every check has passed, so a failure leaves nothing half-applied
- writes to one round serialize on that round's lock; opening serializes
  on the config lock; ledger writes serialize on the ledger lock
- the base round table and custody move together under the rounds lock,
  so a snapshot never sees a round on both sides or on neither
- rounds are read and written through whichever environment currently
  holds them (see migration.py); the reducers never know which one that is
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Any, Callable

import config
import oracle_client
import payout
import round_store
import state_machine as sm
from addressing import round_address
from errors import AlreadyExists, MarketError, MigrationError, RoundNotLocked, Unauthorized, UnknownRecord
from migration import Environment, RoundCustody
from participant_ledger import ParticipantLedger

logger = logging.getLogger(__name__)


def round_config_from_env() -> sm.RoundConfig:
    return sm.RoundConfig(
        duration_sec=config.ROUND_DURATION_SEC,
        lock_before_end_sec=config.LOCK_BEFORE_END_SEC,
        max_players=config.MAX_PLAYERS,
        max_price_age_sec=config.MAX_PRICE_AGE_SEC,
        min_signatures=config.MIN_VERIFICATION_SIGNATURES,
    )


@contextmanager
def _command(name: str, **context: Any):
    try:
        yield
    except MarketError as e:
        details = " ".join(f"{k}={v}" for k, v in context.items())
        logger.warning("%s rejected [%s] %s: %s", name, e.code, details, e)
        raise


class Market:
    def __init__(
        self,
        oracle: oracle_client.PriceOracle,
        *,
        cfg: sm.RoundConfig | None = None,
        starting_credits: int = config.STARTING_CREDITS,
        feed_id: str = config.PRICE_FEED_ID,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.oracle = oracle
        self.cfg = cfg or round_config_from_env()
        self.feed_id = feed_id
        self.clock = clock

        self.config: sm.GameConfig | None = None
        self.ledger = ParticipantLedger(starting_credits=starting_credits)
        self.custody = RoundCustody()
        # Base-environment copies; rounds handed off live in custody instead.
        self._rounds: dict[str, sm.Round] = {}

        self._config_lock = threading.Lock()
        # Innermost lock; guards _rounds together with custody moves.
        self._rounds_lock = threading.Lock()
        self._ledger_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._round_locks: dict[str, threading.Lock] = {}

    # ------------------ Config & participants ------------------

    def init_config(self, caller: str, fee_bps: int) -> sm.GameConfig:
        with _command("init_config", caller=caller, fee_bps=fee_bps), self._config_lock:
            if self.config is not None:
                raise AlreadyExists("config already initialized")
            self.config = sm.init_config(caller, fee_bps)
        logger.info("Config initialized: authority=%s fee=%d bps", caller, fee_bps)
        return self.config

    def register_participant(self, owner: str) -> str:
        with _command("register_participant", owner=owner), self._ledger_lock:
            rec = self.ledger.register(owner, timestamp=self.clock())
        logger.info("Registered %s with %d credits", owner, rec.credits)
        return rec.address

    # ------------------ Round lifecycle ------------------

    def open_round(self, caller: str) -> sm.Round:
        with _command("open_round", caller=caller), self._config_lock:
            game = self._require_authority(caller)
            price = self._read_price()
            next_game, rnd = sm.open_round(game, price, self.clock(), self.cfg)
            address = round_address(rnd.round_id)
            with self._rounds_lock:
                if address in self._rounds:
                    raise AlreadyExists(f"round {rnd.round_id} already exists")
                self._rounds[address] = rnd
                self.custody.track(address)
            self.config = next_game
        logger.info(
            "Round %d opened at %d (price %d e%d, lock %d, end %d)",
            rnd.round_id, rnd.start_ts, rnd.start_price, rnd.price_exponent, rnd.lock_ts, rnd.end_ts,
        )
        return rnd

    def handoff_round(self, round_id: int) -> None:
        address = round_address(round_id)
        with _command("handoff_round", round_id=round_id), self._round_lock(address):
            with self._rounds_lock:
                rnd = self._rounds.get(address)
                if rnd is None:
                    raise UnknownRecord(f"round {round_id} is not held by base")
                self.custody.handoff(address, rnd)
                del self._rounds[address]

    def handback_round(self, round_id: int) -> sm.Round:
        address = round_address(round_id)
        with _command("handback_round", round_id=round_id), self._round_lock(address):
            with self._rounds_lock:
                rnd = self.custody.handback(address)
                self._rounds[address] = rnd
        return rnd

    def place_wager(self, player: str, round_id: int, direction, amount: int) -> sm.Round:
        address = round_address(round_id)
        with _command("place_wager", player=player, round_id=round_id, amount=amount), \
                self._round_lock(address), self._ledger_lock:
            rnd = self._load_round(address)
            balance = self.ledger.balance(player)
            side = sm.parse_direction(direction)
            now = self.clock()
            updated = sm.transition(rnd, sm.PlaceWager(player, side, amount, balance, now), self.cfg)
            # Balance was checked under the ledger lock, so the debit cannot fail.
            self.ledger.debit(
                player, amount, {"round_id": round_id, "direction": side.name.lower()}, timestamp=now,
            )
            self._store_round(address, updated)
        logger.info("Wager: %s %s %d on round %d", player, side.name, amount, round_id)
        return updated

    def lock_round(self, caller: str, round_id: int) -> sm.Round:
        address = round_address(round_id)
        with _command("lock_round", caller=caller, round_id=round_id), self._round_lock(address):
            self._require_authority(caller)
            updated = sm.transition(self._load_round(address), sm.LockRound(self.clock()), self.cfg)
            self._store_round(address, updated)
        logger.info(
            "Round %d locked: %d UP / %d DOWN from %d players",
            round_id, updated.total_up, updated.total_down, updated.num_bets,
        )
        return updated

    def settle_round(self, caller: str, round_id: int) -> sm.Round:
        address = round_address(round_id)
        with _command("settle_round", caller=caller, round_id=round_id), self._round_lock(address):
            self._require_authority(caller)
            rnd = self._load_round(address)
            if rnd.status != sm.RoundStatus.LOCKED:
                # Fail before spending an oracle read.
                raise RoundNotLocked()
            price = self._read_price()
            updated = sm.transition(rnd, sm.SettleRound(price, self.clock()), self.cfg)
            self._store_round(address, updated)
        logger.info(
            "Round %d settled: start %d end %d -> %s",
            round_id, updated.start_price, updated.end_price, updated.result.name,
        )
        return updated

    # ------------------ Claims ------------------

    def claim(self, player: str, round_id: int) -> int:
        address = round_address(round_id)
        with _command("claim", player=player, round_id=round_id), \
                self._round_lock(address), self._ledger_lock:
            game = self._require_config()
            rnd = self._load_round(address)
            balance = self.ledger.balance(player)
            outcome = payout.claim(rnd, player, game.fee_bps)
            sm.checked_add(balance, outcome.payout)
            self.ledger.credit(
                player,
                outcome.payout,
                {"round_id": round_id, "result": outcome.result.name.lower()},
                timestamp=self.clock(),
            )
            self._store_round(address, outcome.round)
        logger.info("Claim: %s received %d from round %d (%s)", player, outcome.payout, round_id, outcome.result.name)
        return outcome.payout

    # ------------------ Queries ------------------

    def get_config(self) -> sm.GameConfig:
        return self._require_config()

    def get_round(self, round_id: int) -> sm.Round:
        address = round_address(round_id)
        with self._round_lock(address):
            return self._load_round(address)

    def list_rounds(self) -> list[sm.Round]:
        game = self.config
        if game is None:
            return []
        rounds: list[sm.Round] = []
        for round_id in range(game.round_count):
            try:
                rounds.append(self.get_round(round_id))
            except UnknownRecord:
                continue
        return rounds

    def holder(self, round_id: int) -> Environment:
        return self.custody.holder(round_address(round_id))

    def is_registered(self, owner: str) -> bool:
        with self._ledger_lock:
            return self.ledger.has(owner)

    def balance(self, owner: str) -> int:
        with self._ledger_lock:
            return self.ledger.balance(owner)

    def history(self, owner: str) -> list[dict[str, Any]]:
        """Journal rows for one participant, oldest first."""
        with self._ledger_lock:
            if not self.ledger.has(owner):
                raise UnknownRecord(f"participant {owner} is not registered")
            return self.ledger.get_journal(owner)

    def preview_payout(self, player: str, round_id: int) -> int:
        return payout.preview_payout(self.get_round(round_id), player, self._require_config().fee_bps)

    def pool_multipliers(self, round_id: int) -> dict[str, float]:
        return payout.pool_multipliers(self.get_round(round_id), self._require_config().fee_bps)

    # ------------------ Snapshot ------------------

    def snapshot(self) -> dict[str, Any]:
        with self._config_lock, self._ledger_lock, self._rounds_lock:
            return {
                "config": sm.config_to_dict(self.config) if self.config is not None else None,
                "rounds": {addr: sm.to_dict(r) for addr, r in self._rounds.items()},
                "ledger": self.ledger.snapshot_state(),
                "custody": self.custody.snapshot_state(),
            }

    def restore(self, payload: dict[str, Any]) -> None:
        """
        Replace all state with a snapshot.

        Validates every record before touching anything; a bad payload
        raises InvalidResult or MigrationError and leaves state as it was.
        """
        if not payload:
            return
        raw_config = payload.get("config")
        game = sm.config_from_dict(raw_config) if raw_config else None
        max_players = self.cfg.max_players
        rounds = {
            str(addr): sm.from_dict(raw, max_players)
            for addr, raw in (payload.get("rounds") or {}).items()
        }

        custody = RoundCustody()
        custody.restore_state(payload.get("custody") or {})
        for raw in custody.snapshot_state()["accelerated"].values():
            sm.from_dict(raw, max_players)
        for addr in rounds:
            custody.track(addr)
            if custody.holder(addr) != Environment.BASE:
                raise MigrationError(f"round {addr[:12]} is stored by both environments")

        with self._config_lock, self._ledger_lock, self._rounds_lock:
            self.config = game
            self._rounds = rounds
            self.ledger.restore_state(payload.get("ledger") or {})
            self.custody = custody
        logger.info(
            "Restored snapshot: %d rounds, %d participants",
            len(rounds), len(self.ledger.owners()),
        )

    def save(self, path: str) -> bool:
        return round_store.save_snapshot(path, self.snapshot())

    def load(self, path: str) -> bool:
        payload = round_store.load_snapshot(path)
        self.restore(payload)
        return bool(payload)

    # ------------------ Internals ------------------

    def _require_config(self) -> sm.GameConfig:
        if self.config is None:
            raise UnknownRecord("config not initialized")
        return self.config

    def _require_authority(self, caller: str) -> sm.GameConfig:
        game = self._require_config()
        if caller != game.authority:
            raise Unauthorized(f"{caller} is not the authority")
        return game

    def _read_price(self) -> sm.PriceSnapshot:
        snapshot = self.oracle.get_price(self.feed_id, self.cfg.max_price_age_sec, self.cfg.min_signatures)
        return oracle_client.check_price(
            snapshot, self.clock(), self.cfg.max_price_age_sec, self.cfg.min_signatures
        )

    def _round_lock(self, address: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._round_locks.get(address)
            if lock is None:
                lock = threading.Lock()
                self._round_locks[address] = lock
            return lock

    def _load_round(self, address: str) -> sm.Round:
        with self._rounds_lock:
            rnd = self._rounds.get(address)
            if rnd is not None:
                return rnd
            try:
                env = self.custody.holder(address)
            except UnknownRecord:
                raise UnknownRecord(f"round {address[:12]} not found") from None
            if env == Environment.ACCELERATED:
                return self.custody.fetch(address)
        raise UnknownRecord(f"round {address[:12]} not found")

    def _store_round(self, address: str, rnd: sm.Round) -> None:
        with self._rounds_lock:
            if address in self._rounds:
                self._rounds[address] = rnd
                return
            self.custody.update(address, rnd)
