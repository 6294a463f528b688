"""
crank.py -- Operator loop for the up/down round market.

Each cycle:
  1. open a round at the current oracle price
  2. hand it off to the accelerated environment for the betting window
  3. lock it just before the scheduled end
  4. hand it back to base and settle at the fresh oracle price

A failed cycle is logged and retried after RETRY_DELAY_SEC.  Rounds left
half-way by a failure or a restart are finished before the next one opens.
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
import time
from typing import Callable

import config
import oracle_client
import pool_stats
import state_machine as sm
from errors import MarketError
from market import Market
from migration import Environment


logger = logging.getLogger(__name__)


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def build_oracle(dry_run: bool) -> oracle_client.PriceOracle:
    if dry_run:
        logger.info("DRY RUN: replaying fixed prices %s", config.DRY_RUN_PRICES)
        return oracle_client.FixedPriceOracle.from_csv(config.DRY_RUN_PRICES)
    return oracle_client.HermesOracle(config.HERMES_URL, timeout=config.ORACLE_TIMEOUT_SEC)


def format_price(price: int, exponent: int) -> str:
    return f"{price * (10.0 ** exponent):.4f}"


def format_credits(amount: int) -> str:
    return f"{amount / 10 ** config.CREDIT_DECIMALS:.2f}"


def run_round(
    market: Market,
    operator: str,
    *,
    sleep: Callable[[float], object] = time.sleep,
    betting_window: float = config.BETTING_WINDOW_SEC,
    lock_wait: float = config.LOCK_WAIT_SEC,
    commit_wait: float = config.COMMIT_WAIT_SEC,
    on_open: Callable[[sm.Round], None] | None = None,
) -> sm.Round:
    """
    Drive one round from open to settled and return the settled record.

    on_open runs after the hand-off, while the round accepts wagers.
    """
    rnd = market.open_round(operator)
    round_id = rnd.round_id

    market.handoff_round(round_id)
    if on_open is not None:
        on_open(rnd)

    logger.debug("Round %d: betting open for %.0fs", round_id, betting_window)
    sleep(betting_window)
    market.lock_round(operator, round_id)

    sleep(lock_wait)
    market.handback_round(round_id)

    sleep(commit_wait)
    settled = market.settle_round(operator, round_id)

    logger.info(
        "Round %d settled! Start: %s | End: %s | Result: %s | Pool: %s UP / %s DOWN",
        round_id,
        format_price(settled.start_price, settled.price_exponent),
        format_price(settled.end_price, settled.price_exponent),
        settled.result.name,
        format_credits(settled.total_up),
        format_credits(settled.total_down),
    )
    return settled


def finish_unsettled(market: Market, operator: str) -> list[sm.Round]:
    """
    Bring every round that is not yet settled to Settled.

    Rounds still held by the accelerated side are handed back first; Open
    rounds are locked regardless of their deadline.
    """
    finished: list[sm.Round] = []
    for rnd in market.list_rounds():
        if rnd.status == sm.RoundStatus.SETTLED:
            continue
        if market.holder(rnd.round_id) == Environment.ACCELERATED:
            rnd = market.handback_round(rnd.round_id)
        if rnd.status == sm.RoundStatus.OPEN:
            rnd = market.lock_round(operator, rnd.round_id)
        rnd = market.settle_round(operator, rnd.round_id)
        logger.warning("Round %d recovered and settled as %s", rnd.round_id, rnd.result.name)
        finished.append(rnd)
    return finished


class CrankRuntime:
    def __init__(
        self,
        market: Market,
        operator: str,
        *,
        state_file: str = config.STATE_FILE,
        retry_delay: float = config.RETRY_DELAY_SEC,
    ) -> None:
        self.market = market
        self.operator = operator
        self.state_file = state_file
        self.retry_delay = float(retry_delay)

        self.running = True
        self.initialized = False
        self.stop_reason = ""
        self.rounds_settled = 0
        self.consecutive_errors = 0
        self._stop = threading.Event()
        self._needs_recovery = True

    # ------------------ Lifecycle ------------------

    def initialize(self, fee_bps: int) -> None:
        if self.market.load(self.state_file):
            logger.info("Resumed from %s", self.state_file)
        if self.market.config is None:
            self.market.init_config(self.operator, fee_bps)
        elif self.market.config.fee_bps != fee_bps:
            logger.warning(
                "Stored fee %d bps differs from requested %d bps; keeping stored value",
                self.market.config.fee_bps, fee_bps,
            )
        self.initialized = True

    def stop(self, reason: str) -> None:
        # Called from signal handlers: flags only, no locks.
        self.running = False
        self.stop_reason = reason
        self._stop.set()

    def shutdown(self, reason: str) -> None:
        self.stop(reason)
        # Never overwrite a state file that failed to load.
        if self.initialized:
            self.market.save(self.state_file)
        logger.info("Crank stopped: %s", reason)

    def sleep(self, seconds: float) -> None:
        """Interruptible sleep; returns early once stop() is called."""
        self._stop.wait(max(0.0, float(seconds)))

    # ------------------ Cycle ------------------

    def run_once(self) -> sm.Round:
        if self._needs_recovery:
            finish_unsettled(self.market, self.operator)
            self._needs_recovery = False
        try:
            settled = run_round(self.market, self.operator, sleep=self.sleep)
        except Exception:
            self._needs_recovery = True
            raise
        finally:
            self.market.save(self.state_file)

        self.rounds_settled += 1
        self.consecutive_errors = 0
        self._log_summary()
        return settled

    def run_forever(self, *, once: bool = False, max_rounds: int = 0) -> None:
        while self.running:
            try:
                self.run_once()
            except MarketError as e:
                self.consecutive_errors += 1
                logger.error(
                    "Round failed [%s]%s: %s -- retrying in %.0fs",
                    e.code, " (retryable)" if e.retryable else "", e, self.retry_delay,
                )
                if not once:
                    self.sleep(self.retry_delay)
            except Exception as e:
                self.consecutive_errors += 1
                logger.exception("Crank loop error: %s", e)
                if not once:
                    self.sleep(self.retry_delay)

            if once or (max_rounds and self.rounds_settled >= max_rounds):
                break

    def _log_summary(self) -> None:
        game = self.market.config
        if game is None:
            return
        recent = self.market.list_rounds()[-max(1, config.STATS_WINDOW):]
        summary = pool_stats.summarize_rounds(recent, game.fee_bps)
        logger.info("Last %s", pool_stats.format_summary(summary, config.CREDIT_DECIMALS))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the up/down round market crank.")
    parser.add_argument("--once", action="store_true", help="Run a single round and exit")
    parser.add_argument(
        "--rounds",
        type=int,
        default=0,
        help="Stop after this many settled rounds (default: run until signalled)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=config.DRY_RUN,
        help="Use scripted prices instead of the live oracle",
    )
    parser.add_argument(
        "--fee-bps",
        type=int,
        default=config.FEE_BPS,
        help=f"Protocol fee for a fresh config (default: {config.FEE_BPS})",
    )
    parser.add_argument(
        "--state-file",
        type=str,
        default=config.STATE_FILE,
        help=f"Snapshot path (default: {config.STATE_FILE})",
    )
    return parser


def run(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    if args.rounds < 0:
        raise SystemExit("--rounds must be >= 0")

    setup_logging()
    config.print_banner()

    market = Market(build_oracle(args.dry_run))
    rt = CrankRuntime(market, config.OPERATOR_ID, state_file=args.state_file)

    def _handle_signal(signum, _frame):
        logger.info("Signal %s received", signum)
        rt.stop(f"signal {signum}")

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGBREAK"):
        signal.signal(signal.SIGBREAK, _handle_signal)

    try:
        try:
            rt.initialize(args.fee_bps)
        except MarketError as e:
            logger.error("Cannot resume from %s [%s]: %s", args.state_file, e.code, e)
            raise SystemExit(1) from e
        logger.info("Entering crank loop (round every %ss)", config.ROUND_DURATION_SEC)
        rt.run_forever(once=args.once, max_rounds=args.rounds)
    finally:
        rt.shutdown(rt.stop_reason or "process exit")


if __name__ == "__main__":
    run()
