#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import random
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import crank
import oracle_client
import payout
import pool_stats
import state_machine as sm
from errors import MarketError
from market import Market


OPERATOR = "operator"


class SimClock:
    """Manual clock; run_round's sleeps advance it instead of blocking."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += max(0.0, float(seconds))


def _price_path(rng: random.Random, rounds: int, start: int, step: int) -> list[int]:
    # Two reads per round (open + settle); a zero step produces ties.
    prices = [start]
    for _ in range(rounds * 2):
        prices.append(max(1, prices[-1] + rng.choice((-step, 0, step))))
    return prices


def simulate(
    rounds: int,
    players: int,
    fee_bps: int,
    seed: int,
    *,
    max_stake: int = 50_000_000_000,
) -> dict:
    rng = random.Random(seed)
    clock = SimClock()
    oracle = oracle_client.FixedPriceOracle(
        _price_path(rng, rounds, 15_000_000_000, 5_000_000), clock=clock
    )
    market = Market(oracle, clock=clock)
    market.init_config(OPERATOR, fee_bps)

    names = [f"player-{i}" for i in range(players)]
    for name in names:
        if not market.is_registered(name):
            market.register_participant(name)
    minted = market.ledger.total_credits()

    rejected: dict[str, int] = {}

    def _place_bets(rnd: sm.Round) -> None:
        for name in rng.sample(names, k=rng.randint(0, len(names))):
            try:
                market.place_wager(name, rnd.round_id, rng.choice(("up", "down")), rng.randint(1, max_stake))
            except MarketError as e:
                rejected[e.code] = rejected.get(e.code, 0) + 1

    violations: list[str] = []
    retained = 0
    for _ in range(rounds):
        settled = crank.run_round(
            market,
            OPERATOR,
            sleep=clock.advance,
            betting_window=market.cfg.duration_sec - market.cfg.lock_before_end_sec,
            on_open=_place_bets,
        )
        for bet in settled.bets:
            market.claim(bet.player, settled.round_id)
        final = market.get_round(settled.round_id)
        violations.extend(f"round {final.round_id}: {v}" for v in sm.check_invariants(final, market.cfg))
        retained += payout.settlement_totals(final, fee_bps)["retained"]

    total = market.ledger.total_credits()
    if total + retained != minted:
        violations.append(f"credits not conserved: {total} + {retained} != {minted}")

    summary = pool_stats.summarize_rounds(market.list_rounds(), fee_bps)
    return {
        "rounds": rounds,
        "players": players,
        "fee_bps": fee_bps,
        "seed": seed,
        "summary": summary.to_status_dict(),
        "rejected_wagers": rejected,
        "journal_events": {name: len(market.history(name)) for name in names},
        "violations": violations,
    }


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Simulate market rounds with random bettors on a simulated clock."
    )
    parser.add_argument("--rounds", type=int, default=100, help="Rounds to simulate (default: 100)")
    parser.add_argument(
        "--players",
        type=int,
        default=10,
        help="Registered bettors; more than the round capacity exercises RoundFull (default: 10)",
    )
    parser.add_argument("--fee-bps", type=int, default=100, help="Protocol fee (default: 100)")
    parser.add_argument("--seed", type=int, default=7, help="RNG seed (default: 7)")
    parser.add_argument("--verbose", action="store_true", help="Show market logs")
    args = parser.parse_args()

    if args.rounds <= 0:
        raise SystemExit("--rounds must be > 0")
    if args.players < 0:
        raise SystemExit("--players must be >= 0")

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.ERROR,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    result = simulate(args.rounds, args.players, args.fee_bps, args.seed)
    print(json.dumps(result, indent=2, sort_keys=True))
    if result["violations"]:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
