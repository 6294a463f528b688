"""
pool_stats.py

Summary statistics over settled rounds for the operator log and the
simulation tool. numpy for the float aggregates; protocol retention stays
integer because it comes straight from payout.settlement_totals().
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

import numpy as np

import payout
import state_machine as sm


@dataclass
class PoolSummary:
    rounds: int = 0
    up_wins: int = 0
    down_wins: int = 0
    ties: int = 0
    empty_rounds: int = 0
    mean_pool: float = 0.0
    median_pool: float = 0.0
    max_pool: int = 0
    mean_up_share: float = 0.0
    mean_participants: float = 0.0
    retained_total: int = 0

    def to_status_dict(self) -> dict[str, Any]:
        return {
            "rounds": int(self.rounds),
            "up_wins": int(self.up_wins),
            "down_wins": int(self.down_wins),
            "ties": int(self.ties),
            "empty_rounds": int(self.empty_rounds),
            "mean_pool": round(float(self.mean_pool), 6),
            "median_pool": round(float(self.median_pool), 6),
            "max_pool": int(self.max_pool),
            "mean_up_share": round(float(self.mean_up_share), 6),
            "mean_participants": round(float(self.mean_participants), 6),
            "retained_total": int(self.retained_total),
        }


def summarize_rounds(rounds: Iterable[sm.Round], fee_bps: int) -> PoolSummary:
    settled = [r for r in rounds if r.status == sm.RoundStatus.SETTLED]
    if not settled:
        return PoolSummary()

    up = np.asarray([r.total_up for r in settled], dtype=float)
    down = np.asarray([r.total_down for r in settled], dtype=float)
    pool = up + down
    results = np.asarray([int(r.result) for r in settled], dtype=int)
    counts = np.bincount(results, minlength=len(sm.RoundResult))
    players = np.asarray([r.num_bets for r in settled], dtype=float)

    funded = pool > 0
    up_share = np.divide(up, pool, out=np.zeros_like(up), where=funded)

    retained = 0
    for r in settled:
        retained += payout.settlement_totals(r, fee_bps)["retained"]

    return PoolSummary(
        rounds=len(settled),
        up_wins=int(counts[sm.RoundResult.UP]),
        down_wins=int(counts[sm.RoundResult.DOWN]),
        ties=int(counts[sm.RoundResult.TIE]),
        empty_rounds=int(np.count_nonzero(~funded)),
        mean_pool=float(np.mean(pool)),
        median_pool=float(np.median(pool)),
        max_pool=max(r.total_pool for r in settled),
        mean_up_share=float(np.mean(up_share[funded])) if funded.any() else 0.0,
        mean_participants=float(np.mean(players)),
        retained_total=retained,
    )


def format_summary(summary: PoolSummary, decimals: int = 9) -> str:
    scale = float(10 ** int(decimals))
    return (
        f"{summary.rounds} rounds | UP {summary.up_wins} / DOWN {summary.down_wins} / TIE {summary.ties}"
        f" | mean pool {summary.mean_pool / scale:.2f} (median {summary.median_pool / scale:.2f})"
        f" | up share {summary.mean_up_share * 100:.1f}%"
        f" | players {summary.mean_participants:.1f}"
        f" | retained {summary.retained_total / scale:.4f}"
    )
