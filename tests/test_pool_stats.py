import unittest

import pool_stats
import state_machine as sm


def _round(round_id, up, down, result, status=sm.RoundStatus.SETTLED):
    bets = []
    if up:
        bets.append(sm.BetEntry(f"u{round_id}", up_amount=up))
    if down:
        bets.append(sm.BetEntry(f"d{round_id}", down_amount=down))
    return sm.Round(
        round_id=round_id,
        start_ts=0,
        lock_ts=115,
        end_ts=120,
        start_price=100,
        price_exponent=-8,
        end_price=100,
        total_up=up,
        total_down=down,
        status=status,
        result=result,
        bets=tuple(bets),
    )


class PoolStatsTests(unittest.TestCase):
    def test_empty_input(self):
        summary = pool_stats.summarize_rounds([], 100)
        self.assertEqual(summary.rounds, 0)
        self.assertEqual(summary.to_status_dict()["mean_pool"], 0.0)

    def test_summary_over_settled_rounds(self):
        rounds = [
            _round(0, 300, 100, sm.RoundResult.UP),
            _round(1, 0, 200, sm.RoundResult.DOWN),
            _round(2, 0, 0, sm.RoundResult.TIE),
            _round(3, 50, 50, sm.RoundResult.PENDING, status=sm.RoundStatus.LOCKED),
        ]
        summary = pool_stats.summarize_rounds(rounds, 1_000)
        self.assertEqual(summary.rounds, 3)
        self.assertEqual((summary.up_wins, summary.down_wins, summary.ties), (1, 1, 1))
        self.assertEqual(summary.empty_rounds, 1)
        self.assertAlmostEqual(summary.mean_pool, 200.0)
        self.assertAlmostEqual(summary.median_pool, 200.0)
        self.assertEqual(summary.max_pool, 400)
        # Empty rounds are left out of the share average.
        self.assertAlmostEqual(summary.mean_up_share, (0.75 + 0.0) / 2)
        self.assertAlmostEqual(summary.mean_participants, 1.0)
        # Fee 10%: 40 of 400 and 20 of 200 retained.
        self.assertEqual(summary.retained_total, 60)

    def test_format_summary(self):
        summary = pool_stats.summarize_rounds([_round(0, 3_000_000_000, 1_000_000_000, sm.RoundResult.UP)], 0)
        line = pool_stats.format_summary(summary)
        self.assertIn("1 rounds", line)
        self.assertIn("UP 1 / DOWN 0 / TIE 0", line)
        self.assertIn("mean pool 4.00", line)
        self.assertIn("up share 75.0%", line)


if __name__ == "__main__":
    unittest.main()
