import unittest

import state_machine as sm
from addressing import round_address
from errors import MigrationError, UnknownRecord
from migration import Environment, RoundCustody


def _round(round_id: int = 0) -> sm.Round:
    return sm.Round(
        round_id=round_id,
        start_ts=1000,
        lock_ts=1115,
        end_ts=1120,
        start_price=100,
        price_exponent=-8,
        total_up=5,
        bets=(sm.BetEntry("alice", up_amount=5),),
    )


class RoundCustodyTests(unittest.TestCase):
    def setUp(self):
        self.custody = RoundCustody()
        self.addr = round_address(0)
        self.custody.track(self.addr)

    def test_new_rounds_are_held_by_base(self):
        self.assertEqual(self.custody.holder(self.addr), Environment.BASE)
        with self.assertRaises(UnknownRecord):
            self.custody.holder(round_address(1))

    def test_round_trip_preserves_the_record(self):
        rnd = _round()
        self.custody.handoff(self.addr, rnd)
        self.assertEqual(self.custody.holder(self.addr), Environment.ACCELERATED)
        self.assertEqual(self.custody.fetch(self.addr), rnd)
        back = self.custody.handback(self.addr)
        self.assertEqual(back, rnd)
        self.assertEqual(self.custody.holder(self.addr), Environment.BASE)

    def test_updates_land_on_accelerated_copy(self):
        rnd = _round()
        self.custody.handoff(self.addr, rnd)
        locked = sm.lock_round(rnd)
        self.custody.update(self.addr, locked)
        self.assertEqual(self.custody.handback(self.addr).status, sm.RoundStatus.LOCKED)

    def test_wrong_environment_is_rejected(self):
        rnd = _round()
        with self.assertRaises(MigrationError):
            self.custody.handback(self.addr)
        with self.assertRaises(MigrationError):
            self.custody.update(self.addr, rnd)
        with self.assertRaises(MigrationError):
            self.custody.fetch(self.addr)
        self.custody.handoff(self.addr, rnd)
        with self.assertRaises(MigrationError):
            self.custody.handoff(self.addr, rnd)

    def test_fetched_copy_is_independent(self):
        rnd = _round()
        self.custody.handoff(self.addr, rnd)
        first = self.custody.fetch(self.addr)
        self.custody.update(self.addr, sm.lock_round(first))
        self.assertEqual(first.status, sm.RoundStatus.OPEN)

    def test_snapshot_restore(self):
        self.custody.handoff(self.addr, _round())
        self.custody.track(round_address(1))
        snap = self.custody.snapshot_state()

        restored = RoundCustody()
        restored.restore_state(snap)
        self.assertEqual(restored.holder(self.addr), Environment.ACCELERATED)
        self.assertEqual(restored.holder(round_address(1)), Environment.BASE)
        self.assertEqual(restored.fetch(self.addr), _round())

    def test_restore_rejects_unknown_environment(self):
        with self.assertRaises(MigrationError):
            RoundCustody().restore_state({"holders": {self.addr: "sidechain"}})

    def test_restore_rejects_inconsistent_custody(self):
        copy = sm.to_dict(_round())
        for payload in (
            {"holders": {self.addr: "accelerated"}, "accelerated": {self.addr: "junk"}},
            {"holders": {self.addr: "base"}, "accelerated": {self.addr: copy}},
            {"holders": {self.addr: "accelerated"}, "accelerated": {}},
        ):
            custody = RoundCustody()
            with self.assertRaises(MigrationError):
                custody.restore_state(payload)
            with self.assertRaises(UnknownRecord):
                custody.holder(self.addr)


if __name__ == "__main__":
    unittest.main()
