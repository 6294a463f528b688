import unittest

from addressing import participant_address
from errors import AlreadyExists, InsufficientCredits, Overflow, UnknownRecord
from participant_ledger import ParticipantLedger
from state_machine import U64_MAX


class ParticipantLedgerTests(unittest.TestCase):
    def test_register_grants_starting_credits_once(self):
        ledger = ParticipantLedger(starting_credits=1000)
        rec = ledger.register("alice", timestamp=10.0)
        self.assertEqual(rec.credits, 1000)
        self.assertEqual(rec.address, participant_address("alice"))
        self.assertTrue(ledger.has("alice"))
        with self.assertRaises(AlreadyExists):
            ledger.register("alice")
        self.assertEqual(ledger.balance("alice"), 1000)

    def test_debit_and_credit(self):
        ledger = ParticipantLedger(starting_credits=100)
        ledger.register("alice")
        self.assertEqual(ledger.debit("alice", 40, {"round_id": 0}), 60)
        self.assertEqual(ledger.credit("alice", 15), 75)
        with self.assertRaises(InsufficientCredits):
            ledger.debit("alice", 76)
        self.assertEqual(ledger.balance("alice"), 75)

    def test_credit_overflow_leaves_balance(self):
        ledger = ParticipantLedger(starting_credits=U64_MAX)
        ledger.register("alice")
        with self.assertRaises(Overflow):
            ledger.credit("alice", 1)
        self.assertEqual(ledger.balance("alice"), U64_MAX)

    def test_unknown_owner(self):
        ledger = ParticipantLedger(starting_credits=100)
        with self.assertRaises(UnknownRecord):
            ledger.balance("ghost")
        with self.assertRaises(UnknownRecord):
            ledger.credit("ghost", 1)
        self.assertIsNone(ledger.get("ghost"))

    def test_journal_records_every_mutation(self):
        ledger = ParticipantLedger(starting_credits=100)
        ledger.register("alice", timestamp=1.0)
        ledger.register("bob", timestamp=2.0)
        ledger.debit("alice", 10, {"round_id": 3}, timestamp=3.0)
        ledger.credit("alice", 19, {"round_id": 3}, timestamp=4.0)
        rows = ledger.get_journal("alice")
        self.assertEqual([r["event_type"] for r in rows], ["registered", "debited", "credited"])
        self.assertEqual(rows[1]["details"], {"round_id": 3})
        self.assertEqual([r["journal_id"] for r in ledger.get_journal()], [1, 2, 3, 4])

    def test_journal_is_trimmed(self):
        ledger = ParticipantLedger(starting_credits=10_000, journal_local_limit=50)
        ledger.register("alice")
        for _ in range(80):
            ledger.debit("alice", 1)
        rows = ledger.get_journal()
        self.assertEqual(len(rows), 50)
        self.assertEqual(rows[-1]["journal_id"], 81)

    def test_snapshot_restore_roundtrip(self):
        ledger = ParticipantLedger(starting_credits=100)
        ledger.register("alice", timestamp=1.0)
        ledger.register("bob", timestamp=2.0)
        ledger.debit("bob", 30)
        snap = ledger.snapshot_state()

        restored = ParticipantLedger(starting_credits=1)
        restored.restore_state(snap)
        self.assertEqual(restored.starting_credits, 100)
        self.assertEqual(restored.owners(), ["alice", "bob"])
        self.assertEqual(restored.balance("bob"), 70)
        self.assertEqual(restored.total_credits(), 170)
        restored.credit("bob", 1)
        self.assertEqual(restored.get_journal()[-1]["journal_id"], 4)

    def test_restore_skips_malformed_rows(self):
        ledger = ParticipantLedger(starting_credits=100)
        ledger.restore_state(
            {
                "participants": [{"owner": "alice", "credits": "12"}, {"credits": 5}, "junk"],
                "journal_recent": [{"event_type": "bogus"}, {"event_type": "credited", "owner": "alice", "amount": 3}],
                "journal_id_counter": "x",
            }
        )
        self.assertEqual(ledger.owners(), ["alice"])
        self.assertEqual(ledger.balance("alice"), 12)
        self.assertEqual(len(ledger.get_journal()), 1)


if __name__ == "__main__":
    unittest.main()
