import json
import os
import tempfile
import unittest

import round_store


class RoundStoreTests(unittest.TestCase):
    def test_save_then_load(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "nested", "state.json")
            self.assertTrue(round_store.save_snapshot(path, {"config": {"fee_bps": 100}}))
            self.assertFalse(os.path.exists(path + ".tmp"))
            loaded = round_store.load_snapshot(path)
        self.assertEqual(loaded["config"], {"fee_bps": 100})
        self.assertIn("saved_at", loaded)

    def test_missing_and_corrupt_files_start_fresh(self):
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(round_store.load_snapshot(os.path.join(tmp, "nope.json")), {})

            corrupt = os.path.join(tmp, "corrupt.json")
            with open(corrupt, "w", encoding="utf-8") as f:
                f.write("{not json")
            self.assertEqual(round_store.load_snapshot(corrupt), {})

            listing = os.path.join(tmp, "list.json")
            with open(listing, "w", encoding="utf-8") as f:
                json.dump([1, 2], f)
            self.assertEqual(round_store.load_snapshot(listing), {})

    def test_save_failure_returns_false(self):
        with tempfile.TemporaryDirectory() as tmp:
            # A directory where the file should be makes the replace fail.
            path = os.path.join(tmp, "state.json")
            os.makedirs(path)
            self.assertFalse(round_store.save_snapshot(path, {"x": 1}))


if __name__ == "__main__":
    unittest.main()
