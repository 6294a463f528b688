import unittest

import errors


class ErrorTaxonomyTests(unittest.TestCase):
    def test_payload_shape(self):
        payload = errors.error_payload(errors.StalePrice("price is 900s old"))
        self.assertEqual(
            payload,
            {
                "ok": False,
                "code": "StalePrice",
                "kind": "oracle",
                "retryable": True,
                "message": "price is 900s old",
            },
        )

    def test_default_messages_and_retry_flags(self):
        self.assertEqual(str(errors.RoundFull()), "Round is full")
        self.assertFalse(errors.AlreadyClaimed.retryable)
        self.assertTrue(errors.BettingClosed.retryable)
        self.assertTrue(errors.MigrationError.retryable)

    def test_codes_are_unique(self):
        classes = [
            c for c in vars(errors).values()
            if isinstance(c, type) and issubclass(c, errors.MarketError) and c is not errors.MarketError
        ]
        codes = [c.code for c in classes]
        self.assertEqual(len(codes), len(set(codes)))
        for cls in classes:
            self.assertEqual(cls.code, cls.__name__)


if __name__ == "__main__":
    unittest.main()
