import base64
import io
import json
import unittest
import urllib.error
from unittest import mock

import oracle_client
import state_machine as sm
from errors import InsufficientVerification, OracleUnavailable, StalePrice


FEED = "ef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d"


def _accumulator_update(num_signatures: int, trailing: bytes = b"\x00\x01") -> str:
    vaa = bytes([1]) + (4).to_bytes(4, "big") + bytes([num_signatures]) + b"\xaa" * 66 * num_signatures
    raw = (
        b"PNAU"
        + bytes([1, 0])
        + bytes([len(trailing)]) + trailing
        + bytes([0])
        + len(vaa).to_bytes(2, "big") + vaa
        + b"\x00" * 8
    )
    return base64.b64encode(raw).decode("ascii")


def _payload(*, price="15012345678", expo=-8, publish_time=1_700_000_000, sigs=13, feed=FEED):
    return {
        "binary": {"encoding": "base64", "data": [_accumulator_update(sigs)]},
        "parsed": [
            {
                "id": feed,
                "price": {"price": price, "conf": "1234", "expo": expo, "publish_time": publish_time},
            }
        ],
    }


def _fake_response(payload):
    resp = mock.MagicMock()
    resp.read.return_value = json.dumps(payload).encode("utf-8")
    resp.__enter__.return_value = resp
    return resp


class CheckPriceTests(unittest.TestCase):
    def test_freshness_bound_is_inclusive(self):
        snap = sm.PriceSnapshot(100, -8, publish_time=1000, num_signatures=5)
        self.assertIs(oracle_client.check_price(snap, 1600, 600, 5), snap)
        with self.assertRaises(StalePrice):
            oracle_client.check_price(snap, 1601, 600, 5)

    def test_signature_floor(self):
        snap = sm.PriceSnapshot(100, -8, publish_time=1000, num_signatures=4)
        with self.assertRaises(InsufficientVerification):
            oracle_client.check_price(snap, 1000, 600, 5)

    def test_price_must_fit_i64(self):
        snap = sm.PriceSnapshot(sm.I64_MAX + 1, -8, publish_time=1000, num_signatures=5)
        with self.assertRaises(OracleUnavailable):
            oracle_client.check_price(snap, 1000, 600, 5)


class AccumulatorParsingTests(unittest.TestCase):
    def test_counts_vaa_signatures(self):
        self.assertEqual(oracle_client.count_vaa_signatures(_accumulator_update(13)), 13)
        self.assertEqual(oracle_client.count_vaa_signatures(_accumulator_update(3, trailing=b"")), 3)

    def test_rejects_non_accumulator_payload(self):
        with self.assertRaises(ValueError):
            oracle_client.count_vaa_signatures(base64.b64encode(b"NOPE0000").decode())

    def test_parse_latest_update(self):
        snap = oracle_client.parse_latest_update(_payload(), "0x" + FEED.upper())
        self.assertEqual(snap.price, 15012345678)
        self.assertEqual(snap.exponent, -8)
        self.assertEqual(snap.publish_time, 1_700_000_000)
        self.assertEqual(snap.confidence, 1234)
        self.assertEqual(snap.num_signatures, 13)
        self.assertEqual(snap.feed_id, FEED)

    def test_missing_feed_or_malformed_price(self):
        with self.assertRaises(OracleUnavailable):
            oracle_client.parse_latest_update(_payload(feed="00" * 32), FEED)
        with self.assertRaises(OracleUnavailable):
            oracle_client.parse_latest_update(_payload(price="not-a-number"), FEED)


class HermesOracleTests(unittest.TestCase):
    def test_latest_url(self):
        oracle = oracle_client.HermesOracle("https://hermes.example/")
        url = oracle.latest_url(FEED)
        self.assertTrue(url.startswith("https://hermes.example/v2/updates/price/latest?"))
        self.assertIn("ids%5B%5D=0x" + FEED, url)
        self.assertIn("parsed=true", url)

    def test_get_price_checks_freshness(self):
        oracle = oracle_client.HermesOracle("https://hermes.example", clock=lambda: 1_700_000_100)
        with mock.patch("oracle_client.urllib.request.urlopen", return_value=_fake_response(_payload())):
            snap = oracle.get_price(FEED, 600, 5)
        self.assertEqual(snap.price, 15012345678)

        stale = oracle_client.HermesOracle("https://hermes.example", clock=lambda: 1_700_001_000)
        with mock.patch("oracle_client.urllib.request.urlopen", return_value=_fake_response(_payload())):
            with self.assertRaises(StalePrice):
                stale.get_price(FEED, 600, 5)

    def test_http_and_network_errors_map_to_unavailable(self):
        oracle = oracle_client.HermesOracle("https://hermes.example")
        http_error = urllib.error.HTTPError(
            "https://hermes.example", 503, "Service Unavailable", {}, io.BytesIO(b"down")
        )
        with mock.patch("oracle_client.urllib.request.urlopen", side_effect=http_error):
            with self.assertRaises(OracleUnavailable):
                oracle.get_price(FEED, 600, 5)
        with mock.patch("oracle_client.urllib.request.urlopen", side_effect=urllib.error.URLError("dns")):
            with self.assertRaises(OracleUnavailable):
                oracle.get_price(FEED, 600, 5)

    def test_invalid_json_maps_to_unavailable(self):
        resp = mock.MagicMock()
        resp.read.return_value = b"<html>"
        resp.__enter__.return_value = resp
        with mock.patch("oracle_client.urllib.request.urlopen", return_value=resp):
            with self.assertRaises(OracleUnavailable):
                oracle_client.HermesOracle("https://hermes.example").get_price(FEED, 600, 5)


class FixedPriceOracleTests(unittest.TestCase):
    def test_replays_then_repeats_last(self):
        oracle = oracle_client.FixedPriceOracle([5, 6], clock=lambda: 1000.0)
        prices = [oracle.get_price(FEED, 600, 5).price for _ in range(4)]
        self.assertEqual(prices, [5, 6, 6, 6])

    def test_from_csv_and_verification(self):
        oracle = oracle_client.FixedPriceOracle.from_csv("10, 20,,30", clock=lambda: 1000.0)
        self.assertEqual(oracle.get_price(FEED, 600, 5).price, 10)
        weak = oracle_client.FixedPriceOracle([1], num_signatures=2, clock=lambda: 1000.0)
        with self.assertRaises(InsufficientVerification):
            weak.get_price(FEED, 600, 5)

    def test_requires_prices(self):
        with self.assertRaises(ValueError):
            oracle_client.FixedPriceOracle([])


if __name__ == "__main__":
    unittest.main()
