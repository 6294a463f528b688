"""
oracle_client.py -- Price oracle access using only the standard library.

Handles:
  - Freshness / verification gate shared by every price source (check_price)
  - Hermes REST client (latest signed price update for one feed)
  - Fixed-price oracle for dry runs and simulations

HERMES UPDATE FORMAT (what we read from it):
  GET /v2/updates/price/latest?ids[]=<feed>&parsed=true&encoding=base64
  -> "parsed":  [{"id", "price": {"price", "conf", "expo", "publish_time"}}]
  -> "binary":  {"data": ["<base64 accumulator update>"]}
  The accumulator update starts with "PNAU", a version pair, a trailing
  header, an update type byte, then a u16 length-prefixed VAA.  The VAA's
  sixth byte is the guardian signature count.
"""

from __future__ import annotations

import base64
import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Callable, Protocol

import config
from errors import InsufficientVerification, OracleUnavailable, StalePrice
from state_machine import I64_MAX, I64_MIN, PriceSnapshot

logger = logging.getLogger(__name__)

LATEST_PATH = "/v2/updates/price/latest"
ACCUMULATOR_MAGIC = b"PNAU"


class PriceOracle(Protocol):
    def get_price(self, feed_id: str, max_age: int, min_verification: int) -> PriceSnapshot:
        ...


def check_price(snapshot: PriceSnapshot, now: float, max_age: int, min_signatures: int) -> PriceSnapshot:
    """Fail closed on stale or under-verified prices."""
    age = float(now) - float(snapshot.publish_time)
    if age > max_age:
        raise StalePrice(f"price is {age:.0f}s old (max {max_age}s)")
    if snapshot.num_signatures < min_signatures:
        raise InsufficientVerification(
            f"{snapshot.num_signatures} signatures (need {min_signatures})"
        )
    if not I64_MIN <= snapshot.price <= I64_MAX:
        raise OracleUnavailable(f"price outside i64 range: {snapshot.price}")
    return snapshot


def _normalize_feed_id(feed_id: str) -> str:
    feed = str(feed_id or "").strip().lower()
    return feed[2:] if feed.startswith("0x") else feed


def count_vaa_signatures(update_b64: str) -> int:
    """
    Read the guardian signature count out of a base64 accumulator update.

    Raises ValueError when the payload is not an accumulator update.
    """
    raw = base64.b64decode(update_b64)
    if raw[:4] != ACCUMULATOR_MAGIC:
        raise ValueError("not an accumulator update")
    offset = 6  # magic + major + minor
    trailing_len = raw[offset]
    offset += 1 + trailing_len
    offset += 1  # update type
    vaa_len = int.from_bytes(raw[offset:offset + 2], "big")
    offset += 2
    vaa = raw[offset:offset + vaa_len]
    if len(vaa) < 6:
        raise ValueError("truncated VAA")
    # version (1) + guardian set index (4) precede the signature count.
    return vaa[5]


def parse_latest_update(payload: dict, feed_id: str) -> PriceSnapshot:
    """Build a PriceSnapshot from a Hermes latest-update response."""
    feed = _normalize_feed_id(feed_id)
    parsed = payload.get("parsed") or []
    entry = next((p for p in parsed if _normalize_feed_id(p.get("id", "")) == feed), None)
    if entry is None:
        raise OracleUnavailable(f"feed {feed[:16]}... missing from response")

    price = entry.get("price") or {}
    data = (payload.get("binary") or {}).get("data") or []
    try:
        num_signatures = count_vaa_signatures(data[0]) if data else 0
        return PriceSnapshot(
            price=int(price["price"]),
            exponent=int(price["expo"]),
            publish_time=int(price["publish_time"]),
            feed_id=feed,
            confidence=int(price.get("conf", 0)),
            num_signatures=num_signatures,
        )
    except (KeyError, TypeError, ValueError, IndexError) as e:
        raise OracleUnavailable(f"malformed price update: {e}") from e


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------

def _request(url: str, timeout: int = 10) -> dict:
    """
    GET a URL and return the parsed JSON response.

    Raises OracleUnavailable on HTTP errors, network errors or invalid JSON.
    """
    req = urllib.request.Request(url, headers={"User-Agent": "UpDownRounds/1.0"})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read().decode("utf-8")
            return json.loads(body)
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        logger.error("HTTP %d from %s: %s", e.code, url, body[:500])
        raise OracleUnavailable(f"HTTP {e.code} from price service") from e
    except urllib.error.URLError as e:
        logger.error("URL error for %s: %s", url, e.reason)
        raise OracleUnavailable(f"price service unreachable: {e.reason}") from e
    except (ValueError, OSError) as e:
        logger.error("Request failed for %s: %s", url, e)
        raise OracleUnavailable(f"price request failed: {e}") from e


class HermesOracle:
    """Latest signed price from a Hermes price service."""

    def __init__(
        self,
        base_url: str = config.HERMES_URL,
        *,
        timeout: int = config.ORACLE_TIMEOUT_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = int(timeout)
        self._clock = clock

    def latest_url(self, feed_id: str) -> str:
        query = urllib.parse.urlencode(
            {"ids[]": "0x" + _normalize_feed_id(feed_id), "parsed": "true", "encoding": "base64"}
        )
        return f"{self.base_url}{LATEST_PATH}?{query}"

    def get_price(self, feed_id: str, max_age: int, min_verification: int) -> PriceSnapshot:
        payload = _request(self.latest_url(feed_id), timeout=self.timeout)
        snapshot = parse_latest_update(payload, feed_id)
        logger.debug(
            "Price %s e%d published %d (%d sigs)",
            snapshot.price, snapshot.exponent, snapshot.publish_time, snapshot.num_signatures,
        )
        return check_price(snapshot, self._clock(), max_age, min_verification)


class FixedPriceOracle:
    """
    Replays a scripted price list; the last price repeats once exhausted.

    Prices are stamped with the current clock so they are always fresh.
    """

    def __init__(
        self,
        prices: list[int],
        *,
        exponent: int = -8,
        num_signatures: int = 13,
        feed_id: str = config.PRICE_FEED_ID,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not prices:
            raise ValueError("FixedPriceOracle needs at least one price")
        self._prices = [int(p) for p in prices]
        self._index = 0
        self.exponent = int(exponent)
        self.num_signatures = int(num_signatures)
        self.feed_id = _normalize_feed_id(feed_id)
        self._clock = clock

    @classmethod
    def from_csv(cls, raw: str, **kwargs) -> "FixedPriceOracle":
        prices = [int(p) for p in str(raw).split(",") if p.strip()]
        return cls(prices, **kwargs)

    def get_price(self, feed_id: str, max_age: int, min_verification: int) -> PriceSnapshot:
        price = self._prices[min(self._index, len(self._prices) - 1)]
        self._index += 1
        snapshot = PriceSnapshot(
            price=price,
            exponent=self.exponent,
            publish_time=int(self._clock()),
            feed_id=_normalize_feed_id(feed_id) or self.feed_id,
            num_signatures=self.num_signatures,
        )
        return check_price(snapshot, self._clock(), max_age, min_verification)
