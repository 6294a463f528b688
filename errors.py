"""
errors.py -- Error taxonomy for the round market.

Every command either succeeds or raises exactly one MarketError subclass and
leaves no partial state behind.  Each error carries:
  - code:      stable identifier surfaced verbatim to clients
  - kind:      category (configuration, state, timing, validation, ...)
  - retryable: True when the same command may succeed later unchanged
               (betting window, oracle staleness), False when it never will
"""

from __future__ import annotations

from typing import Any


class MarketError(Exception):
    code = "MarketError"
    kind = "internal"
    retryable = False
    default_message = "market error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


# --------------------------- Configuration ---------------------------


class InvalidFee(MarketError):
    code = "InvalidFee"
    kind = "configuration"
    default_message = "Invalid fee basis points"


# --------------------------- State transitions ---------------------------


class RoundNotOpen(MarketError):
    code = "RoundNotOpen"
    kind = "state"
    default_message = "Round is not open for betting"


class RoundNotLocked(MarketError):
    code = "RoundNotLocked"
    kind = "state"
    default_message = "Round is not locked"


class RoundNotSettled(MarketError):
    code = "RoundNotSettled"
    kind = "state"
    default_message = "Round is not settled"


# --------------------------- Timing ---------------------------


class BettingClosed(MarketError):
    code = "BettingClosed"
    kind = "timing"
    retryable = True
    default_message = "Betting window has closed"


# --------------------------- Validation ---------------------------


class InvalidAmount(MarketError):
    code = "InvalidAmount"
    kind = "validation"
    default_message = "Invalid bet amount"


class InvalidDirection(MarketError):
    code = "InvalidDirection"
    kind = "validation"
    default_message = "Invalid bet direction"


class InsufficientCredits(MarketError):
    code = "InsufficientCredits"
    kind = "validation"
    default_message = "Insufficient credits"


class RoundFull(MarketError):
    code = "RoundFull"
    kind = "validation"
    default_message = "Round is full"


# --------------------------- Arithmetic ---------------------------


class Overflow(MarketError):
    code = "Overflow"
    kind = "arithmetic"
    default_message = "Arithmetic overflow"


# --------------------------- Lookup / replay ---------------------------


class NoBetFound(MarketError):
    code = "NoBetFound"
    kind = "lookup"
    default_message = "No bet found for this player"


class AlreadyClaimed(MarketError):
    code = "AlreadyClaimed"
    kind = "replay"
    default_message = "Already claimed"


class UnknownRecord(MarketError):
    code = "UnknownRecord"
    kind = "lookup"
    default_message = "Record not found"


class AlreadyExists(MarketError):
    code = "AlreadyExists"
    kind = "validation"
    default_message = "Record already exists"


class Unauthorized(MarketError):
    code = "Unauthorized"
    kind = "access"
    default_message = "Caller is not the configured authority"


# --------------------------- Oracle ---------------------------


class StalePrice(MarketError):
    code = "StalePrice"
    kind = "oracle"
    retryable = True
    default_message = "Price is older than the freshness bound"


class InsufficientVerification(MarketError):
    code = "InsufficientVerification"
    kind = "oracle"
    retryable = True
    default_message = "Price carries too few verification signatures"


class OracleUnavailable(MarketError):
    code = "OracleUnavailable"
    kind = "oracle"
    retryable = True
    default_message = "Price feed unavailable"


class ExponentMismatch(MarketError):
    code = "ExponentMismatch"
    kind = "oracle"
    default_message = "Settlement price exponent differs from opening exponent"


# --------------------------- Data integrity / migration ---------------------------


class InvalidResult(MarketError):
    code = "InvalidResult"
    kind = "data_integrity"
    default_message = "Invalid result"


class MigrationError(MarketError):
    code = "MigrationError"
    kind = "migration"
    retryable = True
    default_message = "Round is not held by the expected environment"


def error_payload(err: MarketError) -> dict[str, Any]:
    """Client-facing rendering of a failed command."""
    return {
        "ok": False,
        "code": err.code,
        "kind": err.kind,
        "retryable": bool(err.retryable),
        "message": str(err),
    }
