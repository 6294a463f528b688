"""
migration.py -- Custody of round records between execution environments.

A round's authoritative, mutable copy lives either in the BASE environment
(where it is opened, settled and claimed) or in the ACCELERATED environment
(where wagers and the lock land).  Hand-off and hand-back move the copy as
a serialized message; neither side keeps a reference into the other's
memory.  The state machine never looks at custody, so a round that travels
out and back compares equal to the one that left.
"""

from __future__ import annotations

from enum import Enum
import logging
import threading

import state_machine as sm
from errors import MigrationError, UnknownRecord

logger = logging.getLogger(__name__)


class Environment(Enum):
    BASE = "base"
    ACCELERATED = "accelerated"


class RoundCustody:
    """Tracks which environment holds each round, keyed by round address."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holder: dict[str, Environment] = {}
        self._accelerated: dict[str, dict] = {}

    def track(self, address: str) -> None:
        with self._lock:
            self._holder.setdefault(address, Environment.BASE)

    def holder(self, address: str) -> Environment:
        with self._lock:
            env = self._holder.get(address)
        if env is None:
            raise UnknownRecord(f"round {address[:12]} is not tracked")
        return env

    def handoff(self, address: str, round_: sm.Round) -> None:
        """Move the authoritative copy BASE -> ACCELERATED."""
        with self._lock:
            env = self._holder.get(address, Environment.BASE)
            if env != Environment.BASE:
                raise MigrationError(f"round {round_.round_id} is already {env.value}")
            self._accelerated[address] = sm.to_dict(round_)
            self._holder[address] = Environment.ACCELERATED
        logger.info("Round %d handed off to %s", round_.round_id, Environment.ACCELERATED.value)

    def update(self, address: str, round_: sm.Round) -> None:
        """Write a new copy while the accelerated side holds the round."""
        with self._lock:
            if self._holder.get(address) != Environment.ACCELERATED:
                raise MigrationError(f"round {round_.round_id} is not held by accelerated")
            self._accelerated[address] = sm.to_dict(round_)

    def fetch(self, address: str) -> sm.Round:
        with self._lock:
            if self._holder.get(address) != Environment.ACCELERATED:
                raise MigrationError(f"round {address[:12]} is not held by accelerated")
            message = dict(self._accelerated[address])
        return sm.from_dict(message)

    def handback(self, address: str) -> sm.Round:
        """Move the authoritative copy ACCELERATED -> BASE and return it."""
        with self._lock:
            if self._holder.get(address) != Environment.ACCELERATED:
                raise MigrationError(f"round {address[:12]} is not held by accelerated")
            message = self._accelerated.pop(address)
            self._holder[address] = Environment.BASE
        round_ = sm.from_dict(message)
        logger.info("Round %d handed back to %s", round_.round_id, Environment.BASE.value)
        return round_

    def snapshot_state(self) -> dict:
        with self._lock:
            return {
                "holders": {k: v.value for k, v in self._holder.items()},
                "accelerated": {k: dict(v) for k, v in self._accelerated.items()},
            }

    def restore_state(self, payload: dict) -> None:
        if not isinstance(payload, dict):
            return
        holders: dict[str, Environment] = {}
        for k, v in (payload.get("holders") or {}).items():
            try:
                holders[str(k)] = Environment(v)
            except ValueError:
                raise MigrationError(f"unknown environment tag {v!r}") from None
        accelerated: dict[str, dict] = {}
        for k, v in (payload.get("accelerated") or {}).items():
            if not isinstance(v, dict):
                raise MigrationError(f"malformed accelerated copy for {str(k)[:12]}")
            if holders.get(str(k)) != Environment.ACCELERATED:
                raise MigrationError(f"accelerated copy for {str(k)[:12]} has no matching holder")
            accelerated[str(k)] = dict(v)
        for k, env in holders.items():
            if env == Environment.ACCELERATED and k not in accelerated:
                raise MigrationError(f"round {k[:12]} is held by accelerated but has no copy")
        with self._lock:
            self._holder = holders
            self._accelerated = accelerated
