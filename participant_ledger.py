"""
participant_ledger.py -- Local participant credit ledger.

The ledger is local-first:
- `participants` keeps one record per owner with a spendable credit balance.
- `journal` is append-only event history (registered / debited / credited).

Balances are u64: debits never go below zero and credits never exceed the
u64 range.  Every mutation either completes or raises before touching state.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
import time
from typing import Any

from addressing import participant_address
from errors import AlreadyExists, InsufficientCredits, UnknownRecord
from state_machine import checked_add, checked_sub


_VALID_EVENT_TYPES = {"registered", "debited", "credited"}


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(default)


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


@dataclass
class ParticipantRecord:
    owner: str
    credits: int
    address: str = ""
    registered_at: float = 0.0


@dataclass
class JournalRecord:
    journal_id: int
    owner: str
    timestamp: float
    event_type: str
    amount: int
    details: dict[str, Any]


class ParticipantLedger:
    def __init__(
        self,
        *,
        starting_credits: int,
        journal_local_limit: int = 1000,
    ) -> None:
        self.starting_credits = int(starting_credits)
        self.journal_local_limit = max(50, int(journal_local_limit))

        self._participants: dict[str, ParticipantRecord] = {}
        self._journal: list[JournalRecord] = []
        self._next_journal_id: int = 1

    # ------------------ Core API ------------------

    def register(self, owner: str, *, timestamp: float | None = None) -> ParticipantRecord:
        key = str(owner)
        if key in self._participants:
            raise AlreadyExists(f"participant {key} already registered")
        ts = _to_float(timestamp, time.time())
        rec = ParticipantRecord(
            owner=key,
            credits=self.starting_credits,
            address=participant_address(key),
            registered_at=ts,
        )
        self._participants[key] = rec
        self._journal_event(key, "registered", rec.credits, {}, timestamp=ts)
        return rec

    def credit(
        self,
        owner: str,
        amount: int,
        details: dict[str, Any] | None = None,
        *,
        timestamp: float | None = None,
    ) -> int:
        rec = self._require(owner)
        new_balance = checked_add(rec.credits, int(amount))
        rec.credits = new_balance
        self._journal_event(rec.owner, "credited", int(amount), details, timestamp=timestamp)
        return new_balance

    def debit(
        self,
        owner: str,
        amount: int,
        details: dict[str, Any] | None = None,
        *,
        timestamp: float | None = None,
    ) -> int:
        rec = self._require(owner)
        if rec.credits < int(amount):
            raise InsufficientCredits()
        new_balance = checked_sub(rec.credits, int(amount))
        rec.credits = new_balance
        self._journal_event(rec.owner, "debited", int(amount), details, timestamp=timestamp)
        return new_balance

    # ------------------ Queries ------------------

    def has(self, owner: str) -> bool:
        return str(owner) in self._participants

    def balance(self, owner: str) -> int:
        return self._require(owner).credits

    def get(self, owner: str) -> dict[str, Any] | None:
        rec = self._participants.get(str(owner))
        return asdict(rec) if rec is not None else None

    def owners(self) -> list[str]:
        return sorted(self._participants)

    def total_credits(self) -> int:
        return sum(r.credits for r in self._participants.values())

    def get_journal(self, owner: str | None = None) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for row in self._journal:
            if owner is not None and row.owner != str(owner):
                continue
            rows.append(asdict(row))
        return rows

    # ------------------ Snapshot ------------------

    def snapshot_state(self) -> dict[str, Any]:
        return {
            "starting_credits": int(self.starting_credits),
            "participants": [asdict(r) for r in self._participants.values()],
            "journal_recent": [asdict(r) for r in self._journal],
            "journal_id_counter": int(self._next_journal_id),
        }

    def restore_state(self, payload: dict[str, Any]) -> None:
        if not isinstance(payload, dict):
            return
        self.starting_credits = _to_int(payload.get("starting_credits"), self.starting_credits)

        self._participants = {}
        raw_participants = payload.get("participants", [])
        if isinstance(raw_participants, list):
            for row in raw_participants:
                if not isinstance(row, dict) or not row.get("owner"):
                    continue
                owner = str(row["owner"])
                self._participants[owner] = ParticipantRecord(
                    owner=owner,
                    credits=max(0, _to_int(row.get("credits"), 0)),
                    address=str(row.get("address") or participant_address(owner)),
                    registered_at=_to_float(row.get("registered_at")),
                )

        self._journal = []
        raw_journal = payload.get("journal_recent", [])
        if isinstance(raw_journal, list):
            for row in raw_journal:
                if not isinstance(row, dict):
                    continue
                event_type = str(row.get("event_type") or "")
                if event_type not in _VALID_EVENT_TYPES:
                    continue
                self._journal.append(
                    JournalRecord(
                        journal_id=max(1, _to_int(row.get("journal_id"), 0)),
                        owner=str(row.get("owner") or ""),
                        timestamp=_to_float(row.get("timestamp")),
                        event_type=event_type,
                        amount=max(0, _to_int(row.get("amount"), 0)),
                        details=dict(row.get("details") or {}),
                    )
                )

        raw_jid = payload.get("journal_id_counter", 1)
        self._next_journal_id = max(
            max((j.journal_id for j in self._journal), default=0) + 1,
            _to_int(raw_jid, 1),
        )
        self._trim_journal_if_needed()

    # ------------------ Internals ------------------

    def _require(self, owner: str) -> ParticipantRecord:
        rec = self._participants.get(str(owner))
        if rec is None:
            raise UnknownRecord(f"participant {owner} is not registered")
        return rec

    def _journal_event(
        self,
        owner: str,
        event_type: str,
        amount: int,
        details: dict[str, Any] | None,
        *,
        timestamp: float | None = None,
    ) -> int:
        jid = self._next_journal_id
        self._journal.append(
            JournalRecord(
                journal_id=jid,
                owner=owner,
                timestamp=_to_float(timestamp, time.time()),
                event_type=event_type,
                amount=int(amount),
                details=dict(details or {}),
            )
        )
        self._next_journal_id += 1
        self._trim_journal_if_needed()
        return jid

    def _trim_journal_if_needed(self) -> None:
        limit = max(50, int(self.journal_local_limit))
        if len(self._journal) <= limit:
            return
        self._journal = self._journal[len(self._journal) - limit:]
