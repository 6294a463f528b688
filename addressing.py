"""
addressing.py -- Deterministic record addresses.

Config, Round and Participant records live at addresses derived from a
namespace tag plus key fields:

  config       -> ("game",)
  round        -> ("round", round_id as u64 little-endian)
  participant  -> ("player", owner identity)

Each seed is length-prefixed before hashing so ("ab", "c") and ("a", "bc")
can never collide.
"""

from __future__ import annotations

import hashlib

PROGRAM_TAG = b"updown-rounds/v1"

CONFIG_SEED = b"game"
ROUND_SEED = b"round"
PLAYER_SEED = b"player"

_U64_MAX = (1 << 64) - 1


def _as_bytes(seed: bytes | str | int) -> bytes:
    if isinstance(seed, bytes):
        return seed
    if isinstance(seed, str):
        return seed.encode("utf-8")
    if isinstance(seed, int) and not isinstance(seed, bool):
        if seed < 0 or seed > _U64_MAX:
            raise ValueError(f"integer seed out of u64 range: {seed}")
        return seed.to_bytes(8, "little")
    raise TypeError(f"Unsupported seed type: {type(seed)!r}")


def derive_address(namespace: bytes | str, *seeds: bytes | str | int) -> str:
    h = hashlib.sha256()
    h.update(PROGRAM_TAG)
    for part in (namespace, *seeds):
        raw = _as_bytes(part)
        h.update(len(raw).to_bytes(4, "little"))
        h.update(raw)
    return h.hexdigest()


def config_address() -> str:
    return derive_address(CONFIG_SEED)


def round_address(round_id: int) -> str:
    return derive_address(ROUND_SEED, int(round_id))


def participant_address(owner: str) -> str:
    return derive_address(PLAYER_SEED, str(owner))
