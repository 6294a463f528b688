"""
round_store.py -- Local JSON persistence for the market snapshot.

PATTERN:
  - save_snapshot() writes atomically (write tmp, then replace) so a crash
    mid-write never leaves a truncated state file behind
  - load_snapshot() returns {} for a missing or unreadable file and logs why;
    the crank then starts fresh
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any

logger = logging.getLogger(__name__)


def save_snapshot(path: str, payload: dict[str, Any]) -> bool:
    """
    Save a market snapshot to disk for crash recovery.
    Returns True when the file was written.
    """
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    snapshot = dict(payload)
    snapshot["saved_at"] = time.time()
    tmp_path = path + ".tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2)
        os.replace(tmp_path, path)
        logger.debug("State saved to %s", path)
        return True
    except OSError as e:
        logger.error("Failed to save state: %s", e)
        return False


def load_snapshot(path: str) -> dict[str, Any]:
    """
    Read a previous snapshot.  Returns {} when there is nothing usable.
    """
    if not os.path.exists(path):
        logger.info("No state file found at %s -- starting fresh", path)
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            snapshot = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Failed to read state file: %s -- starting fresh", e)
        return {}

    if not isinstance(snapshot, dict):
        logger.warning("State file %s is not an object -- starting fresh", path)
        return {}
    return snapshot
