"""
config.py -- All tunable parameters for the up/down round market.

Every value here is loaded from environment variables so the operator crank
can be configured from the deployment dashboard (or a local .env file)
without touching code.

HOW TO READ THIS FILE:
  Each config value has a comment explaining:
    1. What it controls
    2. What happens if you raise/lower it
    3. The default and why it was chosen
"""

import os

# ---------------------------------------------------------------------------
# Helper: read an env var with a typed default
# ---------------------------------------------------------------------------

def _env(name, default, cast=str):
    """
    Read an environment variable and cast it to the right type.
    If the var is missing or empty, return *default* (already the right type).
    """
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        # Special handling for booleans -- "true"/"1"/"yes" are all truthy
        if cast is bool:
            return raw.strip().lower() in ("true", "1", "yes")
        return cast(raw)
    except (ValueError, TypeError):
        return default


# ---------------------------------------------------------------------------
# Operator identity
# ---------------------------------------------------------------------------

# Identity allowed to initialize the config and open/lock/settle rounds.
# Any other caller gets an Unauthorized error on operator commands.
OPERATOR_ID: str = _env("OPERATOR_ID", "operator")

# ---------------------------------------------------------------------------
# DRY RUN
# ---------------------------------------------------------------------------

# When True the crank never touches the network: prices come from a
# FixedPriceOracle that replays DRY_RUN_PRICES in order.
DRY_RUN: bool = _env("DRY_RUN", False, bool)

# Comma-separated raw prices (integer mantissas) used in dry run.
DRY_RUN_PRICES: str = _env("DRY_RUN_PRICES", "15000000000,15010000000,15005000000")

# ---------------------------------------------------------------------------
# Round timing
# ---------------------------------------------------------------------------

# Length of one round in seconds, from open to scheduled end.
# Longer rounds: more time to bet, slower feedback.
ROUND_DURATION_SEC: int = _env("ROUND_DURATION_SEC", 120, int)

# Wagers are refused this many seconds before the scheduled end.
# lock_ts = start_ts + ROUND_DURATION_SEC - LOCK_BEFORE_END_SEC
LOCK_BEFORE_END_SEC: int = _env("LOCK_BEFORE_END_SEC", 5, int)

# Maximum distinct participants per round.  Lookup is a linear scan, so this
# stays small on purpose.
MAX_PLAYERS: int = _env("MAX_PLAYERS", 8, int)

# ---------------------------------------------------------------------------
# Protocol fee & credits
# ---------------------------------------------------------------------------

# Fee taken from the pool on a decided (non-tie) round, in basis points.
# 100 = 1%.  Must be in 0..=10000.
FEE_BPS: int = _env("FEE_BPS", 100, int)

# Credits granted to each participant at registration (raw units).
# 1000 credits at 9 decimals.
STARTING_CREDITS: int = _env("STARTING_CREDITS", 1_000_000_000_000, int)

# Decimal places of the credit unit (display only).
CREDIT_DECIMALS: int = _env("CREDIT_DECIMALS", 9, int)

# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------

# Hermes price service base URL.
HERMES_URL: str = _env("HERMES_URL", "https://hermes.pyth.network")

# SOL/USD feed id (hex, no 0x prefix).
PRICE_FEED_ID: str = _env(
    "PRICE_FEED_ID",
    "ef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d",
)

# Oldest acceptable price, in seconds.  Relaxed to 10 minutes because the
# feed can update sparsely on test networks.
MAX_PRICE_AGE_SEC: int = _env("MAX_PRICE_AGE_SEC", 600, int)

# Minimum guardian signatures a price must carry to be accepted.
MIN_VERIFICATION_SIGNATURES: int = _env("MIN_VERIFICATION_SIGNATURES", 5, int)

# HTTP timeout for oracle requests, in seconds.
ORACLE_TIMEOUT_SEC: int = _env("ORACLE_TIMEOUT_SEC", 10, int)

# ---------------------------------------------------------------------------
# Crank loop
# ---------------------------------------------------------------------------

# Seconds the crank keeps the round open before locking it.
# Defaults to duration minus lock margin.
BETTING_WINDOW_SEC: float = _env(
    "BETTING_WINDOW_SEC", float(ROUND_DURATION_SEC - LOCK_BEFORE_END_SEC), float
)

# Seconds between lock and hand-back.
LOCK_WAIT_SEC: float = _env("LOCK_WAIT_SEC", 5.0, float)

# Seconds to wait after hand-back before settling.
COMMIT_WAIT_SEC: float = _env("COMMIT_WAIT_SEC", 2.0, float)

# Pause after a failed round before trying again.
RETRY_DELAY_SEC: float = _env("RETRY_DELAY_SEC", 5.0, float)

# How many recent settled rounds feed the pool summary log line.
STATS_WINDOW: int = _env("STATS_WINDOW", 50, int)

# ---------------------------------------------------------------------------
# Logging & persistence
# ---------------------------------------------------------------------------

# Python log level.  DEBUG shows every command; INFO is normal operations.
LOG_LEVEL: str = _env("LOG_LEVEL", "INFO")

# Directory for snapshots.  Relative to the crank's working directory.
LOG_DIR: str = _env("LOG_DIR", "logs")

# Market snapshot file for persistence across restarts.
STATE_FILE: str = os.path.join(LOG_DIR, "market_state.json")


def print_banner():
    """Print the active configuration at crank startup."""
    lines = [
        "",
        "=" * 60,
        "  UP/DOWN ROUND MARKET",
        "=" * 60,
        f"  Mode:            {'DRY RUN' if DRY_RUN else 'LIVE ORACLE'}",
        f"  Operator:        {OPERATOR_ID}",
        f"  Round duration:  {ROUND_DURATION_SEC}s (lock {LOCK_BEFORE_END_SEC}s before end)",
        f"  Max players:     {MAX_PLAYERS}",
        f"  Fee:             {FEE_BPS} bps",
        f"  Starting credits: {STARTING_CREDITS / 10 ** CREDIT_DECIMALS:.2f}",
        f"  Price feed:      {PRICE_FEED_ID[:16]}...",
        f"  Max price age:   {MAX_PRICE_AGE_SEC}s",
        f"  Min signatures:  {MIN_VERIFICATION_SIGNATURES}",
        f"  State file:      {STATE_FILE}",
        f"  Log level:       {LOG_LEVEL}",
        "=" * 60,
        "",
    ]
    print("\n".join(lines))
