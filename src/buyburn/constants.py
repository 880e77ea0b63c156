"""Locked defaults for the buyback-and-burn engine.

Risk parameters below are only the initial values handed to
ConfigStore.initialize; the live values are owner-mutable and persisted.
"""

from __future__ import annotations

# ── Identities ────────────────────────────────────────────────────────────────
BURN_ADDRESS = "0x000000000000000000000000000000000000dEaD"
ENGINE_ADDRESS = "buyburn.engine"

# ── Initial risk parameters ───────────────────────────────────────────────────
DEFAULT_MAX_AMOUNT_PER_ACTION = 10 ** 18
DEFAULT_MIN_ACTION_DELAY_SEC = 3600
DEFAULT_MAX_DEVIATION_BPS = 10
DEFAULT_PAUSED = False

BPS_DENOMINATOR = 10000

# ── Price guard ───────────────────────────────────────────────────────────────
# Look-back: the previous second and the current second.
TWAP_WINDOW_SEC = 1

# ── Exchange ──────────────────────────────────────────────────────────────────
DEFAULT_FEE_TIER = 3000  # hundredths of a bip (0.30%)
FEE_TIER_DENOMINATOR = 1000000
PAPER_OBSERVATION_CARDINALITY = 64

# ── Config versions ───────────────────────────────────────────────────────────
INITIAL_CONFIG_VERSION = 1
