"""ConfigStore — owner-controlled, versioned risk parameters.

Implements:
- Configuration aggregate (cap, delay, last action timestamp, deviation bound, pause)
- Owner capability check around every mutator
- One-time initialize + strictly increasing reinitialize versions
- Durable singleton row with HMAC-SHA256 signature verification
- Load, mutate, re-sign and save under a row lock for owner commands
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from buyburn.constants import (
    DEFAULT_MAX_AMOUNT_PER_ACTION,
    DEFAULT_MAX_DEVIATION_BPS,
    DEFAULT_MIN_ACTION_DELAY_SEC,
    DEFAULT_PAUSED,
    INITIAL_CONFIG_VERSION,
    BPS_DENOMINATOR,
)
from buyburn.errors import AccessDenied, VersionAlreadyApplied

logger = logging.getLogger(__name__)


class ConfigSignatureError(Exception):
    """Raised when the stored configuration signature does not verify."""


class ConfigNotInitialised(Exception):
    """Raised when an update targets a configuration that was never stored."""


def _require_uint(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("{} must be an integer, got {!r}".format(name, value))
    if value < 0:
        raise ValueError("{} must be non-negative, got {}".format(name, value))
    return value


def _require_bps(value: int) -> int:
    _require_uint("max_deviation_bps", value)
    if value > BPS_DENOMINATOR:
        raise ValueError(
            "max_deviation_bps must be within 0..{}, got {}".format(BPS_DENOMINATOR, value)
        )
    return value


class RiskParameters:
    """Owner-settable subset of the configuration."""

    def __init__(
        self,
        max_amount_per_action: int = DEFAULT_MAX_AMOUNT_PER_ACTION,
        min_action_delay: int = DEFAULT_MIN_ACTION_DELAY_SEC,
        max_deviation_bps: int = DEFAULT_MAX_DEVIATION_BPS,
        paused: bool = DEFAULT_PAUSED,
    ) -> None:
        self.max_amount_per_action = _require_uint("max_amount_per_action", max_amount_per_action)
        self.min_action_delay = _require_uint("min_action_delay", min_action_delay)
        self.max_deviation_bps = _require_bps(max_deviation_bps)
        self.paused = bool(paused)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_amount_per_action": self.max_amount_per_action,
            "min_action_delay": self.min_action_delay,
            "max_deviation_bps": self.max_deviation_bps,
            "paused": self.paused,
        }


class Configuration:
    """The full persisted configuration record."""

    def __init__(
        self,
        max_amount_per_action: int = 0,
        min_action_delay: int = 0,
        last_action_timestamp: int = 0,
        max_deviation_bps: int = 0,
        paused: bool = False,
    ) -> None:
        self.max_amount_per_action = max_amount_per_action
        self.min_action_delay = min_action_delay
        self.last_action_timestamp = last_action_timestamp
        self.max_deviation_bps = max_deviation_bps
        self.paused = paused

    def copy(self) -> Configuration:
        return Configuration(**self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_amount_per_action": self.max_amount_per_action,
            "min_action_delay": self.min_action_delay,
            "last_action_timestamp": self.last_action_timestamp,
            "max_deviation_bps": self.max_deviation_bps,
            "paused": self.paused,
        }


ChangeListener = Callable[[str, Dict[str, Any]], None]


class ConfigStore:
    """Versioned configuration with an owner capability check.

    Readers never need permission.  Before ``initialize`` every field
    reads as its zero value and the version is 0.
    """

    def __init__(
        self,
        owner: str,
        on_change: Optional[ChangeListener] = None,
    ) -> None:
        self._owner = owner
        self._version = 0
        self._config = Configuration()
        self._dirty = False
        self.on_change = on_change

    # ── Read accessors ────────────────────────────────────────────────────────

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def version(self) -> int:
        return self._version

    @property
    def is_initialized(self) -> bool:
        return self._version >= INITIAL_CONFIG_VERSION

    @property
    def config(self) -> Configuration:
        """A detached copy of the current configuration."""
        return self._config.copy()

    @property
    def max_amount_per_action(self) -> int:
        return self._config.max_amount_per_action

    @property
    def min_action_delay(self) -> int:
        return self._config.min_action_delay

    @property
    def last_action_timestamp(self) -> int:
        return self._config.last_action_timestamp

    @property
    def max_deviation_bps(self) -> int:
        return self._config.max_deviation_bps

    @property
    def paused(self) -> bool:
        return self._config.paused

    @property
    def dirty(self) -> bool:
        """True once anything changed since the last load or save."""
        return self._dirty

    def mark_clean(self) -> None:
        self._dirty = False

    # ── Access control ────────────────────────────────────────────────────────

    def require_owner(self, caller: str, action: str = "mutate configuration") -> None:
        if caller != self._owner:
            logger.warning("Access denied: caller=%s action=%s", caller, action)
            raise AccessDenied(caller, action)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller, "transfer ownership")
        if not new_owner:
            raise ValueError("new owner must be a non-empty identity")
        old = self._owner
        self._owner = new_owner
        logger.info("Ownership transferred: %s -> %s", old, new_owner)
        self._notify("ownership", {"old_owner": old, "new_owner": new_owner})

    # ── Versioned (re)initialisation ──────────────────────────────────────────

    def initialize(self, caller: str, params: RiskParameters) -> None:
        """One-time creation of the configuration at version 1."""
        self.reinitialize(caller, INITIAL_CONFIG_VERSION, params)

    def reinitialize(self, caller: str, version: int, params: RiskParameters) -> None:
        """Apply an upgrade step; each version can be applied only once.

        last_action_timestamp is carried forward unchanged.
        """
        self.require_owner(caller, "reinitialize configuration")
        if version <= self._version:
            raise VersionAlreadyApplied(version, self._version)

        self._apply(params)
        old_version = self._version
        self._version = version
        logger.info("Config version %d -> %d applied", old_version, version)
        self._notify("reinitialize", dict(params.to_dict(), version=version))

    # ── Individual + bulk setters ─────────────────────────────────────────────

    def set_max_amount_per_action(self, caller: str, value: int) -> None:
        self.require_owner(caller)
        self._config.max_amount_per_action = _require_uint("max_amount_per_action", value)
        self._notify("max_amount_per_action", {"value": value})

    def set_min_action_delay(self, caller: str, value: int) -> None:
        self.require_owner(caller)
        self._config.min_action_delay = _require_uint("min_action_delay", value)
        self._notify("min_action_delay", {"value": value})

    def set_max_deviation_bps(self, caller: str, value: int) -> None:
        self.require_owner(caller)
        self._config.max_deviation_bps = _require_bps(value)
        self._notify("max_deviation_bps", {"value": value})

    def set_paused(self, caller: str, paused: bool) -> None:
        self.require_owner(caller)
        self._config.paused = bool(paused)
        logger.info("Engine %s by %s", "paused" if paused else "unpaused", caller)
        self._notify("paused", {"value": bool(paused)})

    def set_risk_parameters(self, caller: str, params: RiskParameters) -> None:
        """Bulk setter for every owner-settable field."""
        self.require_owner(caller)
        self._apply(params)
        self._notify("bulk", params.to_dict())

    def _apply(self, params: RiskParameters) -> None:
        self._config.max_amount_per_action = params.max_amount_per_action
        self._config.min_action_delay = params.min_action_delay
        self._config.max_deviation_bps = params.max_deviation_bps
        self._config.paused = params.paused

    # ── Engine-internal ───────────────────────────────────────────────────────

    def record_action_timestamp(self, now: int) -> None:
        """Record a successful action.  The timestamp never decreases."""
        if now < self._config.last_action_timestamp:
            raise ValueError(
                "last_action_timestamp would decrease: {} < {}".format(
                    now, self._config.last_action_timestamp,
                )
            )
        self._config.last_action_timestamp = now
        self._dirty = True

    def _notify(self, field: str, details: Dict[str, Any]) -> None:
        self._dirty = True
        if self.on_change is not None:
            self.on_change(field, details)

    # ── Atomic participant ────────────────────────────────────────────────────

    def snapshot(self) -> Any:
        return self._owner, self._version, self._config.copy()

    def restore(self, state: Any) -> None:
        owner, version, config = state
        self._owner = owner
        self._version = version
        self._config = config.copy()

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._config.to_dict(), owner=self._owner, version=self._version)


# ── Durable storage ───────────────────────────────────────────────────────────

def _compute_config_signature(store: ConfigStore, secret: str) -> bytes:
    """HMAC-SHA256 signature over the canonical configuration fields."""
    c = store.config
    canonical = (
        "owner={}|version={}|max_amount_per_action={}|min_action_delay={}"
        "|last_action_timestamp={}|max_deviation_bps={}|paused={}"
    ).format(
        store.owner,
        store.version,
        c.max_amount_per_action,
        c.min_action_delay,
        c.last_action_timestamp,
        c.max_deviation_bps,
        int(c.paused),
    )
    return hmac.new(
        secret.encode("utf-8"),
        canonical.encode("utf-8"),
        hashlib.sha256,
    ).digest()


async def load_config_store(pool: Any, secret: str, for_update: bool = False) -> Optional[ConfigStore]:
    """Load and verify the engine_config singleton row.  None if absent.

    ``for_update`` locks the row; only meaningful inside a transaction.
    """
    query = "SELECT * FROM engine_config WHERE id = TRUE"
    if for_update:
        query += " FOR UPDATE"
    row = await pool.fetchrow(query)
    if row is None:
        return None

    store = ConfigStore(owner=row["owner"])
    store.restore((
        row["owner"],
        int(row["version"]),
        Configuration(
            max_amount_per_action=int(row["max_amount_per_action"]),
            min_action_delay=int(row["min_action_delay"]),
            last_action_timestamp=int(row["last_action_timestamp"]),
            max_deviation_bps=int(row["max_deviation_bps"]),
            paused=bool(row["paused"]),
        ),
    ))

    expected = _compute_config_signature(store, secret)
    if not hmac.compare_digest(bytes(row["config_signature"]), expected):
        raise ConfigSignatureError(
            "engine_config signature verification failed — possible tampering"
        )
    return store


async def save_config_store(pool: Any, store: ConfigStore, secret: str) -> None:
    """Upsert the engine_config singleton row with a fresh signature."""
    c = store.config
    await pool.execute(
        """
        INSERT INTO engine_config (id, owner, version, max_amount_per_action,
                                   min_action_delay, last_action_timestamp,
                                   max_deviation_bps, paused, config_signature,
                                   updated_at_utc)
        VALUES (TRUE, $1, $2, $3, $4, $5, $6, $7, $8, $9)
        ON CONFLICT (id) DO UPDATE SET
            owner = EXCLUDED.owner,
            version = EXCLUDED.version,
            max_amount_per_action = EXCLUDED.max_amount_per_action,
            min_action_delay = EXCLUDED.min_action_delay,
            last_action_timestamp = EXCLUDED.last_action_timestamp,
            max_deviation_bps = EXCLUDED.max_deviation_bps,
            paused = EXCLUDED.paused,
            config_signature = EXCLUDED.config_signature,
            updated_at_utc = EXCLUDED.updated_at_utc
        """,
        store.owner,
        store.version,
        Decimal(c.max_amount_per_action),
        c.min_action_delay,
        c.last_action_timestamp,
        c.max_deviation_bps,
        c.paused,
        _compute_config_signature(store, secret),
        datetime.now(timezone.utc),
    )
    store.mark_clean()


async def initialise_config_store(
    pool: Any,
    secret: str,
    owner: str,
    params: Optional[RiskParameters] = None,
) -> ConfigStore:
    """Load the stored configuration or create it at version 1."""
    store = await load_config_store(pool, secret)
    if store is not None:
        logger.info("Config loaded: version=%d owner=%s", store.version, store.owner)
        return store

    store = ConfigStore(owner=owner)
    store.initialize(owner, params or RiskParameters())
    await save_config_store(pool, store, secret)
    logger.info("Config initialised at version %d", store.version)
    return store


async def save_if_dirty(pool: Any, store: ConfigStore, secret: str) -> bool:
    """Persist the store if it changed since it was loaded.  True if saved."""
    if not store.dirty:
        return False
    await save_config_store(pool, store, secret)
    logger.info(
        "Config saved: version=%d last_action_timestamp=%d",
        store.version, store.last_action_timestamp,
    )
    return True


async def update_config_store(
    pool: Any,
    secret: str,
    mutate: Callable[[ConfigStore], None],
) -> ConfigStore:
    """Apply one mutation to the stored configuration in a single transaction.

    The row is locked, verified, mutated and re-signed.  Any error raised by
    ``mutate`` (AccessDenied, VersionAlreadyApplied, ValueError) aborts the
    transaction and leaves the stored row untouched.
    """
    async with pool.acquire() as conn:
        async with conn.transaction():
            store = await load_config_store(conn, secret, for_update=True)
            if store is None:
                raise ConfigNotInitialised("no engine_config row: run config init first")
            mutate(store)
            await save_if_dirty(conn, store, secret)
    return store
