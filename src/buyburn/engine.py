"""BuybackEngine — wiring for the harvest → swap → burn action.

Primary action, as one atomic unit:
    gate.admit → harvester (optional) → price guard → swap executor
    → burn sink → last_action_timestamp

Every action is journalled (ACTION_INTENT before funds move, then
ACTION_RESULT or ACTION_ABORTED) and any error rolls back ledger
balances, configuration, fee-source registry and paper collaborators.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from buyburn.burn import BurnSink
from buyburn.clock import wall_clock
from buyburn.config_store import ConfigStore, RiskParameters
from buyburn.constants import BURN_ADDRESS, DEFAULT_FEE_TIER, ENGINE_ADDRESS
from buyburn.errors import EngineError
from buyburn.exchange import ExchangePool
from buyburn.execution import SwapExecutor, SwapResult
from buyburn.gate import ExecutionGate
from buyburn.harvest import FeeHarvester, FeeSource, FeeSourceRegistry
from buyburn.ledger import AssetLedger, atomic
from buyburn.observability import (
    EVENT_ACTION_ABORTED,
    EVENT_ACTION_COMMITTED,
    EVENT_CONFIG_CHANGED,
    EVENT_HARVESTED,
    EventLog,
)
from buyburn.price_guard import PriceGuard, PriceObservation
from buyburn.wal import ACTION_ABORTED, ACTION_INTENT, ACTION_RESULT, CONFIG_CHANGED, WALWriter

logger = logging.getLogger(__name__)

ACTION_HARVEST_AND_SWAP = "HARVEST_AND_SWAP"
ACTION_SWAP = "SWAP"
ACTION_HARVEST = "HARVEST"
ACTION_HARVEST_BATCH = "HARVEST_BATCH"


class ActionResult:
    """Outcome of a committed action."""

    def __init__(
        self,
        action_id: str,
        action: str,
        timestamp: int,
        harvested: Optional[List[FeeSource]] = None,
        observation: Optional[PriceObservation] = None,
        swap: Optional[SwapResult] = None,
        burned: int = 0,
    ) -> None:
        self.action_id = action_id
        self.action = action
        self.timestamp = timestamp
        self.harvested = harvested or []
        self.observation = observation
        self.swap = swap
        self.burned = burned

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "action": self.action,
            "timestamp": self.timestamp,
            "harvested": [s.to_dict() for s in self.harvested],
            "observation": self.observation.to_dict() if self.observation else None,
            "swap": self.swap.to_dict() if self.swap else None,
            "burned": self.burned,
        }


class BuybackEngine:
    """Harvests fees, buys the target asset under risk controls, burns it."""

    def __init__(
        self,
        store: ConfigStore,
        ledger: AssetLedger,
        pool: ExchangePool,
        base_asset: str,
        target_asset: str,
        gate: Optional[ExecutionGate] = None,
        guard: Optional[PriceGuard] = None,
        registry: Optional[FeeSourceRegistry] = None,
        fee_tier: int = DEFAULT_FEE_TIER,
        address: str = ENGINE_ADDRESS,
        burn_destination: str = BURN_ADDRESS,
        clock: Callable[[], int] = wall_clock,
        wal: Optional[WALWriter] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.pool = pool
        self.base_asset = base_asset
        self.target_asset = target_asset
        self.address = address
        self.clock = clock
        self.wal = wal
        self.event_log = event_log or EventLog()

        self.gate = gate or ExecutionGate()
        self.guard = guard or PriceGuard()
        self.registry = registry or FeeSourceRegistry(store)
        self.harvester = FeeHarvester(self.registry, recipient=address)
        self.executor = SwapExecutor(pool, store, base_asset, target_asset, fee_tier, address)
        self.sink = BurnSink(ledger, target_asset, address, burn_destination)

        if store.on_change is None:
            store.on_change = self._on_config_change

    # ── Public triggerable actions ────────────────────────────────────────────

    def harvest_and_swap(
        self,
        caller: str,
        originator: str,
        source_name: Optional[str] = None,
    ) -> ActionResult:
        """Harvest one fee source (default if unnamed), then swap and burn."""

        def _action(result: ActionResult) -> None:
            self.gate.admit(caller, originator, result.timestamp, self.store.config)
            result.harvested.append(self.harvester.harvest_named(source_name))
            self._swap_and_burn(result)

        return self._run(ACTION_HARVEST_AND_SWAP, caller, _action, source=source_name)

    def swap_only(self, caller: str, originator: str) -> ActionResult:
        """Swap whatever base asset is already in custody, then burn."""

        def _action(result: ActionResult) -> None:
            self.gate.admit(caller, originator, result.timestamp, self.store.config)
            self._swap_and_burn(result)

        return self._run(ACTION_SWAP, caller, _action)

    def harvest(self, caller: str, source_name: Optional[str] = None) -> ActionResult:
        """Permissionless: fees can only move into custody."""

        def _action(result: ActionResult) -> None:
            result.harvested.append(self.harvester.harvest_named(source_name))

        return self._run(ACTION_HARVEST, caller, _action, source=source_name)

    def harvest_batch(self, caller: str, source_names: Iterable[str]) -> ActionResult:
        names = list(source_names)

        def _action(result: ActionResult) -> None:
            result.harvested.extend(self.harvester.harvest_batch(names))

        return self._run(ACTION_HARVEST_BATCH, caller, _action, sources=names)

    # ── Owner administration ──────────────────────────────────────────────────

    def pause(self, caller: str) -> None:
        self.store.set_paused(caller, True)

    def unpause(self, caller: str) -> None:
        self.store.set_paused(caller, False)

    def upgrade(self, caller: str, version: int, params: RiskParameters) -> None:
        self.store.reinitialize(caller, version, params)

    def register_fee_source(
        self,
        caller: str,
        name: str,
        source: FeeSource,
        make_default: bool = False,
    ) -> None:
        self.registry.register(caller, name, source, make_default=make_default)
        self._on_config_change("fee_source", dict(source.to_dict(), name=name))

    # ── Internals ─────────────────────────────────────────────────────────────

    def _swap_and_burn(self, result: ActionResult) -> None:
        config = self.store.config
        observation = self.guard.observe(self.pool)
        self.guard.check(observation, config.max_deviation_bps)
        limit = self.guard.limit_for(observation, config.max_deviation_bps)

        available = self.ledger.balance_of(self.address, self.base_asset)
        swap = self.executor.swap(available, config, limit, result.timestamp)
        self.sink.dispose(swap.amount_out)

        result.observation = observation
        result.swap = swap
        result.burned = swap.amount_out

    def _participants(self) -> List[Any]:
        candidates = [self.ledger, self.store, self.registry, self.pool]
        candidates.extend(self.registry.custodians())
        return [
            p for p in candidates
            if callable(getattr(p, "snapshot", None)) and callable(getattr(p, "restore", None))
        ]

    def _run(
        self,
        action: str,
        caller: str,
        body: Callable[[ActionResult], None],
        **intent: Any
    ) -> ActionResult:
        result = ActionResult(uuid.uuid4().hex, action, self.clock())
        self._journal(ACTION_INTENT, dict(
            intent, action_id=result.action_id, action=action,
            caller=caller, timestamp=result.timestamp,
        ))

        try:
            with atomic(*self._participants()):
                body(result)
        except EngineError as e:
            self._abort(result, e.code, str(e))
            raise
        except Exception as e:
            self._abort(result, "UNEXPECTED_ERROR", repr(e))
            raise

        self._journal(ACTION_RESULT, result.to_dict())
        for source in result.harvested:
            self.event_log.log_event(EVENT_HARVESTED, action=action, details=source.to_dict())
        self.event_log.log_event(EVENT_ACTION_COMMITTED, action=action, details=result.to_dict())
        logger.info(
            "Action committed: %s id=%s burned=%d",
            action, result.action_id, result.burned,
        )
        return result

    def _abort(self, result: ActionResult, code: str, message: str) -> None:
        logger.warning("Action aborted: %s id=%s reason=%s (%s)", result.action, result.action_id, code, message)
        self._journal(ACTION_ABORTED, {
            "action_id": result.action_id,
            "action": result.action,
            "reason_code": code,
            "message": message,
        })
        self.event_log.log_event(
            EVENT_ACTION_ABORTED,
            action=result.action,
            reason_code=code,
            details={"action_id": result.action_id, "message": message},
        )

    def _on_config_change(self, field: str, details: Dict[str, Any]) -> None:
        self._journal(CONFIG_CHANGED, dict(details, field=field))
        self.event_log.log_event(EVENT_CONFIG_CHANGED, details=dict(details, field=field))

    def _journal(self, record_type: str, payload: Dict[str, Any]) -> None:
        if self.wal is not None:
            self.wal.write(record_type, payload)

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "config": self.store.to_dict(),
            "base_balance": self.ledger.balance_of(self.address, self.base_asset),
            "target_balance": self.ledger.balance_of(self.address, self.target_asset),
            "total_burned": self.sink.total_burned,
            "fee_sources": self.registry.names,
            "events": self.event_log.stats,
        }
