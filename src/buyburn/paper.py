"""PAPER wiring — a fully simulated engine for dry runs.

Builds a ledger, a funded paper pool, one custodian of each generation
and an initialised engine around them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from buyburn.clock import ManualClock
from buyburn.config_store import ConfigStore, RiskParameters
from buyburn.constants import BURN_ADDRESS, ENGINE_ADDRESS
from buyburn.engine import BuybackEngine
from buyburn.exchange import PaperPool
from buyburn.gate import ExecutionGate
from buyburn.harvest import (
    GENERATION_1,
    GENERATION_2,
    FeeSource,
    PaperCustodianV1,
    PaperCustodianV2,
)
from buyburn.ledger import AssetLedger
from buyburn.wal import WALWriter

logger = logging.getLogger(__name__)

PAPER_OWNER = "paper.owner"
PAPER_OPERATOR = "paper.operator"
BASE_ASSET = "WETH"
TARGET_ASSET = "TOKEN"

PAPER_START_TS = 1700000000
PAPER_LIQUIDITY = 10 ** 24
PAPER_POOL_RESERVE = 10 ** 30


class PaperSetup:
    """Handles on every simulated collaborator of a paper engine.

    A loaded ``store`` replaces the fresh paper configuration; its owner
    registers the paper fee sources and ``params`` is ignored.
    """

    def __init__(
        self,
        params: Optional[RiskParameters] = None,
        tick: int = 0,
        liquidity: int = PAPER_LIQUIDITY,
        start_ts: int = PAPER_START_TS,
        wal: Optional[WALWriter] = None,
        enforce_origin: bool = True,
        store: Optional[ConfigStore] = None,
    ) -> None:
        self.clock = ManualClock(start_ts)
        self.ledger = AssetLedger(receive_only=[BURN_ADDRESS])
        self.pool = PaperPool(
            self.ledger,
            token0=TARGET_ASSET,
            token1=BASE_ASSET,
            liquidity=liquidity,
            tick=tick,
            clock=self.clock,
        )
        self.ledger.mint(TARGET_ASSET, self.pool.address, PAPER_POOL_RESERVE)
        self.ledger.mint(BASE_ASSET, self.pool.address, PAPER_POOL_RESERVE)

        if store is None:
            store = ConfigStore(owner=PAPER_OWNER)
            store.initialize(PAPER_OWNER, params or RiskParameters())
        self.store = store
        owner = store.owner

        self.engine = BuybackEngine(
            store=self.store,
            ledger=self.ledger,
            pool=self.pool,
            base_asset=BASE_ASSET,
            target_asset=TARGET_ASSET,
            gate=ExecutionGate(enforce_origin=enforce_origin),
            clock=self.clock,
            wal=wal,
        )

        self.custodian_v1 = PaperCustodianV1(self.ledger, "paper.custodian.v1")
        self.custodian_v2 = PaperCustodianV2(self.ledger, "paper.custodian.v2", recipient=ENGINE_ADDRESS)
        self.custodian_v1.open_position(1)
        self.custodian_v2.open_position(2)
        self.engine.register_fee_source(
            owner, "v1", FeeSource(self.custodian_v1, 1, GENERATION_1), make_default=True,
        )
        self.engine.register_fee_source(
            owner, "v2", FeeSource(self.custodian_v2, 2, GENERATION_2),
        )

    def fund(self, amount: int) -> None:
        """Put base asset straight into engine custody."""
        self.ledger.mint(BASE_ASSET, ENGINE_ADDRESS, amount)

    def move_price(self, reference_tick: int, current_tick: int, hold_sec: int = 60) -> None:
        """Hold reference_tick for hold_sec, then jump to current_tick now.

        The one-second look-back then averages to reference_tick while the
        pool reports current_tick.
        """
        self.pool.set_tick(reference_tick)
        self.clock.advance(hold_sec)
        self.pool.set_tick(current_tick)

    def balances(self) -> Dict[str, Any]:
        return {
            "engine_base": self.ledger.balance_of(ENGINE_ADDRESS, BASE_ASSET),
            "engine_target": self.ledger.balance_of(ENGINE_ADDRESS, TARGET_ASSET),
            "burned": self.ledger.total_received(BURN_ADDRESS, TARGET_ASSET),
        }
