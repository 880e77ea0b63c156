"""BurnSink — irreversible disposal of purchased target asset."""

from __future__ import annotations

import logging

from buyburn.constants import BURN_ADDRESS, ENGINE_ADDRESS
from buyburn.ledger import AssetLedger

logger = logging.getLogger(__name__)


class BurnSink:
    """Sends target asset to a destination that can never spend it.

    The ledger must list ``destination`` as receive-only.
    """

    def __init__(
        self,
        ledger: AssetLedger,
        target_asset: str,
        holder: str = ENGINE_ADDRESS,
        destination: str = BURN_ADDRESS,
    ) -> None:
        self.ledger = ledger
        self.target_asset = target_asset
        self.holder = holder
        self.destination = destination

    def dispose(self, amount: int) -> None:
        self.ledger.transfer(self.target_asset, self.holder, self.destination, amount)
        logger.info("Burned %d %s", amount, self.target_asset)

    @property
    def total_burned(self) -> int:
        return self.ledger.total_received(self.destination, self.target_asset)
