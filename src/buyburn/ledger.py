"""Asset ledger and the atomic action boundary.

Implements:
- In-process token balances keyed by (holder, asset)
- Receive-only holders (the burn destination never spends)
- ``atomic()``: snapshot every participant, restore all of them on any error
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from buyburn.errors import TransferFailed

logger = logging.getLogger(__name__)


class AssetLedger:
    """Integer balances in the smallest denomination of each asset."""

    def __init__(self, receive_only: Optional[Iterable[str]] = None) -> None:
        self._balances = {}  # type: Dict[Tuple[str, str], int]
        self._received = {}  # type: Dict[Tuple[str, str], int]
        self._receive_only = set(receive_only or ())  # type: Set[str]

    def balance_of(self, holder: str, asset: str) -> int:
        return self._balances.get((holder, asset), 0)

    def total_received(self, holder: str, asset: str) -> int:
        """Cumulative amount ever credited to holder (mints and transfers)."""
        return self._received.get((holder, asset), 0)

    def mint(self, asset: str, holder: str, amount: int) -> None:
        """Credit new units to holder (paper fee accrual, test funding)."""
        if amount < 0:
            raise ValueError("Mint amount must be non-negative: {}".format(amount))
        self._credit(holder, asset, amount)

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        """Move amount of asset from sender to recipient.

        Raises TransferFailed on negative amounts, insufficient balance or
        a sender that is receive-only.
        """
        if amount < 0:
            raise TransferFailed("negative transfer amount: {}".format(amount))
        if sender in self._receive_only:
            raise TransferFailed("{} is receive-only".format(sender))

        balance = self.balance_of(sender, asset)
        if balance < amount:
            raise TransferFailed(
                "insufficient {} balance for {}: {} < {}".format(asset, sender, balance, amount)
            )

        self._balances[(sender, asset)] = balance - amount
        self._credit(recipient, asset, amount)
        logger.debug("transfer %s %d: %s -> %s", asset, amount, sender, recipient)

    def _credit(self, holder: str, asset: str, amount: int) -> None:
        key = (holder, asset)
        self._balances[key] = self._balances.get(key, 0) + amount
        self._received[key] = self._received.get(key, 0) + amount

    def snapshot(self) -> Any:
        return dict(self._balances), dict(self._received)

    def restore(self, state: Any) -> None:
        balances, received = state
        self._balances = dict(balances)
        self._received = dict(received)


@contextmanager
def atomic(*participants: Any) -> Iterator[None]:
    """Run a block as one indivisible unit.

    Each participant must expose ``snapshot()`` and ``restore(state)``.
    On any exception every participant is restored (in reverse order) and
    the exception propagates unchanged.
    """
    seen = set()  # type: Set[int]
    unique = []  # type: List[Any]
    for p in participants:
        if id(p) not in seen:
            seen.add(id(p))
            unique.append(p)

    states = [(p, p.snapshot()) for p in unique]
    try:
        yield
    except BaseException:
        for p, state in reversed(states):
            p.restore(state)
        logger.debug("atomic unit rolled back (%d participants)", len(states))
        raise
