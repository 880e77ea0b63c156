"""FeeHarvester — pull accrued trading fees into engine custody.

Implements:
- Two incompatible custodian generations behind one harvest(source) contract
  - V1: collect_fees(recipient, position_id), batch over (custodian, position) pairs
  - V2: collect_fees(position_id) / collect_rewards, recipient pre-registered
- Owner-gated registry of named fee sources with a default
- Permissionless harvesting (funds only ever move into custody)
- PAPER custodians for dry runs
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from buyburn.config_store import ConfigStore
from buyburn.constants import ENGINE_ADDRESS
from buyburn.errors import InvalidFeeSourceConfiguration
from buyburn.ledger import AssetLedger

logger = logging.getLogger(__name__)

GENERATION_1 = 1
GENERATION_2 = 2


# ── Custodian capability interfaces ──────────────────────────────────────────

class FeeCustodianV1(ABC):
    """First generation: the caller names the recipient."""

    @abstractmethod
    def collect_fees(self, recipient: str, position_id: int) -> None:
        """Send the position's accrued fees to recipient."""


class FeeCustodianV2(ABC):
    """Second generation: fees go to the custodian's registered recipient."""

    @abstractmethod
    def collect_fees(self, position_id: int) -> None:
        """Send the position's accrued fees to the registered recipient."""

    def collect_fees_batch(self, position_ids: Sequence[int]) -> None:
        for position_id in position_ids:
            self.collect_fees(position_id)

    def collect_rewards(self, position_id: int) -> None:
        self.collect_fees(position_id)


def collect_fees_batch_v1(
    pairs: Sequence[Tuple[FeeCustodianV1, int]],
    recipient: str,
) -> None:
    """V1 batch form: one recipient, many (custodian, position) pairs."""
    for custodian, position_id in pairs:
        custodian.collect_fees(recipient, position_id)


# ── Fee sources ───────────────────────────────────────────────────────────────

class FeeSource:
    """A custodian plus the position whose fees it holds."""

    def __init__(self, custodian: Any, position_id: int, generation: int) -> None:
        self.custodian = custodian
        self.position_id = position_id
        self.generation = generation

    def validate(self) -> None:
        """Raise InvalidFeeSourceConfiguration if the descriptor is unusable."""
        if self.custodian is None:
            raise InvalidFeeSourceConfiguration("fee source has no custodian")
        if isinstance(self.position_id, bool) or not isinstance(self.position_id, int) or self.position_id < 0:
            raise InvalidFeeSourceConfiguration(
                "invalid position id: {!r}".format(self.position_id)
            )
        if self.generation == GENERATION_1:
            expected = FeeCustodianV1  # type: Any
        elif self.generation == GENERATION_2:
            expected = FeeCustodianV2
        else:
            raise InvalidFeeSourceConfiguration(
                "unknown custodian generation: {!r}".format(self.generation)
            )
        if not isinstance(self.custodian, expected):
            raise InvalidFeeSourceConfiguration(
                "custodian {!r} does not implement generation {}".format(
                    self.custodian, self.generation,
                )
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "custodian": getattr(self.custodian, "address", repr(self.custodian)),
            "position_id": self.position_id,
            "generation": self.generation,
        }


class FeeSourceRegistry:
    """Named fee sources.  Mutations require the config owner."""

    def __init__(self, store: ConfigStore) -> None:
        self._store = store
        self._sources = OrderedDict()  # type: OrderedDict[str, FeeSource]
        self._default = None  # type: Optional[str]

    @property
    def names(self) -> List[str]:
        return list(self._sources.keys())

    @property
    def default_name(self) -> Optional[str]:
        return self._default

    def register(self, caller: str, name: str, source: FeeSource, make_default: bool = False) -> None:
        self._store.require_owner(caller, "register fee source")
        source.validate()
        self._sources[name] = source
        if make_default or self._default is None:
            self._default = name
        logger.info("Fee source registered: %s %s", name, source.to_dict())

    def remove(self, caller: str, name: str) -> None:
        self._store.require_owner(caller, "remove fee source")
        if name not in self._sources:
            raise InvalidFeeSourceConfiguration("unknown fee source: {}".format(name))
        del self._sources[name]
        if self._default == name:
            self._default = next(iter(self._sources), None)
        logger.info("Fee source removed: %s", name)

    def set_default(self, caller: str, name: str) -> None:
        self._store.require_owner(caller, "set default fee source")
        if name not in self._sources:
            raise InvalidFeeSourceConfiguration("unknown fee source: {}".format(name))
        self._default = name

    def get(self, name: Optional[str] = None) -> FeeSource:
        if not self._sources:
            raise InvalidFeeSourceConfiguration("no fee sources registered")
        key = name if name is not None else self._default
        if key is None or key not in self._sources:
            raise InvalidFeeSourceConfiguration("unknown fee source: {}".format(key))
        return self._sources[key]

    def custodians(self) -> List[Any]:
        return [s.custodian for s in self._sources.values()]

    def snapshot(self) -> Any:
        return OrderedDict(self._sources), self._default

    def restore(self, state: Any) -> None:
        sources, default = state
        self._sources = OrderedDict(sources)
        self._default = default


class FeeHarvester:
    """Collects fees from registered sources into the engine's custody."""

    def __init__(self, registry: FeeSourceRegistry, recipient: str = ENGINE_ADDRESS) -> None:
        self.registry = registry
        self.recipient = recipient

    def harvest(self, source: FeeSource) -> None:
        source.validate()
        if source.generation == GENERATION_1:
            source.custodian.collect_fees(self.recipient, source.position_id)
        else:
            source.custodian.collect_fees(source.position_id)
        logger.debug("Harvested %s", source.to_dict())

    def harvest_named(self, name: Optional[str] = None) -> FeeSource:
        source = self.registry.get(name)
        self.harvest(source)
        return source

    def harvest_batch(self, names: Iterable[str]) -> List[FeeSource]:
        """Harvest many sources, using each generation's batch form.

        All sources are resolved and validated before any custodian is called.
        """
        sources = [self.registry.get(n) for n in names]
        if not sources:
            raise InvalidFeeSourceConfiguration("empty fee source batch")
        for s in sources:
            s.validate()

        v1_pairs = [(s.custodian, s.position_id) for s in sources if s.generation == GENERATION_1]
        if v1_pairs:
            collect_fees_batch_v1(v1_pairs, self.recipient)

        v2_groups = OrderedDict()  # type: OrderedDict[int, Tuple[FeeCustodianV2, List[int]]]
        for s in sources:
            if s.generation == GENERATION_2:
                v2_groups.setdefault(id(s.custodian), (s.custodian, []))[1].append(s.position_id)
        for custodian, position_ids in v2_groups.values():
            custodian.collect_fees_batch(position_ids)

        logger.info("Harvested batch of %d fee sources", len(sources))
        return sources


# ── PAPER custodians ──────────────────────────────────────────────────────────

class _PaperCustodianMixin:
    """Shared accrual bookkeeping for paper custodians."""

    ledger = None  # type: AssetLedger
    address = ""

    def _init_accruals(self) -> None:
        self._owed = {}  # type: Dict[int, Dict[str, int]]

    def open_position(self, position_id: int) -> None:
        self._owed.setdefault(position_id, {})

    def accrue(self, position_id: int, asset: str, amount: int) -> None:
        """Simulate trading-fee accrual on a position."""
        self.ledger.mint(asset, self.address, amount)
        owed = self._owed.setdefault(position_id, {})
        owed[asset] = owed.get(asset, 0) + amount

    def owed(self, position_id: int) -> Dict[str, int]:
        return dict(self._owed.get(position_id, {}))

    def _pay_out(self, recipient: str, position_id: int) -> Dict[str, int]:
        if position_id not in self._owed:
            raise InvalidFeeSourceConfiguration("unknown position id: {}".format(position_id))
        paid = self._owed[position_id]
        self._owed[position_id] = {}
        for asset, amount in sorted(paid.items()):
            if amount:
                self.ledger.transfer(asset, self.address, recipient, amount)
        return paid

    def snapshot(self) -> Any:
        return {pid: dict(owed) for pid, owed in self._owed.items()}

    def restore(self, state: Any) -> None:
        self._owed = {pid: dict(owed) for pid, owed in state.items()}


class PaperCustodianV1(_PaperCustodianMixin, FeeCustodianV1):
    def __init__(self, ledger: AssetLedger, address: str) -> None:
        self.ledger = ledger
        self.address = address
        self._init_accruals()

    def collect_fees(self, recipient: str, position_id: int) -> None:
        self._pay_out(recipient, position_id)


class PaperCustodianV2(_PaperCustodianMixin, FeeCustodianV2):
    def __init__(self, ledger: AssetLedger, address: str, recipient: str) -> None:
        self.ledger = ledger
        self.address = address
        self.recipient = recipient
        self._init_accruals()

    def collect_fees(self, position_id: int) -> None:
        self._pay_out(self.recipient, position_id)
