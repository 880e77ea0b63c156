"""Tests for fee sources, the registry and both custodian generations."""

from typing import List, Tuple

import pytest

from buyburn.config_store import ConfigStore, RiskParameters
from buyburn.constants import ENGINE_ADDRESS
from buyburn.errors import AccessDenied, InvalidFeeSourceConfiguration
from buyburn.harvest import (
    GENERATION_1,
    GENERATION_2,
    FeeCustodianV1,
    FeeCustodianV2,
    FeeHarvester,
    FeeSource,
    FeeSourceRegistry,
    PaperCustodianV1,
    PaperCustodianV2,
    collect_fees_batch_v1,
)
from buyburn.ledger import AssetLedger

OWNER = "owner"
BASE = "WETH"


class RecordingV1(FeeCustodianV1):
    def __init__(self) -> None:
        self.calls = []  # type: List[Tuple[str, int]]

    def collect_fees(self, recipient: str, position_id: int) -> None:
        self.calls.append((recipient, position_id))


class RecordingV2(FeeCustodianV2):
    def __init__(self) -> None:
        self.calls = []  # type: List[int]
        self.batches = []  # type: List[List[int]]

    def collect_fees(self, position_id: int) -> None:
        self.calls.append(position_id)

    def collect_fees_batch(self, position_ids) -> None:
        self.batches.append(list(position_ids))


def _registry() -> FeeSourceRegistry:
    store = ConfigStore(owner=OWNER)
    store.initialize(OWNER, RiskParameters())
    return FeeSourceRegistry(store)


# ── FeeSource validation ──────────────────────────────────────────────────────

def test_generation_mismatch_rejected() -> None:
    with pytest.raises(InvalidFeeSourceConfiguration, match="does not implement"):
        FeeSource(RecordingV2(), 1, GENERATION_1).validate()
    with pytest.raises(InvalidFeeSourceConfiguration, match="does not implement"):
        FeeSource(RecordingV1(), 1, GENERATION_2).validate()


@pytest.mark.parametrize("custodian,position_id,generation", [
    (None, 1, GENERATION_1),
    ("custodian", -1, GENERATION_1),
    ("custodian", 1, 3),
])
def test_invalid_descriptors(custodian, position_id, generation) -> None:
    if custodian == "custodian":
        custodian = RecordingV1()
    with pytest.raises(InvalidFeeSourceConfiguration):
        FeeSource(custodian, position_id, generation).validate()


# ── Registry ──────────────────────────────────────────────────────────────────

def test_registry_first_source_is_default() -> None:
    reg = _registry()
    reg.register(OWNER, "a", FeeSource(RecordingV1(), 1, GENERATION_1))
    reg.register(OWNER, "b", FeeSource(RecordingV2(), 2, GENERATION_2))
    assert reg.default_name == "a"
    assert reg.names == ["a", "b"]
    reg.set_default(OWNER, "b")
    assert reg.get().generation == GENERATION_2


def test_registry_requires_owner() -> None:
    reg = _registry()
    with pytest.raises(AccessDenied):
        reg.register("mallory", "a", FeeSource(RecordingV1(), 1, GENERATION_1))
    reg.register(OWNER, "a", FeeSource(RecordingV1(), 1, GENERATION_1))
    with pytest.raises(AccessDenied):
        reg.remove("mallory", "a")
    with pytest.raises(AccessDenied):
        reg.set_default("mallory", "a")


def test_registry_rejects_invalid_source() -> None:
    reg = _registry()
    with pytest.raises(InvalidFeeSourceConfiguration):
        reg.register(OWNER, "bad", FeeSource(RecordingV2(), 1, GENERATION_1))
    assert reg.names == []


def test_empty_registry_fails() -> None:
    reg = _registry()
    with pytest.raises(InvalidFeeSourceConfiguration, match="no fee sources"):
        reg.get()


def test_unknown_name_fails() -> None:
    reg = _registry()
    reg.register(OWNER, "a", FeeSource(RecordingV1(), 1, GENERATION_1))
    with pytest.raises(InvalidFeeSourceConfiguration, match="unknown"):
        reg.get("zzz")


def test_remove_reassigns_default() -> None:
    reg = _registry()
    reg.register(OWNER, "a", FeeSource(RecordingV1(), 1, GENERATION_1))
    reg.register(OWNER, "b", FeeSource(RecordingV1(), 2, GENERATION_1))
    reg.remove(OWNER, "a")
    assert reg.default_name == "b"
    reg.remove(OWNER, "b")
    assert reg.default_name is None
    with pytest.raises(InvalidFeeSourceConfiguration):
        reg.get()


# ── Harvester ─────────────────────────────────────────────────────────────────

def test_v1_harvest_passes_engine_as_recipient() -> None:
    reg = _registry()
    v1 = RecordingV1()
    reg.register(OWNER, "a", FeeSource(v1, 7, GENERATION_1))
    FeeHarvester(reg).harvest_named()
    assert v1.calls == [(ENGINE_ADDRESS, 7)]


def test_v2_harvest_uses_implicit_recipient() -> None:
    reg = _registry()
    v2 = RecordingV2()
    reg.register(OWNER, "b", FeeSource(v2, 9, GENERATION_2))
    FeeHarvester(reg).harvest_named("b")
    assert v2.calls == [9]


def test_batch_groups_by_generation() -> None:
    reg = _registry()
    v1a, v1b, v2 = RecordingV1(), RecordingV1(), RecordingV2()
    reg.register(OWNER, "a", FeeSource(v1a, 1, GENERATION_1))
    reg.register(OWNER, "b", FeeSource(v1b, 2, GENERATION_1))
    reg.register(OWNER, "c", FeeSource(v2, 3, GENERATION_2))
    reg.register(OWNER, "d", FeeSource(v2, 4, GENERATION_2))

    harvested = FeeHarvester(reg).harvest_batch(["a", "b", "c", "d"])

    assert len(harvested) == 4
    assert v1a.calls == [(ENGINE_ADDRESS, 1)]
    assert v1b.calls == [(ENGINE_ADDRESS, 2)]
    assert v2.batches == [[3, 4]]


def test_batch_validates_before_collecting() -> None:
    reg = _registry()
    v1 = RecordingV1()
    reg.register(OWNER, "a", FeeSource(v1, 1, GENERATION_1))
    with pytest.raises(InvalidFeeSourceConfiguration):
        FeeHarvester(reg).harvest_batch(["a", "missing"])
    assert v1.calls == []


def test_empty_batch_fails() -> None:
    reg = _registry()
    reg.register(OWNER, "a", FeeSource(RecordingV1(), 1, GENERATION_1))
    with pytest.raises(InvalidFeeSourceConfiguration):
        FeeHarvester(reg).harvest_batch([])


def test_collect_fees_batch_v1_pairs() -> None:
    a, b = RecordingV1(), RecordingV1()
    collect_fees_batch_v1([(a, 1), (b, 2), (a, 3)], "recipient")
    assert a.calls == [("recipient", 1), ("recipient", 3)]
    assert b.calls == [("recipient", 2)]


def test_v2_collect_rewards_alias() -> None:
    v2 = RecordingV2()
    v2.collect_rewards(5)
    assert v2.calls == [5]


# ── PAPER custodians ──────────────────────────────────────────────────────────

def test_paper_custodians_pay_accrued_fees() -> None:
    ledger = AssetLedger()
    v1 = PaperCustodianV1(ledger, "cust1")
    v2 = PaperCustodianV2(ledger, "cust2", recipient=ENGINE_ADDRESS)
    v1.accrue(1, BASE, 100)
    v2.accrue(2, BASE, 50)

    v1.collect_fees(ENGINE_ADDRESS, 1)
    v2.collect_fees(2)

    assert ledger.balance_of(ENGINE_ADDRESS, BASE) == 150
    assert v1.owed(1) == {}
    v1.collect_fees(ENGINE_ADDRESS, 1)
    assert ledger.balance_of(ENGINE_ADDRESS, BASE) == 150


def test_paper_custodian_unknown_position() -> None:
    v1 = PaperCustodianV1(AssetLedger(), "cust1")
    with pytest.raises(InvalidFeeSourceConfiguration, match="unknown position"):
        v1.collect_fees(ENGINE_ADDRESS, 42)
