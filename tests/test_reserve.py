"""
Reserve ledger tests.

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from spot.hardening import InvariantViolation
from spot.ledger import TokenLedger
from spot.reserve import ReserveLedger


@pytest.fixture
def ledger():
    return TokenLedger()


def make_reserve(ledger, dust=0):
    return ReserveLedger(lambda asset: ledger.balance_of(asset, "P"), dust_threshold=dust)


class TestMembership:

    def test_sync_adds_and_removes(self, ledger):
        reserve = make_reserve(ledger)
        ledger.mint("A", "P", 10)
        assert reserve.sync("A") is True
        assert reserve.contains("A")

        ledger.burn("A", "P", 10)
        assert reserve.sync("A") is False
        assert not reserve.contains("A")
        assert len(reserve) == 0

    def test_dust_floor(self, ledger):
        reserve = make_reserve(ledger, dust=5)
        ledger.mint("A", "P", 5)
        assert reserve.sync("A") is False
        ledger.mint("A", "P", 1)
        assert reserve.sync("A") is True

    def test_insertion_order(self, ledger):
        reserve = make_reserve(ledger)
        for asset in ("C", "A", "B"):
            ledger.mint(asset, "P", 1)
            reserve.sync(asset)
        assert reserve.assets() == ["C", "A", "B"]
        assert reserve.at(1) == "A"

        ledger.burn("C", "P", 1)
        reserve.sync("C")
        ledger.mint("C", "P", 1)
        reserve.sync("C")
        assert list(reserve) == ["A", "B", "C"]

    def test_negative_balance_is_an_invariant_violation(self, ledger):
        reserve = make_reserve(ledger)
        with pytest.raises(InvariantViolation):
            reserve.sync_asset("A", -1)

    def test_negative_dust_threshold_rejected(self, ledger):
        with pytest.raises(InvariantViolation):
            make_reserve(ledger, dust=-1)


class TestValuation:

    def test_aggregate_value(self, ledger):
        reserve = make_reserve(ledger)
        ledger.mint("A", "P", 10)
        ledger.mint("B", "P", 20)
        reserve.sync("A")
        reserve.sync("B")
        assert reserve.aggregate_value(lambda asset, bal: bal * 2) == 60

    def test_aggregate_skips_stale_dust(self, ledger):
        reserve = make_reserve(ledger, dust=5)
        ledger.mint("A", "P", 10)
        ledger.mint("B", "P", 10)
        reserve.sync("A")
        reserve.sync("B")

        # balance drops without a sync
        ledger.burn("B", "P", 7)
        assert reserve.aggregate_value(lambda asset, bal: bal) == 10
        assert reserve.verify() == ["B: tracked with balance 3 <= dust 5"]

        reserve.sync("B")
        assert reserve.verify() == []

    def test_snapshot_restore(self, ledger):
        reserve = make_reserve(ledger)
        ledger.mint("A", "P", 1)
        reserve.sync("A")
        state = reserve.snapshot()

        ledger.mint("B", "P", 1)
        reserve.sync("B")
        reserve.restore(state)
        assert reserve.assets() == ["A"]
