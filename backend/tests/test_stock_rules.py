# Overview: Pytest coverage for the pure stock ledger rules (movement math, replay, classification).

"""
Stock rule tests.

No database: these functions are pure and total.
"""

import random

import pytest

from retailops.services.stock_rules import (
    MovementType,
    StockStatus,
    classify,
    needs_reorder,
    next_quantity,
    parse_movement_type,
    replay_movements,
)


class TestNextQuantity:
    def test_in_adds(self):
        assert next_quantity(5, MovementType.IN, 3) == 8

    def test_out_subtracts(self):
        assert next_quantity(5, MovementType.OUT, 3) == 2

    def test_out_floors_at_zero(self):
        assert next_quantity(5, MovementType.OUT, 8) == 0

    def test_adjustment_is_absolute(self):
        assert next_quantity(5, MovementType.ADJUSTMENT, 42) == 42
        assert next_quantity(5, MovementType.ADJUSTMENT, 0) == 0

    def test_transfer_applies_signed_delta(self):
        assert next_quantity(5, MovementType.TRANSFER, 4) == 9
        assert next_quantity(5, MovementType.TRANSFER, -3) == 2

    def test_transfer_floors_at_zero(self):
        assert next_quantity(5, MovementType.TRANSFER, -9) == 0


class TestParseMovementType:
    def test_accepts_values_case_insensitively(self):
        assert parse_movement_type("IN") is MovementType.IN
        assert parse_movement_type(" adjustment ") is MovementType.ADJUSTMENT

    def test_rejects_unknown(self):
        with pytest.raises(ValueError):
            parse_movement_type("return")


class TestReplay:
    def test_empty_log_is_zero(self):
        assert replay_movements([]) == 0

    def test_replay_follows_floor_rules(self):
        movements = [
            {"type": "in", "quantity": 5},
            {"type": "out", "quantity": 8},
            {"type": "in", "quantity": 10},
            {"type": "transfer", "quantity": -4},
            {"type": "adjustment", "quantity": 3},
            {"type": "out", "quantity": 1},
        ]
        assert replay_movements(movements) == 2

    def test_replay_never_negative(self):
        rng = random.Random(1234)
        for _ in range(200):
            quantity = 0
            log = []
            for _ in range(rng.randint(1, 25)):
                mtype = rng.choice(list(MovementType))
                if mtype is MovementType.TRANSFER:
                    qty = rng.choice([-1, 1]) * rng.randint(1, 50)
                elif mtype is MovementType.ADJUSTMENT:
                    qty = rng.randint(0, 50)
                else:
                    qty = rng.randint(1, 50)
                log.append({"type": mtype.value, "quantity": qty})
                quantity = next_quantity(quantity, mtype, qty)
                assert quantity >= 0
            assert replay_movements(log) == quantity


class TestClassify:
    def test_low_then_out_scenario(self):
        """Restock 5 with reorder 10 is low; selling 8 empties it."""
        quantity = next_quantity(0, MovementType.IN, 5)
        assert classify(quantity, 10, 100) is StockStatus.LOW_STOCK

        quantity = next_quantity(quantity, MovementType.OUT, 8)
        assert quantity == 0
        assert classify(quantity, 10, 100) is StockStatus.OUT_OF_STOCK

    @pytest.mark.parametrize(
        "quantity,reorder,max_stock,expected",
        [
            (0, 10, 100, StockStatus.OUT_OF_STOCK),
            (0, 0, 0, StockStatus.OUT_OF_STOCK),
            (10, 10, 100, StockStatus.LOW_STOCK),
            (1, 10, 100, StockStatus.LOW_STOCK),
            (11, 10, 100, StockStatus.IN_STOCK),
            (100, 10, 100, StockStatus.OVERSTOCK),
            (5, 10, 4, StockStatus.LOW_STOCK),
        ],
    )
    def test_precedence(self, quantity, reorder, max_stock, expected):
        assert classify(quantity, reorder, max_stock) is expected

    def test_partition_is_total(self):
        for quantity in range(0, 60):
            for reorder in range(0, 30, 3):
                for max_stock in range(0, 60, 7):
                    status = classify(quantity, reorder, max_stock)
                    assert status in set(StockStatus)
                    if quantity == 0:
                        assert status is StockStatus.OUT_OF_STOCK
                    elif quantity <= reorder:
                        assert status is StockStatus.LOW_STOCK
                    elif quantity >= max_stock:
                        assert status is StockStatus.OVERSTOCK
                    else:
                        assert status is StockStatus.IN_STOCK


class _Entry:
    def __init__(self, quantity, reorder_level):
        self.quantity = quantity
        self.reorder_level = reorder_level


def test_needs_reorder_includes_threshold():
    assert needs_reorder(_Entry(10, 10))
    assert not needs_reorder(_Entry(11, 10))
