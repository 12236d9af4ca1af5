# Overview: Pure stock ledger rules (movement application, replay, classification); no database access.

"""
Stock Ledger Invariants (authoritative)

- A ledger entry's quantity equals the replay of its movements from zero.
- Quantity never goes negative:
    in          -> quantity + n
    out         -> max(0, quantity - n)
    adjustment  -> n (absolute, n >= 0)
    transfer    -> max(0, quantity + n) where n is a signed delta
- Stock status precedence: out_of_stock > low_stock > overstock > in_stock.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class MovementType(str, Enum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"


class StockStatus(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"
    OVERSTOCK = "overstock"
    IN_STOCK = "in_stock"


ALERT_STATUSES = {StockStatus.OUT_OF_STOCK, StockStatus.LOW_STOCK}


def parse_movement_type(value) -> MovementType:
    if isinstance(value, MovementType):
        return value
    try:
        return MovementType(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(t.value for t in MovementType)
        raise ValueError(f"Invalid movement type {value!r}. Must be one of: {allowed}")


def next_quantity(current: int, movement_type: MovementType, quantity: int) -> int:
    """Quantity after applying one movement to `current`."""
    if movement_type is MovementType.IN:
        return current + quantity
    if movement_type is MovementType.OUT:
        return max(0, current - quantity)
    if movement_type is MovementType.ADJUSTMENT:
        return max(0, quantity)
    if movement_type is MovementType.TRANSFER:
        return max(0, current + quantity)
    raise ValueError(f"Unhandled movement type {movement_type!r}")


def replay_movements(movements: Iterable) -> int:
    """
    Recompute on-hand quantity from zero.

    Accepts StockMovement rows or any objects/dicts exposing `type` and
    `quantity`, in chronological order.
    """
    quantity = 0
    for movement in movements:
        if isinstance(movement, dict):
            mtype, mqty = movement["type"], movement["quantity"]
        else:
            mtype, mqty = movement.type, movement.quantity
        quantity = next_quantity(quantity, parse_movement_type(mtype), int(mqty))
    return quantity


def classify(quantity: int, reorder_level: int, max_stock: int) -> StockStatus:
    if quantity == 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= reorder_level:
        return StockStatus.LOW_STOCK
    if quantity >= max_stock:
        return StockStatus.OVERSTOCK
    return StockStatus.IN_STOCK


def classify_entry(entry) -> StockStatus:
    return classify(entry.quantity, entry.reorder_level, entry.max_stock)


def needs_reorder(entry) -> bool:
    return entry.quantity <= entry.reorder_level
