# Overview: Service-layer operations for the stock ledger; the only code that changes on-hand quantity.

from __future__ import annotations

from flask import current_app
from sqlalchemy import and_, case, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, StockLedgerEntry, StockMovement, Store
from ..validation import (
    MAX_LINE_QUANTITY,
    NotFoundError,
    ValidationError,
    coerce_int,
)
from retailops.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .notification_service import EVENT_STOCK_LOW, EVENT_STOCK_UPDATED, queue_event
from .stock_rules import (
    ALERT_STATUSES,
    MovementType,
    StockStatus,
    classify_entry,
    parse_movement_type,
    replay_movements,
)
"""
Stock Ledger Invariants (authoritative)

- One entry per (store, product); created lazily at quantity 0 on the first
  stock event for the pair, including an 'out' against nothing.
- quantity is changed by exactly one conditional UPDATE per movement, and the
  StockMovement row is inserted in the same DB transaction.
- No writer computes a new quantity in Python from a previously read value.
- Checkout decrements use compare-and-decrement (WHERE quantity >= n); a
  zero-rowcount result means a concurrent checkout won the stock.
"""


# =============================================================================
# LOOKUPS
# =============================================================================

def _ensure_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFoundError(f"Store {store_id} not found")
    return store


def _ensure_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _find_entry(store_id: int, product_id: int, *, lock: bool = False) -> StockLedgerEntry | None:
    query = db.session.query(StockLedgerEntry).filter_by(store_id=store_id, product_id=product_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_or_create_entry(store_id: int, product_id: int) -> StockLedgerEntry:
    """
    Return the ledger entry for (store, product), creating it at quantity 0.

    Must be called inside an open write transaction. A concurrent creator is
    absorbed by the unique constraint: the savepoint is rolled back and the
    winner's row is returned.
    """
    entry = _find_entry(store_id, product_id, lock=True)
    if entry is not None:
        return entry

    config = current_app.config
    try:
        with db.session.begin_nested():
            entry = StockLedgerEntry(
                store_id=store_id,
                product_id=product_id,
                quantity=0,
                reorder_level=config.get("LEDGER_DEFAULT_REORDER_LEVEL", 10),
                max_stock=config.get("LEDGER_DEFAULT_MAX_STOCK", 100),
            )
            db.session.add(entry)
        return entry
    except IntegrityError:
        entry = _find_entry(store_id, product_id, lock=True)
        if entry is None:
            raise
        return entry


def get_entry(store_id: int, product_id: int) -> StockLedgerEntry:
    entry = _find_entry(store_id, product_id)
    if entry is None:
        raise NotFoundError(f"No stock ledger for product {product_id} in store {store_id}")
    return entry


# =============================================================================
# MOVEMENTS
# =============================================================================

def _validate_quantity(movement_type: MovementType, quantity) -> int:
    qty = coerce_int(quantity, "quantity")

    if movement_type in (MovementType.IN, MovementType.OUT) and qty <= 0:
        raise ValidationError(f"quantity must be > 0 for '{movement_type.value}' movements")
    if movement_type is MovementType.ADJUSTMENT and qty < 0:
        raise ValidationError("quantity must be >= 0 for 'adjustment' movements")
    if movement_type is MovementType.TRANSFER and qty == 0:
        raise ValidationError("quantity must be non-zero for 'transfer' movements")
    if abs(qty) > MAX_LINE_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_LINE_QUANTITY}")

    return qty


def _quantity_expression(movement_type: MovementType, qty: int):
    """SQL expression for the new quantity; mirrors stock_rules.next_quantity."""
    current = StockLedgerEntry.quantity
    if movement_type is MovementType.IN:
        return current + qty
    if movement_type is MovementType.OUT:
        return case((current < qty, 0), else_=current - qty)
    if movement_type is MovementType.ADJUSTMENT:
        return qty
    return case((current + qty < 0, 0), else_=current + qty)


def _record_movement(
    entry: StockLedgerEntry,
    movement_type: MovementType,
    qty: int,
    *,
    reason: str | None,
    reference: str | None,
    performed_by: int | None,
    now,
) -> StockMovement:
    # Re-read the row the UPDATE just wrote; never trust the identity map here.
    entry = db.session.get(StockLedgerEntry, entry.id, populate_existing=True)

    movement = StockMovement(
        entry_id=entry.id,
        store_id=entry.store_id,
        product_id=entry.product_id,
        type=movement_type.value,
        quantity=qty,
        reason=reason,
        reference=reference,
        timestamp=now,
        performed_by_user_id=performed_by,
        balance_after=entry.quantity,
    )
    db.session.add(movement)
    db.session.flush()

    status = classify_entry(entry)
    payload = {
        "store_id": entry.store_id,
        "product_id": entry.product_id,
        "movement_type": movement_type.value,
        "quantity": entry.quantity,
        "stock_status": status.value,
        "reference": reference,
    }
    queue_event(EVENT_STOCK_UPDATED, payload)
    if status in ALERT_STATUSES:
        queue_event(EVENT_STOCK_LOW, {**payload, "reorder_level": entry.reorder_level})

    return movement


def apply_movement_in_transaction(
    store_id: int,
    product_id: int,
    *,
    movement_type,
    quantity,
    reason: str | None = None,
    reference: str | None = None,
    performed_by: int | None = None,
) -> StockMovement:
    """
    Apply one movement inside the caller's open write transaction.

    Used by delivery reconciliation and by apply_movement. Does not commit.
    """
    try:
        mtype = parse_movement_type(movement_type)
    except ValueError as exc:
        raise ValidationError(str(exc))
    qty = _validate_quantity(mtype, quantity)

    _ensure_store(store_id)
    _ensure_product(product_id)

    entry = get_or_create_entry(store_id, product_id)
    now = utcnow()

    values = {
        "quantity": _quantity_expression(mtype, qty),
        "updated_by_user_id": performed_by,
    }
    if mtype is MovementType.IN:
        values["last_restocked_at"] = now
    elif mtype is MovementType.OUT:
        values["last_sold_at"] = now

    db.session.execute(
        update(StockLedgerEntry)
        .where(StockLedgerEntry.id == entry.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    return _record_movement(
        entry,
        mtype,
        qty,
        reason=reason,
        reference=reference,
        performed_by=performed_by,
        now=now,
    )


def apply_movement(
    store_id: int,
    product_id: int,
    *,
    movement_type,
    quantity,
    reason: str | None = None,
    reference: str | None = None,
    performed_by: int | None = None,
) -> StockLedgerEntry:
    """
    Append a movement to the (store, product) ledger and update its quantity.

    in adds, out subtracts floored at zero, adjustment sets an absolute
    quantity and transfer applies a signed delta floored at zero. Returns the
    updated entry.
    """
    def _op():
        movement = apply_movement_in_transaction(
            store_id,
            product_id,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            reference=reference,
            performed_by=performed_by,
        )
        return movement.entry_id

    entry_id = run_in_transaction(_op)
    return db.session.get(StockLedgerEntry, entry_id)


def decrement_for_sale(
    entry: StockLedgerEntry,
    quantity: int,
    *,
    reference: str,
    performed_by: int | None = None,
    reason: str = "Customer purchase",
) -> StockMovement | None:
    """
    Compare-and-decrement for checkout, inside the caller's transaction.

    Returns the 'out' movement, or None when the entry no longer holds
    `quantity` units (nothing is written in that case).
    """
    now = utcnow()
    result = db.session.execute(
        update(StockLedgerEntry)
        .where(
            StockLedgerEntry.id == entry.id,
            StockLedgerEntry.quantity >= quantity,
        )
        .values(
            quantity=StockLedgerEntry.quantity - quantity,
            last_sold_at=now,
            updated_by_user_id=performed_by,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None

    return _record_movement(
        entry,
        MovementType.OUT,
        quantity,
        reason=reason,
        reference=reference,
        performed_by=performed_by,
        now=now,
    )


def list_movements(
    store_id: int,
    product_id: int | None = None,
    *,
    movement_type: str | None = None,
    reference: str | None = None,
    limit: int = 100,
) -> list[StockMovement]:
    """Movements for a store, newest first."""
    query = db.session.query(StockMovement).filter(StockMovement.store_id == store_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        try:
            query = query.filter(StockMovement.type == parse_movement_type(movement_type).value)
        except ValueError as exc:
            raise ValidationError(str(exc))
    if reference is not None:
        query = query.filter(StockMovement.reference == reference)
    return query.order_by(StockMovement.id.desc()).limit(limit).all()


# =============================================================================
# STATUS QUERIES
# =============================================================================

def _status_clause(status: StockStatus):
    """SQL filter matching stock_rules.classify exactly, including its precedence."""
    qty = StockLedgerEntry.quantity
    reorder = StockLedgerEntry.reorder_level
    if status is StockStatus.OUT_OF_STOCK:
        return qty == 0
    if status is StockStatus.LOW_STOCK:
        return and_(qty > 0, qty <= reorder)
    if status is StockStatus.OVERSTOCK:
        return and_(qty > 0, qty > reorder, qty >= StockLedgerEntry.max_stock)
    return and_(qty > 0, qty > reorder, qty < StockLedgerEntry.max_stock)


def _parse_status(value) -> StockStatus:
    if isinstance(value, StockStatus):
        return value
    try:
        return StockStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in StockStatus)
        raise ValidationError(f"Invalid stock status {value!r}. Must be one of: {allowed}")


def list_store_inventory(store_id: int, status=None) -> list[StockLedgerEntry]:
    _ensure_store(store_id)
    query = db.session.query(StockLedgerEntry).filter(StockLedgerEntry.store_id == store_id)
    if status is not None:
        query = query.filter(_status_clause(_parse_status(status)))
    return query.order_by(StockLedgerEntry.product_id.asc()).all()


def find_low_stock(store_id: int) -> list[StockLedgerEntry]:
    return list_store_inventory(store_id, StockStatus.LOW_STOCK)


def find_out_of_stock(store_id: int) -> list[StockLedgerEntry]:
    return list_store_inventory(store_id, StockStatus.OUT_OF_STOCK)


def find_overstock(store_id: int) -> list[StockLedgerEntry]:
    return list_store_inventory(store_id, StockStatus.OVERSTOCK)


# =============================================================================
# SETTINGS & VERIFICATION
# =============================================================================

def update_reorder_settings(
    store_id: int,
    product_id: int,
    *,
    reorder_level=None,
    max_stock=None,
    updated_by: int | None = None,
) -> StockLedgerEntry:
    """Change the reorder threshold and/or max stock of an existing entry."""
    if reorder_level is None and max_stock is None:
        raise ValidationError("Provide reorder_level and/or max_stock")

    new_reorder = coerce_int(reorder_level, "reorder_level") if reorder_level is not None else None
    new_max = coerce_int(max_stock, "max_stock") if max_stock is not None else None
    if new_reorder is not None and new_reorder < 0:
        raise ValidationError("reorder_level must be >= 0")
    if new_max is not None and new_max < 0:
        raise ValidationError("max_stock must be >= 0")

    def _op():
        entry = _find_entry(store_id, product_id, lock=True)
        if entry is None:
            raise NotFoundError(f"No stock ledger for product {product_id} in store {store_id}")

        reorder = new_reorder if new_reorder is not None else entry.reorder_level
        maximum = new_max if new_max is not None else entry.max_stock
        if maximum < reorder:
            raise ValidationError("max_stock must be >= reorder_level")

        entry.reorder_level = reorder
        entry.max_stock = maximum
        entry.updated_by_user_id = updated_by
        db.session.flush()
        return entry.id

    entry_id = run_in_transaction(_op)
    return db.session.get(StockLedgerEntry, entry_id)


def verify_entry(entry: StockLedgerEntry) -> dict:
    """Replay an entry's movements and compare with the stored quantity."""
    movements = (
        db.session.query(StockMovement)
        .filter(StockMovement.entry_id == entry.id)
        .order_by(StockMovement.id.asc())
        .all()
    )
    replayed = replay_movements(movements)
    return {
        "entry_id": entry.id,
        "store_id": entry.store_id,
        "product_id": entry.product_id,
        "quantity": entry.quantity,
        "replayed_quantity": replayed,
        "movement_count": len(movements),
        "ok": replayed == entry.quantity,
    }


def verify_ledgers(store_id: int | None = None) -> dict:
    query = db.session.query(StockLedgerEntry)
    if store_id is not None:
        query = query.filter(StockLedgerEntry.store_id == store_id)

    results = [verify_entry(entry) for entry in query.order_by(StockLedgerEntry.id.asc())]
    return {
        "checked": len(results),
        "mismatches": [r for r in results if not r["ok"]],
    }

