# Overview: Manager -> supplier purchase order lifecycle (create, approve, reject, cancel, listing).

from __future__ import annotations

from ..extensions import db
from ..models import ManagerOrder, ManagerOrderLine, Store, User
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_SUPPLIER
from ..validation import NotFoundError, PermissionDeniedError, ValidationError, parse_line_items
from retailops.time_utils import utcnow
from .catalog_service import merge_lines, price_lines
from .concurrency import run_in_transaction
from .order_lifecycle import (
    DeliveryStatus,
    ManagerOrderStatus,
    append_timeline,
    clean_notes,
    get_actor,
    get_order,
    lock_order,
    require_strictly_future,
    transition,
)
from .sequence_service import MANAGER_ORDER_PREFIX, next_order_number


def _resolve_store(manager: User, store_id) -> int:
    if manager.role == ROLE_MANAGER:
        if manager.store_id is None:
            raise ValidationError("Manager is not assigned to a store")
        if store_id is not None and store_id != manager.store_id:
            raise PermissionDeniedError("Managers can only order for their own store")
        return manager.store_id
    if manager.role == ROLE_ADMIN:
        if store_id is None:
            raise ValidationError("store_id is required")
        return store_id
    raise PermissionDeniedError("Only store managers can create supplier orders")


def _require_supplier(supplier_id: int) -> User:
    supplier = db.session.get(User, supplier_id)
    if supplier is None or supplier.role != ROLE_SUPPLIER:
        raise ValidationError(f"User {supplier_id} is not a supplier")
    if not supplier.is_active:
        raise ValidationError(f"Supplier {supplier_id} is inactive")
    return supplier


def create_manager_order(
    manager_id: int,
    supplier_id: int,
    items,
    *,
    store_id: int | None = None,
    expected_delivery_at=None,
    notes=None,
) -> ManagerOrder:
    """
    Create a pending purchase order.

    Every product must exist, be active, be supplied by `supplier_id` and be
    authorized for the ordering store. Supplier stock is not checked. Totals
    are computed from catalog prices.
    """
    lines = merge_lines(parse_line_items(items))
    manager_notes = clean_notes(notes)
    expected = None
    if expected_delivery_at not in (None, ""):
        expected = require_strictly_future(expected_delivery_at, "expected_delivery_at")

    def _op():
        manager = get_actor(manager_id)
        order_store_id = _resolve_store(manager, store_id)
        store = db.session.get(Store, order_store_id)
        if store is None:
            raise NotFoundError(f"Store {order_store_id} not found")
        supplier = _require_supplier(supplier_id)

        priced, total = price_lines(lines)
        for line in priced:
            product = line["product"]
            if not product.is_active:
                raise ValidationError(f"Product {product.id} ({product.name}) is inactive")
            if product.supplier_id != supplier.id:
                raise ValidationError(
                    f"Product {product.id} ({product.name}) is not supplied by {supplier.display_name}"
                )
            if not product.is_sold_in(order_store_id):
                raise ValidationError(
                    f"Product {product.id} ({product.name}) is not authorized for store {order_store_id}"
                )

        order = ManagerOrder(
            order_number=next_order_number(MANAGER_ORDER_PREFIX),
            manager_id=manager.id,
            supplier_id=supplier.id,
            store_id=order_store_id,
            status=ManagerOrderStatus.PENDING.value,
            total_amount_cents=total,
            order_date=utcnow(),
            expected_delivery_at=expected,
            manager_notes=manager_notes,
            delivery_status=DeliveryStatus.PENDING.value,
            is_active=True,
        )
        db.session.add(order)
        db.session.flush()

        for line in priced:
            db.session.add(ManagerOrderLine(
                order_id=order.id,
                product_id=line["product_id"],
                product_name=line["product"].name,
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                total_price_cents=line["total_price_cents"],
                delivered_quantity=0,
                is_delivered=False,
            ))

        append_timeline(order, order.status, manager.id, "Order created")
        db.session.flush()
        return order.id

    return get_order(ManagerOrder, run_in_transaction(_op))


def _require_order_supplier(order: ManagerOrder, supplier_id: int) -> None:
    if order.supplier_id != supplier_id:
        raise PermissionDeniedError("Only the order's supplier can approve or reject it")


def approve_manager_order(order_id: int, supplier_id: int, expected_delivery_at, *, notes=None) -> ManagerOrder:
    """Supplier approval. Requires a strictly future expected delivery date."""
    expected = require_strictly_future(expected_delivery_at, "expected_delivery_at")
    supplier_notes = clean_notes(notes)

    def _op():
        order = lock_order(ManagerOrder, order_id)
        _require_order_supplier(order, supplier_id)

        transition(order, ManagerOrderStatus.APPROVED, supplier_id, supplier_notes)
        order.expected_delivery_at = expected
        if supplier_notes:
            order.supplier_notes = supplier_notes
        return order.id

    return get_order(ManagerOrder, run_in_transaction(_op))


def reject_manager_order(order_id: int, supplier_id: int, *, notes=None) -> ManagerOrder:
    supplier_notes = clean_notes(notes)

    def _op():
        order = lock_order(ManagerOrder, order_id)
        _require_order_supplier(order, supplier_id)

        transition(order, ManagerOrderStatus.REJECTED, supplier_id, supplier_notes)
        order.expected_delivery_at = None
        if supplier_notes:
            order.supplier_notes = supplier_notes
        return order.id

    return get_order(ManagerOrder, run_in_transaction(_op))


def cancel_manager_order(order_id: int, manager_id: int, *, notes=None) -> ManagerOrder:
    """Creator cancels while pending. The row is kept with is_active=False."""
    reason = clean_notes(notes)

    def _op():
        order = lock_order(ManagerOrder, order_id)
        if order.manager_id != manager_id:
            raise PermissionDeniedError("Only the manager who created the order can cancel it")

        transition(order, ManagerOrderStatus.CANCELLED, manager_id, reason)
        order.is_active = False
        return order.id

    return get_order(ManagerOrder, run_in_transaction(_op))


def get_manager_order(order_id: int) -> ManagerOrder:
    return get_order(ManagerOrder, order_id)


def list_manager_orders(
    *,
    manager_id: int | None = None,
    supplier_id: int | None = None,
    store_id: int | None = None,
    status: str | None = None,
    delivery_status: str | None = None,
    include_inactive: bool = True,
) -> list[ManagerOrder]:
    query = db.session.query(ManagerOrder)
    if manager_id is not None:
        query = query.filter(ManagerOrder.manager_id == manager_id)
    if supplier_id is not None:
        query = query.filter(ManagerOrder.supplier_id == supplier_id)
    if store_id is not None:
        query = query.filter(ManagerOrder.store_id == store_id)
    if status is not None:
        try:
            query = query.filter(ManagerOrder.status == ManagerOrderStatus(status).value)
        except ValueError:
            allowed = ", ".join(s.value for s in ManagerOrderStatus)
            raise ValidationError(f"Invalid status {status!r}. Must be one of: {allowed}")
    if delivery_status is not None:
        try:
            query = query.filter(ManagerOrder.delivery_status == DeliveryStatus(delivery_status).value)
        except ValueError:
            allowed = ", ".join(s.value for s in DeliveryStatus)
            raise ValidationError(f"Invalid delivery_status {delivery_status!r}. Must be one of: {allowed}")
    if not include_inactive:
        query = query.filter(ManagerOrder.is_active.is_(True))
    return query.order_by(ManagerOrder.id.desc()).all()
