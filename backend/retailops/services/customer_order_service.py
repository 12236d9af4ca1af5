# Overview: Customer -> store order lifecycle (create, complete, reject, cancel, delivery estimate).

from __future__ import annotations

from ..extensions import db
from ..models import CustomerOrder, CustomerOrderLine, Store
from ..models.auth import ROLE_ADMIN, ROLE_CUSTOMER
from ..validation import NotFoundError, PermissionDeniedError, ValidationError, parse_line_items
from retailops.time_utils import to_utc_z, utcnow
from .catalog_service import merge_lines, price_lines, require_sellable
from .concurrency import run_in_transaction
from .order_lifecycle import (
    CustomerOrderStatus,
    append_timeline,
    clean_notes,
    ensure_not_terminal,
    get_actor,
    get_order,
    lock_order,
    require_store_actor,
    require_strictly_future,
    transition,
)
from .sequence_service import CUSTOMER_ORDER_PREFIX, next_order_number


def create_customer_order(customer_id: int, store_id: int, items, *, notes=None) -> CustomerOrder:
    """
    Place an order with a store.

    Prices come from the catalog; any client price is ignored. Stock is not
    reserved: the store completes or rejects the order later.
    """
    lines = merge_lines(parse_line_items(items))
    customer_notes = clean_notes(notes)

    def _op():
        customer = get_actor(customer_id)
        if customer.role not in (ROLE_CUSTOMER, ROLE_ADMIN):
            raise PermissionDeniedError("Only customers can place customer orders")

        store = db.session.get(Store, store_id)
        if store is None or not store.is_active:
            raise NotFoundError(f"Store {store_id} not found")

        priced, total = price_lines(lines)
        for line in priced:
            require_sellable(line["product"], store_id)

        order = CustomerOrder(
            order_number=next_order_number(CUSTOMER_ORDER_PREFIX),
            customer_id=customer.id,
            store_id=store_id,
            status=CustomerOrderStatus.RECEIVED.value,
            total_amount_cents=total,
            customer_notes=customer_notes,
            is_active=True,
        )
        db.session.add(order)
        db.session.flush()

        for line in priced:
            db.session.add(CustomerOrderLine(
                order_id=order.id,
                product_id=line["product_id"],
                product_name=line["product"].name,
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                total_price_cents=line["total_price_cents"],
            ))

        append_timeline(order, order.status, customer.id, "Order placed")
        db.session.flush()
        return order.id

    return get_order(CustomerOrder, run_in_transaction(_op))


def complete_customer_order(order_id: int, actor_id: int, *, notes=None) -> CustomerOrder:
    store_notes = clean_notes(notes)

    def _op():
        actor = get_actor(actor_id)
        order = lock_order(CustomerOrder, order_id)
        require_store_actor(actor, order.store_id)

        transition(order, CustomerOrderStatus.COMPLETED, actor.id, store_notes)
        order.actual_delivery_at = utcnow()
        if store_notes:
            order.store_notes = store_notes
        return order.id

    return get_order(CustomerOrder, run_in_transaction(_op))


def reject_customer_order(order_id: int, actor_id: int, *, notes=None) -> CustomerOrder:
    store_notes = clean_notes(notes)

    def _op():
        actor = get_actor(actor_id)
        order = lock_order(CustomerOrder, order_id)
        require_store_actor(actor, order.store_id)

        transition(order, CustomerOrderStatus.REJECTED, actor.id, store_notes)
        order.estimated_delivery_at = None
        if store_notes:
            order.store_notes = store_notes
        return order.id

    return get_order(CustomerOrder, run_in_transaction(_op))


def cancel_customer_order(order_id: int, customer_id: int, *, notes=None) -> CustomerOrder:
    """Customer cancels their own order while it is still 'Order Received'. Soft delete."""
    reason = clean_notes(notes)

    def _op():
        order = lock_order(CustomerOrder, order_id)
        if order.customer_id != customer_id:
            raise PermissionDeniedError("Only the customer who placed the order can cancel it")

        transition(order, CustomerOrderStatus.CANCELLED, customer_id, reason)
        order.is_active = False
        return order.id

    return get_order(CustomerOrder, run_in_transaction(_op))


def update_estimated_delivery(order_id: int, actor_id: int, estimated_delivery_at) -> CustomerOrder:
    """Set the store's delivery estimate; recorded on the timeline under the current status."""
    when = require_strictly_future(estimated_delivery_at, "estimated_delivery_at")

    def _op():
        actor = get_actor(actor_id)
        order = lock_order(CustomerOrder, order_id)
        require_store_actor(actor, order.store_id)
        ensure_not_terminal(order)
        order.estimated_delivery_at = when
        append_timeline(order, order.status, actor.id, f"Estimated delivery updated to {to_utc_z(when)}")
        db.session.flush()
        return order.id

    return get_order(CustomerOrder, run_in_transaction(_op))


def get_customer_order(order_id: int) -> CustomerOrder:
    return get_order(CustomerOrder, order_id)


def list_customer_orders(
    *,
    customer_id: int | None = None,
    store_id: int | None = None,
    status: str | None = None,
    include_inactive: bool = True,
) -> list[CustomerOrder]:
    query = db.session.query(CustomerOrder)
    if customer_id is not None:
        query = query.filter(CustomerOrder.customer_id == customer_id)
    if store_id is not None:
        query = query.filter(CustomerOrder.store_id == store_id)
    if status is not None:
        try:
            query = query.filter(CustomerOrder.status == CustomerOrderStatus(status).value)
        except ValueError:
            allowed = ", ".join(s.value for s in CustomerOrderStatus)
            raise ValidationError(f"Invalid status {status!r}. Must be one of: {allowed}")
    if not include_inactive:
        query = query.filter(CustomerOrder.is_active.is_(True))
    return query.order_by(CustomerOrder.id.desc()).all()
