# Overview: Delivery reconciliation for approved manager orders; posts 'in' movements to the store ledger.

"""
Delivery Reconciliation (authoritative)

- Only an 'approved' order can be accepted, and only once. The acceptance is
  claimed with a single conditional UPDATE (status = 'approved' AND
  delivery_accepted_at IS NULL); losing that claim raises ConflictError and
  writes nothing.
- 0 <= delivered <= ordered per line. Over-delivery is rejected, not clamped.
  Lines the manager omits are recorded as 0 delivered.
- Each line with delivered > 0 appends one 'in' movement with
  reference = order_number. Missing ledger entries are created on the way.
- Every line complete -> status 'delivered', delivery_status 'complete'.
  Otherwise delivery_status 'partial' and status stays 'approved' until the
  manager closes it with close_partial_delivery.
"""

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import ManagerOrder, ManagerOrderLine
from ..validation import ConflictError, PermissionDeniedError, ValidationError, parse_line_items
from retailops.time_utils import utcnow
from .concurrency import run_in_transaction
from .ledger_service import apply_movement_in_transaction
from .notification_service import EVENT_ORDER_STATUS_CHANGED, queue_event
from .order_lifecycle import (
    TIMELINE_DELIVERY_ACCEPTED,
    DeliveryStatus,
    ManagerOrderStatus,
    append_timeline,
    clean_notes,
    get_order,
    lock_order,
    transition,
)
from .stock_rules import MovementType


DELIVERY_REASON = "Delivery received from supplier"


def _parse_delivered(delivered_items) -> dict[int, int]:
    items = parse_line_items(delivered_items, quantity_field="delivered_quantity", allow_zero=True)
    delivered: dict[int, int] = {}
    for item in items:
        pid = item["product_id"]
        if pid in delivered:
            raise ValidationError(f"Product {pid} appears more than once in the delivery")
        delivered[pid] = item["delivered_quantity"]
    return delivered


def _require_creator(order: ManagerOrder, manager_id: int) -> None:
    if order.manager_id != manager_id:
        raise PermissionDeniedError("Only the manager who created the order can receive its delivery")


def accept_delivery(order_id: int, manager_id: int, delivered_items, *, notes=None) -> ManagerOrder:
    """
    Record what actually arrived for an approved order and stock it in.

    delivered_items is a list of {product_id, delivered_quantity}.
    """
    delivered = _parse_delivered(delivered_items)
    delivery_notes = clean_notes(notes, "delivery_notes")

    def _op():
        order = lock_order(ManagerOrder, order_id)
        _require_creator(order, manager_id)

        if order.delivery_accepted_at is not None:
            raise ConflictError(
                f"Delivery for order {order.order_number} was already accepted",
                details={"delivery_status": order.delivery_status},
            )
        if order.status != ManagerOrderStatus.APPROVED.value:
            raise ConflictError(
                f"Order {order.order_number} is {order.status}; only approved orders can be received",
                details={"status": order.status},
            )

        lines_by_product = {line.product_id: line for line in order.lines}
        unknown = sorted(set(delivered) - set(lines_by_product))
        if unknown:
            raise ValidationError(
                f"Products {unknown} are not on order {order.order_number}",
                details={"product_ids": unknown},
            )

        over = [
            {"product_id": pid, "ordered": lines_by_product[pid].quantity, "delivered": qty}
            for pid, qty in delivered.items()
            if qty > lines_by_product[pid].quantity
        ]
        if over:
            raise ConflictError("Delivered quantity exceeds ordered quantity", details={"items": over})

        now = utcnow()
        claimed = db.session.execute(
            update(ManagerOrder)
            .where(
                ManagerOrder.id == order.id,
                ManagerOrder.status == ManagerOrderStatus.APPROVED.value,
                ManagerOrder.delivery_accepted_at.is_(None),
            )
            .values(
                delivery_accepted_at=now,
                delivery_accepted_by_user_id=manager_id,
                delivery_notes=delivery_notes,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise ConflictError(f"Delivery for order {order.order_number} was already accepted")

        complete = True
        for line in order.lines:
            qty = delivered.get(line.product_id, 0)
            result = db.session.execute(
                update(ManagerOrderLine)
                .where(
                    ManagerOrderLine.id == line.id,
                    ManagerOrderLine.delivered_quantity == 0,
                    ManagerOrderLine.quantity >= qty,
                )
                .values(delivered_quantity=qty, is_delivered=(qty == line.quantity))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(f"Line for product {line.product_id} was already received")

            if qty < line.quantity:
                complete = False
            if qty > 0:
                apply_movement_in_transaction(
                    order.store_id,
                    line.product_id,
                    movement_type=MovementType.IN,
                    quantity=qty,
                    reason=DELIVERY_REASON,
                    reference=order.order_number,
                    performed_by=manager_id,
                )

        for line in order.lines:
            db.session.expire(line)
        db.session.expire(order, ["delivery_accepted_at", "delivery_accepted_by_user_id", "delivery_notes"])

        if complete:
            transition(order, ManagerOrderStatus.DELIVERED, manager_id, delivery_notes or "Delivery accepted")
            order.delivery_status = DeliveryStatus.COMPLETE.value
            order.actual_delivery_at = now
            order.closed_at = now
        else:
            order.delivery_status = DeliveryStatus.PARTIAL.value
            append_timeline(order, TIMELINE_DELIVERY_ACCEPTED, manager_id, delivery_notes or "Partial delivery accepted", at=now)
            queue_event(EVENT_ORDER_STATUS_CHANGED, {
                "order_kind": order.ORDER_KIND,
                "order_id": order.id,
                "order_number": order.order_number,
                "store_id": order.store_id,
                "from_status": order.status,
                "to_status": order.status,
                "delivery_status": order.delivery_status,
                "updated_by": manager_id,
            })
        db.session.flush()
        return order.id

    return get_order(ManagerOrder, run_in_transaction(_op))


def close_partial_delivery(order_id: int, manager_id: int, *, notes=None) -> ManagerOrder:
    """
    Manager accepts a short delivery as final: the order moves to 'delivered'.

    The delivery status stays 'partial' so the shortfall remains visible.
    """
    close_notes = clean_notes(notes)

    def _op():
        order = lock_order(ManagerOrder, order_id)
        _require_creator(order, manager_id)

        if order.delivery_status != DeliveryStatus.PARTIAL.value:
            raise ConflictError(
                f"Order {order.order_number} has no partial delivery to close",
                details={"delivery_status": order.delivery_status},
            )

        now = utcnow()
        transition(order, ManagerOrderStatus.DELIVERED, manager_id, close_notes or "Partial delivery closed")
        order.actual_delivery_at = now
        order.closed_at = now
        db.session.flush()
        return order.id

    return get_order(ManagerOrder, run_in_transaction(_op))
