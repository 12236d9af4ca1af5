# Overview: Shared order state machine machinery (statuses, transitions, timeline, locking).

"""
Order Lifecycle (authoritative)

STATE MACHINES:
    Customer order:  Order Received -> Order Completed | Order Rejected | Order Cancelled
    Manager order:   pending -> approved | rejected | cancelled
                     approved -> delivered

RULES:
1. A transition out of a terminal status raises ConflictError, never a silent no-op.
2. Every transition, and creation, appends exactly one OrderTimelineEntry.
3. Cancellation is the only deletion: terminal status plus is_active=False.
4. Orders are locked (SELECT ... FOR UPDATE) before their status is read for a transition.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from ..extensions import db
from ..models import OrderTimelineEntry, User
from ..models.auth import ROLE_ADMIN, STORE_ROLES
from ..validation import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    coerce_datetime,
)
from retailops.time_utils import utcnow, to_utc_naive
from .concurrency import lock_for_update
from .notification_service import EVENT_ORDER_STATUS_CHANGED, queue_event


class CustomerOrderStatus(str, Enum):
    RECEIVED = "Order Received"
    COMPLETED = "Order Completed"
    REJECTED = "Order Rejected"
    CANCELLED = "Order Cancelled"


class ManagerOrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    DELIVERED = "delivered"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETE = "complete"


CUSTOMER_TRANSITIONS = {
    CustomerOrderStatus.RECEIVED: {
        CustomerOrderStatus.COMPLETED,
        CustomerOrderStatus.REJECTED,
        CustomerOrderStatus.CANCELLED,
    },
}

MANAGER_TRANSITIONS = {
    ManagerOrderStatus.PENDING: {
        ManagerOrderStatus.APPROVED,
        ManagerOrderStatus.REJECTED,
        ManagerOrderStatus.CANCELLED,
    },
    ManagerOrderStatus.APPROVED: {ManagerOrderStatus.DELIVERED},
}

CUSTOMER_TERMINAL = {
    CustomerOrderStatus.COMPLETED,
    CustomerOrderStatus.REJECTED,
    CustomerOrderStatus.CANCELLED,
}

MANAGER_TERMINAL = {
    ManagerOrderStatus.REJECTED,
    ManagerOrderStatus.CANCELLED,
    ManagerOrderStatus.DELIVERED,
}

# Timeline marker written when a delivery is accepted (status may stay 'approved')
TIMELINE_DELIVERY_ACCEPTED = "delivery_accepted"


def _machine(order):
    if order.ORDER_KIND == "customer":
        return CustomerOrderStatus, CUSTOMER_TRANSITIONS, CUSTOMER_TERMINAL
    return ManagerOrderStatus, MANAGER_TRANSITIONS, MANAGER_TERMINAL


def is_terminal(order) -> bool:
    status_enum, _, terminal = _machine(order)
    return status_enum(order.status) in terminal


def ensure_not_terminal(order) -> None:
    if is_terminal(order):
        raise ConflictError(
            f"Order {order.order_number} is already {order.status} and cannot change",
            details={"status": order.status},
        )


def ensure_transition(order, target) -> None:
    """Raise ConflictError unless `order` may move to `target`."""
    status_enum, transitions, terminal = _machine(order)
    current = status_enum(order.status)
    target = status_enum(target)

    if current in terminal:
        raise ConflictError(
            f"Order {order.order_number} is already {current.value} and cannot change",
            details={"status": current.value},
        )
    if target not in transitions.get(current, set()):
        raise ConflictError(
            f"Cannot move order {order.order_number} from {current.value} to {target.value}",
            details={"status": current.value, "target": target.value},
        )


def append_timeline(order, status: str, actor_id: int, notes: str | None = None, *, at: datetime | None = None) -> OrderTimelineEntry:
    entry = OrderTimelineEntry(
        order_kind=order.ORDER_KIND,
        order_id=order.id,
        status=status,
        timestamp=at or utcnow(),
        updated_by_user_id=actor_id,
        notes=notes,
    )
    db.session.add(entry)
    return entry


def transition(order, target, actor_id: int, notes: str | None = None) -> None:
    """
    Move `order` to `target`, append the timeline entry and queue the
    status-changed event. The caller holds the order lock and commits.
    """
    status_enum, _, _ = _machine(order)
    ensure_transition(order, target)

    previous = order.status
    order.status = status_enum(target).value
    now = utcnow()
    append_timeline(order, order.status, actor_id, notes, at=now)
    db.session.flush()

    queue_event(EVENT_ORDER_STATUS_CHANGED, {
        "order_kind": order.ORDER_KIND,
        "order_id": order.id,
        "order_number": order.order_number,
        "store_id": order.store_id,
        "from_status": previous,
        "to_status": order.status,
        "updated_by": actor_id,
    })


def lock_order(model, order_id: int):
    query = db.session.query(model).filter_by(id=order_id).populate_existing()
    order = lock_for_update(query).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def get_order(model, order_id: int):
    order = db.session.get(model, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def require_strictly_future(value, field: str) -> datetime:
    """Parse `value` and require it to be later than now. Equal to now is rejected."""
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    when = to_utc_naive(coerce_datetime(value, field))
    if when <= utcnow():
        raise ValidationError(f"{field} must be in the future")
    return when


def clean_notes(value, field: str = "notes", max_length: int = 500) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text or None


def get_actor(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    if not user.is_active:
        raise PermissionDeniedError(f"User {user_id} is inactive")
    return user


def require_store_actor(user: User, store_id: int) -> None:
    """Store-driven actions: an admin, or a manager/staff member of `store_id`."""
    if user.role == ROLE_ADMIN:
        return
    if user.role in STORE_ROLES and user.store_id == store_id:
        return
    raise PermissionDeniedError(f"User {user.id} cannot act for store {store_id}")
