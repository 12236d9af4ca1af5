from __future__ import annotations

from ..extensions import db
from retailops.time_utils import to_utc_z


ORDER_KIND_CUSTOMER = "customer"
ORDER_KIND_MANAGER = "manager"


class OrderTimelineEntry(db.Model):
    """
    Append-only status-change audit log shared by both order variants.

    (order_kind, order_id) is a generic pointer to CustomerOrder or
    ManagerOrder. Every transition writes exactly one row; this table is the
    only audit mechanism for orders.
    """
    __tablename__ = "order_timeline_entries"
    __table_args__ = (
        db.Index("ix_order_timeline_order", "order_kind", "order_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_kind = db.Column(db.String(16), nullable=False)
    order_id = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(32), nullable=False)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    notes = db.Column(db.String(500), nullable=True)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "timestamp": to_utc_z(self.timestamp),
            "updated_by": self.updated_by_user_id,
            "notes": self.notes,
        }


class _OrderTimelineMixin:
    """Read access to timeline rows for an order model with an ORDER_KIND."""
    ORDER_KIND: str = ""

    @property
    def timeline(self) -> list[OrderTimelineEntry]:
        return (
            db.session.query(OrderTimelineEntry)
            .filter_by(order_kind=self.ORDER_KIND, order_id=self.id)
            .order_by(OrderTimelineEntry.id.asc())
            .all()
        )


# =============================================================================
# CUSTOMER -> STORE ORDERS
# =============================================================================

class CustomerOrder(_OrderTimelineMixin, db.Model):
    """
    Customer order placed with a store.

    LIFECYCLE:
    Order Received -> Order Completed | Order Rejected (store-driven)
    Order Received -> Order Cancelled (customer, soft delete via is_active=False)

    Orders are never physically deleted.
    """
    ORDER_KIND = ORDER_KIND_CUSTOMER

    __tablename__ = "customer_orders"
    __table_args__ = (
        db.Index("ix_customer_orders_store_status", "store_id", "status"),
        db.Index("ix_customer_orders_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default="Order Received", index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    estimated_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer_notes = db.Column(db.String(500), nullable=True)
    store_notes = db.Column(db.String(500), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("User", foreign_keys=[customer_id])
    store = db.relationship("Store")
    lines = db.relationship(
        "CustomerOrderLine",
        back_populates="order",
        order_by="CustomerOrderLine.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<CustomerOrder id={self.id} number={self.order_number!r} status={self.status!r}>"

    def to_dict(self, *, include_timeline: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "store_id": self.store_id,
            "status": self.status,
            "items": [line.to_dict() for line in self.lines],
            "total_amount_cents": self.total_amount_cents,
            "estimated_delivery_at": to_utc_z(self.estimated_delivery_at),
            "actual_delivery_at": to_utc_z(self.actual_delivery_at),
            "notes": {"customer": self.customer_notes, "store": self.store_notes},
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_timeline:
            data["timeline"] = [t.to_dict() for t in self.timeline]
        return data


class CustomerOrderLine(db.Model):
    __tablename__ = "customer_order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_customer_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("customer_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("CustomerOrder", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }


# =============================================================================
# MANAGER -> SUPPLIER ORDERS
# =============================================================================

class ManagerOrder(_OrderTimelineMixin, db.Model):
    """
    Purchase order from a store manager to a supplier.

    LIFECYCLE:
    pending -> approved | rejected (supplier) | cancelled (creating manager, soft delete)
    approved -> delivered (delivery reconciliation, or manager closing a partial delivery)

    The delivery receipt is embedded: delivery_status, delivery_accepted_at,
    delivery_accepted_by_user_id, delivery_notes and per-line delivered_quantity.
    It is written exactly once, when the manager accepts the delivery.
    """
    ORDER_KIND = ORDER_KIND_MANAGER

    __tablename__ = "manager_orders"
    __table_args__ = (
        db.Index("ix_manager_orders_store_status", "store_id", "status"),
        db.Index("ix_manager_orders_supplier_status", "supplier_id", "status"),
        db.Index("ix_manager_orders_manager_ordered", "manager_id", "order_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    order_date = db.Column(db.DateTime(timezone=True), nullable=False)
    expected_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)

    manager_notes = db.Column(db.String(500), nullable=True)
    supplier_notes = db.Column(db.String(500), nullable=True)

    # Embedded delivery receipt
    delivery_status = db.Column(db.String(16), nullable=False, default="pending")
    delivery_accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_accepted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    delivery_notes = db.Column(db.String(500), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    manager = db.relationship("User", foreign_keys=[manager_id])
    supplier = db.relationship("User", foreign_keys=[supplier_id])
    store = db.relationship("Store")
    lines = db.relationship(
        "ManagerOrderLine",
        back_populates="order",
        order_by="ManagerOrderLine.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ManagerOrder id={self.id} number={self.order_number!r} status={self.status!r}>"

    @property
    def total_ordered_items(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def total_delivered_items(self) -> int:
        return sum(line.delivered_quantity for line in self.lines)

    def receipt_dict(self) -> dict | None:
        if self.delivery_accepted_at is None:
            return None
        return {
            "delivery_status": self.delivery_status,
            "delivery_accepted_at": to_utc_z(self.delivery_accepted_at),
            "delivery_accepted_by": self.delivery_accepted_by_user_id,
            "delivery_notes": self.delivery_notes,
            "items": [
                {
                    "product_id": line.product_id,
                    "ordered_quantity": line.quantity,
                    "delivered_quantity": line.delivered_quantity,
                }
                for line in self.lines
            ],
        }

    def to_dict(self, *, include_timeline: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "manager_id": self.manager_id,
            "supplier_id": self.supplier_id,
            "store_id": self.store_id,
            "status": self.status,
            "items": [line.to_dict() for line in self.lines],
            "total_amount_cents": self.total_amount_cents,
            "order_date": to_utc_z(self.order_date),
            "expected_delivery_at": to_utc_z(self.expected_delivery_at),
            "actual_delivery_at": to_utc_z(self.actual_delivery_at),
            "notes": {"manager": self.manager_notes, "supplier": self.supplier_notes},
            "delivery_status": self.delivery_status,
            "delivery_receipt": self.receipt_dict(),
            "total_ordered_items": self.total_ordered_items,
            "total_delivered_items": self.total_delivered_items,
            "closed_at": to_utc_z(self.closed_at),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_timeline:
            data["timeline"] = [t.to_dict() for t in self.timeline]
        return data


class ManagerOrderLine(db.Model):
    __tablename__ = "manager_order_lines"
    __table_args__ = (
        db.UniqueConstraint("order_id", "product_id", name="uq_manager_order_lines_order_product"),
        db.CheckConstraint("quantity > 0", name="ck_manager_order_lines_quantity_positive"),
        db.CheckConstraint(
            "delivered_quantity >= 0 AND delivered_quantity <= quantity",
            name="ck_manager_order_lines_delivered_bounds",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("manager_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    delivered_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_delivered = db.Column(db.Boolean, nullable=False, default=False)

    order = db.relationship("ManagerOrder", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "delivered_quantity": self.delivered_quantity,
            "is_delivered": self.is_delivered,
        }
