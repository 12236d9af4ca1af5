from __future__ import annotations

from ..extensions import db
from retailops.time_utils import to_utc_z


class Sale(db.Model):
    """
    Completed customer purchase written by the checkout coordinator.

    Immutable once committed. Line prices and totals are computed on the
    server from catalog prices. transaction_id is also the reference on the
    matching 'out' stock movements.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_store_sale_date", "store_id", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(32), nullable=False, unique=True)

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    total_cost_cents = db.Column(db.Integer, nullable=True)

    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    channel = db.Column(db.String(16), nullable=False, default="online")
    status = db.Column(db.String(16), nullable=False, default="completed")

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store")
    customer = db.relationship("User")
    lines = db.relationship("SaleLine", back_populates="sale", order_by="SaleLine.id", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Sale id={self.id} transaction_id={self.transaction_id!r}>"

    @property
    def items_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "items": [line.to_dict() for line in self.lines],
            "items_count": self.items_count,
            "subtotal_cents": self.subtotal_cents,
            "total_amount_cents": self.total_amount_cents,
            "total_cost_cents": self.total_cost_cents,
            "payment_method": self.payment_method,
            "channel": self.channel,
            "status": self.status,
            "sale_date": to_utc_z(self.sale_date),
            "created_at": to_utc_z(self.created_at),
        }


class SaleLine(db.Model):
    """Individual line items on a sale."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=True)

    # Ledger movement that removed the stock for this line
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    sale = db.relationship("Sale", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "category": self.category,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "stock_movement_id": self.stock_movement_id,
        }
