from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from retailops.time_utils import to_utc_z


class StockLedgerEntry(db.Model):
    """
    Stock ledger for one (store, product) pair.

    quantity is the current on-hand count and must always equal the replay of
    the entry's movements from zero (see stock_rules.replay_movements). It is
    only ever changed by ledger_service through a single conditional UPDATE in
    the same transaction that inserts the matching StockMovement, so no writer
    computes a new quantity from a stale read.

    LIFECYCLE: created lazily on the first stock event for the pair, never deleted.
    """
    __tablename__ = "stock_ledger_entries"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", name="uq_stock_ledger_store_product"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_ledger_quantity_non_negative"),
        db.Index("ix_stock_ledger_store_quantity", "store_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=10)
    max_stock = db.Column(db.Integer, nullable=False, default=100)

    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("stock_entries", lazy=True))
    product = db.relationship("Product", backref=db.backref("stock_entries", lazy=True))
    movements = db.relationship(
        "StockMovement",
        back_populates="entry",
        order_by="StockMovement.id",
        lazy="select",
    )

    def __repr__(self) -> str:
        return (
            f"<StockLedgerEntry id={self.id} store_id={self.store_id} "
            f"product_id={self.product_id} quantity={self.quantity}>"
        )

    def to_dict(self, *, include_movements: bool = False) -> dict:
        from ..services.stock_rules import classify

        data = {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "reorder_level": self.reorder_level,
            "max_stock": self.max_stock,
            "stock_status": classify(self.quantity, self.reorder_level, self.max_stock).value,
            "last_restocked_at": to_utc_z(self.last_restocked_at),
            "last_sold_at": to_utc_z(self.last_sold_at),
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_movements:
            data["movements"] = [m.to_movement_record() for m in self.movements]
        return data


class StockMovement(db.Model):
    """
    One immutable entry in a stock ledger.

    quantity is the amount the caller asked for (signed for transfers, the
    absolute target for adjustments); balance_after is the entry quantity the
    movement produced, kept for audit.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_entry_id", "entry_id", "id"),
        db.Index("ix_stock_movements_store_product_ts", "store_id", "product_id", "timestamp"),
        db.Index("ix_stock_movements_reference", "reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(64), nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)
    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    balance_after = db.Column(db.Integer, nullable=False)

    entry = db.relationship("StockLedgerEntry", back_populates="movements")

    def to_movement_record(self) -> dict:
        """Persisted movement shape shared with other consumers of the ledger."""
        return {
            "type": self.type,
            "quantity": self.quantity,
            "reason": self.reason,
            "reference": self.reference,
            "timestamp": to_utc_z(self.timestamp),
            "performedBy": self.performed_by_user_id,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entry_id": self.entry_id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "reason": self.reason,
            "reference": self.reference,
            "timestamp": to_utc_z(self.timestamp),
            "performed_by": self.performed_by_user_id,
            "balance_after": self.balance_after,
        }


class ImmutableRecordError(RuntimeError):
    """Raised when code attempts to modify an append-only record."""


@event.listens_for(StockMovement, "before_update")
def _prevent_movement_update(mapper, connection, target):
    raise ImmutableRecordError(f"Stock movement {target.id} is append-only and cannot be modified")


@event.listens_for(StockMovement, "before_delete")
def _prevent_movement_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Stock movement {target.id} is append-only and cannot be deleted")
