from __future__ import annotations

from ..extensions import db
from retailops.time_utils import to_utc_z


class OrderSequence(db.Model):
    """
    Atomic per-day order number counters.

    WHY: Order numbers must never collide within a day, even under
    concurrent creation. Numbers are allocated by an UPDATE ... SET
    last_value = last_value + 1 on the (prefix, date_key) row, never by
    counting existing orders.
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", "date_key", name="uq_order_sequences_prefix_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(8), nullable=False)
    date_key = db.Column(db.String(8), nullable=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "prefix": self.prefix,
            "date_key": self.date_key,
            "last_value": self.last_value,
            "updated_at": to_utc_z(self.updated_at),
        }
