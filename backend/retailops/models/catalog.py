from __future__ import annotations

from ..extensions import db
from retailops.time_utils import to_utc_z


# Stores a product may be sold in / ordered for
product_stores = db.Table(
    "product_stores",
    db.Column("product_id", db.Integer, db.ForeignKey("products.id"), primary_key=True),
    db.Column("store_id", db.Integer, db.ForeignKey("stores.id"), primary_key=True),
)


class Product(db.Model):
    """
    Catalog product.

    price_cents is the authoritative unit price: order and sale totals are
    always computed from it, never taken from the client.

    There is no stored quantity column. The catalog quantity is derived from
    the stock ledger (sum over the product's authorized stores), see
    catalog_service.get_catalog_quantity.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_supplier_active", "supplier_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("User", foreign_keys=[supplier_id])
    stores = db.relationship("Store", secondary=product_stores, lazy="selectin",
                             backref=db.backref("products", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def is_sold_in(self, store_id: int) -> bool:
        return any(s.id == store_id for s in self.stores)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "supplier_id": self.supplier_id,
            "is_active": self.is_active,
            "store_ids": sorted(s.id for s in self.stores),
            "created_at": to_utc_z(self.created_at),
        }
