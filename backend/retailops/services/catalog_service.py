# Overview: Catalog reads (existence, active flag, authorized stores, price) and the derived catalog quantity.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockLedgerEntry, Store, User, product_stores
from ..models.auth import ROLE_SUPPLIER
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_payload,
)
from .concurrency import lock_for_update, run_in_transaction
"""
Catalog quantity (read model)

The catalog carries no stored quantity. The quantity shown for a product is
SUM(stock_ledger_entries.quantity) over the stores the product is authorized
for, computed at read time, so it can never drift from the ledger.
"""


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "category", "price_cents", "cost_cents", "supplier_id", "is_active"},
    required_on_create={"sku", "name", "price_cents"},
)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def get_products(product_ids) -> dict[int, Product]:
    ids = set(product_ids)
    if not ids:
        return {}
    rows = db.session.query(Product).filter(Product.id.in_(ids)).all()
    return {p.id: p for p in rows}


def require_sellable(product: Product, store_id: int) -> None:
    """Active and authorized for `store_id`, else ValidationError."""
    if not product.is_active:
        raise ValidationError(f"Product {product.id} ({product.name}) is inactive")
    if not product.is_sold_in(store_id):
        raise ValidationError(f"Product {product.id} ({product.name}) is not available in store {store_id}")


def _authorized_quantity_query():
    return (
        db.session.query(
            StockLedgerEntry.product_id,
            func.coalesce(func.sum(StockLedgerEntry.quantity), 0),
        )
        .join(
            product_stores,
            (product_stores.c.product_id == StockLedgerEntry.product_id)
            & (product_stores.c.store_id == StockLedgerEntry.store_id),
        )
        .group_by(StockLedgerEntry.product_id)
    )


def get_catalog_quantity(product_id: int) -> int:
    get_product(product_id)
    row = _authorized_quantity_query().filter(StockLedgerEntry.product_id == product_id).first()
    return int(row[1]) if row else 0


def catalog_quantities(product_ids=None) -> dict[int, int]:
    query = _authorized_quantity_query()
    if product_ids is not None:
        query = query.filter(StockLedgerEntry.product_id.in_(set(product_ids)))
    return {pid: int(total) for pid, total in query.all()}


def product_to_dict(product: Product, *, quantity: int | None = None) -> dict:
    data = product.to_dict()
    data["quantity"] = quantity if quantity is not None else get_catalog_quantity(product.id)
    return data


def _check_amounts(patch: dict) -> None:
    if patch.get("price_cents") is not None and patch["price_cents"] < 0:
        raise ValidationError("price_cents must be >= 0")
    if patch.get("cost_cents") is not None and patch["cost_cents"] < 0:
        raise ValidationError("cost_cents must be >= 0")


def _check_supplier(supplier_id) -> None:
    if supplier_id is None:
        return
    supplier = db.session.get(User, supplier_id)
    if supplier is None or supplier.role != ROLE_SUPPLIER:
        raise ValidationError(f"User {supplier_id} is not a supplier")


def _check_sku_free(sku: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter_by(sku=sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError(f"Product with sku {sku!r} already exists")


def create_product(payload: dict, *, store_ids=None) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY)
    _check_amounts(patch)

    def _op():
        _check_sku_free(patch["sku"])
        _check_supplier(patch.get("supplier_id"))

        product = Product(**patch)
        for store_id in store_ids or []:
            product.stores.append(_get_store(store_id))
        db.session.add(product)
        db.session.flush()
        return product.id

    return get_product(run_in_transaction(_op))


def update_product(product_id: int, payload: dict) -> Product:
    """
    Patch catalog fields of a product. Only keys present in `payload` change.

    Price changes apply to future orders and checkouts; existing order and
    sale lines keep the price they were written with.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    if not patch:
        raise ValidationError("No fields to update")
    _check_amounts(patch)

    def _op():
        product = lock_for_update(db.session.query(Product).filter(Product.id == product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        if "sku" in patch:
            _check_sku_free(patch["sku"], exclude_id=product.id)
        if "supplier_id" in patch:
            _check_supplier(patch["supplier_id"])

        for key, value in patch.items():
            setattr(product, key, value)
        db.session.flush()
        return product.id

    return get_product(run_in_transaction(_op))


def deactivate_product(product_id: int) -> Product:
    """
    Soft delete: the product stays in the catalog, its ledger and its order
    history, but can no longer be sold or ordered. Idempotent.
    """
    def _op():
        product = lock_for_update(db.session.query(Product).filter(Product.id == product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        if product.is_active:
            product.is_active = False
            db.session.flush()
        return product.id

    return get_product(run_in_transaction(_op))


def _get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFoundError(f"Store {store_id} not found")
    return store


def authorize_store(product_id: int, store_id: int) -> Product:
    """Allow `product_id` to be sold in and ordered for `store_id`. Idempotent."""
    def _op():
        product = get_product(product_id)
        store = _get_store(store_id)
        if not product.is_sold_in(store.id):
            product.stores.append(store)
        db.session.flush()
        return product.id

    return get_product(run_in_transaction(_op))


def list_products(*, store_id: int | None = None, supplier_id: int | None = None, active_only: bool = True) -> list[Product]:
    query = db.session.query(Product)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    if supplier_id is not None:
        query = query.filter(Product.supplier_id == supplier_id)
    if store_id is not None:
        query = query.filter(Product.stores.any(Store.id == store_id))
    return query.order_by(Product.id.asc()).all()


def price_lines(lines: list[dict]) -> tuple[list[dict], int]:
    """
    Attach server-side prices to normalized {product_id, quantity} lines.

    Each line gains product, unit_price_cents and total_price_cents (quantity
    times unit price). Returns (lines, total_cents).
    """
    products = get_products(line["product_id"] for line in lines)
    priced: list[dict] = []
    total = 0
    for line in lines:
        product = products.get(line["product_id"])
        if product is None:
            raise NotFoundError(f"Product {line['product_id']} not found")
        line_total = product.price_cents * line["quantity"]
        priced.append({
            **line,
            "product": product,
            "unit_price_cents": product.price_cents,
            "total_price_cents": line_total,
        })
        total += line_total
    return priced, total


def merge_lines(lines: list[dict], quantity_field: str = "quantity") -> list[dict]:
    """Aggregate duplicate product lines, keeping first-seen order."""
    merged: dict[int, dict] = {}
    for line in lines:
        pid = line["product_id"]
        if pid in merged:
            merged[pid][quantity_field] += line[quantity_field]
        else:
            merged[pid] = dict(line)
    return list(merged.values())
