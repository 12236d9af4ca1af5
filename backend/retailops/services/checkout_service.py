# Overview: Transactional customer checkout: validate, compare-and-decrement stock, write the Sale.

from __future__ import annotations

from ..extensions import db
from ..models import Sale, SaleLine, StockLedgerEntry, Store
from ..models.auth import ROLE_ADMIN, ROLE_CUSTOMER
from ..validation import (
    ConsistencyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    parse_line_items,
)
from retailops.time_utils import utcnow
from .catalog_service import get_products, merge_lines, require_sellable
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import decrement_for_sale
from .notification_service import EVENT_SALE_COMPLETED, queue_event
from .order_lifecycle import get_actor
from .sequence_service import SALE_TRANSACTION_PREFIX, next_order_number
"""
Checkout (authoritative)

All or nothing: for every line, one compare-and-decrement on the store's
ledger entry plus one 'out' movement (reason "Customer purchase",
reference = transaction_id), and one Sale with server prices. Any failure
rolls back every write of the checkout.

Validation happens before the first write:
    unknown product           -> NotFoundError
    inactive / not in store   -> ValidationError
    available < requested     -> ConsistencyError (details.items lists each shortfall)

A decrement that matches no row means a concurrent checkout took the stock
after validation; it is reported as ConsistencyError too.
"""


PAYMENT_METHODS = {
    "cash",
    "credit_card",
    "debit_card",
    "mobile_payment",
    "gift_card",
    "store_credit",
    "mixed",
}

CHANNELS = {"in_store", "online", "phone", "kiosk"}

PURCHASE_REASON = "Customer purchase"


def _validate_options(payment_method: str, channel: str) -> None:
    if payment_method not in PAYMENT_METHODS:
        allowed = ", ".join(sorted(PAYMENT_METHODS))
        raise ValidationError(f"Invalid payment_method {payment_method!r}. Must be one of: {allowed}")
    if channel not in CHANNELS:
        allowed = ", ".join(sorted(CHANNELS))
        raise ValidationError(f"Invalid channel {channel!r}. Must be one of: {allowed}")


def _load_entries(store_id: int, product_ids) -> dict[int, StockLedgerEntry]:
    query = db.session.query(StockLedgerEntry).filter(
        StockLedgerEntry.store_id == store_id,
        StockLedgerEntry.product_id.in_(set(product_ids)),
    )
    return {e.product_id: e for e in lock_for_update(query).populate_existing().all()}


def _check_availability(lines: list[dict], entries: dict[int, StockLedgerEntry], products) -> None:
    shortfalls = []
    for line in lines:
        entry = entries.get(line["product_id"])
        available = entry.quantity if entry is not None else 0
        if available < line["quantity"]:
            shortfalls.append({
                "product_id": line["product_id"],
                "name": products[line["product_id"]].name,
                "requested": line["quantity"],
                "available": available,
            })
    if shortfalls:
        raise ConsistencyError("Insufficient stock", details={"items": shortfalls})


def checkout(
    store_id: int,
    purchaser_id: int,
    items,
    *,
    payment_method: str = "cash",
    channel: str = "online",
) -> Sale:
    """
    Buy `items` ([{product_id, quantity}, ...]) from `store_id`.

    Duplicate product lines are merged. Client-sent prices are ignored.
    """
    lines = merge_lines(parse_line_items(items))
    _validate_options(payment_method, channel)

    def _op():
        purchaser = get_actor(purchaser_id)
        if purchaser.role not in (ROLE_CUSTOMER, ROLE_ADMIN):
            raise PermissionDeniedError("Only customers can check out")

        store = db.session.get(Store, store_id)
        if store is None or not store.is_active:
            raise NotFoundError(f"Store {store_id} not found")

        products = get_products(line["product_id"] for line in lines)
        for line in lines:
            if line["product_id"] not in products:
                raise NotFoundError(f"Product {line['product_id']} not found")
        for line in lines:
            require_sellable(products[line["product_id"]], store_id)

        entries = _load_entries(store_id, products)
        _check_availability(lines, entries, products)

        transaction_id = next_order_number(SALE_TRANSACTION_PREFIX)
        now = utcnow()

        sale = Sale(
            transaction_id=transaction_id,
            store_id=store_id,
            customer_id=purchaser.id,
            subtotal_cents=0,
            total_amount_cents=0,
            payment_method=payment_method,
            channel=channel,
            status="completed",
            sale_date=now,
        )
        db.session.add(sale)
        db.session.flush()

        subtotal = 0
        total_cost = 0
        cost_known = True
        for line in lines:
            product = products[line["product_id"]]
            qty = line["quantity"]

            movement = decrement_for_sale(
                entries[product.id],
                qty,
                reference=transaction_id,
                performed_by=purchaser.id,
                reason=PURCHASE_REASON,
            )
            if movement is None:
                raise ConsistencyError(
                    "Stock changed during checkout",
                    details={"items": [{
                        "product_id": product.id,
                        "name": product.name,
                        "requested": qty,
                        "available": db.session.get(
                            StockLedgerEntry, entries[product.id].id, populate_existing=True
                        ).quantity,
                    }]},
                )

            line_total = product.price_cents * qty
            subtotal += line_total
            if product.cost_cents is None:
                cost_known = False
            else:
                total_cost += product.cost_cents * qty

            db.session.add(SaleLine(
                sale_id=sale.id,
                product_id=product.id,
                name=product.name,
                category=product.category,
                quantity=qty,
                unit_price_cents=product.price_cents,
                total_price_cents=line_total,
                cost_cents=product.cost_cents,
                stock_movement_id=movement.id,
            ))

        sale.subtotal_cents = subtotal
        sale.total_amount_cents = subtotal
        sale.total_cost_cents = total_cost if cost_known else None
        db.session.flush()

        queue_event(EVENT_SALE_COMPLETED, {
            "sale_id": sale.id,
            "transaction_id": transaction_id,
            "store_id": store_id,
            "customer_id": purchaser.id,
            "total_amount_cents": subtotal,
            "items_count": sum(line["quantity"] for line in lines),
        })
        return sale.id

    return get_sale(run_in_transaction(_op))


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def get_sale_by_transaction(transaction_id: str) -> Sale:
    sale = db.session.query(Sale).filter_by(transaction_id=transaction_id).first()
    if sale is None:
        raise NotFoundError(f"Sale {transaction_id} not found")
    return sale


def list_sales(*, store_id: int | None = None, customer_id: int | None = None, limit: int = 100) -> list[Sale]:
    query = db.session.query(Sale)
    if store_id is not None:
        query = query.filter(Sale.store_id == store_id)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    return query.order_by(Sale.id.desc()).limit(limit).all()
