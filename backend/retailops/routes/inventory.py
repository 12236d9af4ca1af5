# backend/retailops/routes/inventory.py
"""
Stock ledger routes.

SECURITY: All routes require authentication.
- Reads are limited to admins and the store's managers and staff
- Manual movements and reorder settings require a manager of the store
- Product edits and deactivation require an admin or a manager of a store
  the product is sold in
- The derived catalog quantity is readable by any authenticated user

Time semantics:
- Responses serialize datetimes as ISO-8601 'Z' strings.
"""
from flask import Blueprint, request, g

from ..decorators import can_access_store, json_errors, require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF
from ..services import catalog_service, ledger_service
from ..services.stock_rules import StockStatus
from ..validation import coerce_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _forbidden(store_id: int):
    return {"error": "Permission denied", "store_id": store_id}, 403


@inventory_bp.get("/stores/<int:store_id>")
@require_auth
@require_role(ROLE_MANAGER, ROLE_STAFF)
@json_errors
def list_store_inventory_route(store_id: int):
    """List ledger entries for a store. Optional ?status=low_stock|out_of_stock|overstock|in_stock."""
    if not can_access_store(g.current_user, store_id):
        return _forbidden(store_id)

    entries = ledger_service.list_store_inventory(store_id, request.args.get("status"))
    return {"store_id": store_id, "items": [e.to_dict() for e in entries]}, 200


@inventory_bp.get("/stores/<int:store_id>/alerts")
@require_auth
@require_role(ROLE_MANAGER, ROLE_STAFF)
@json_errors
def stock_alerts_route(store_id: int):
    if not can_access_store(g.current_user, store_id):
        return _forbidden(store_id)

    return {
        "store_id": store_id,
        StockStatus.OUT_OF_STOCK.value: [e.to_dict() for e in ledger_service.find_out_of_stock(store_id)],
        StockStatus.LOW_STOCK.value: [e.to_dict() for e in ledger_service.find_low_stock(store_id)],
        StockStatus.OVERSTOCK.value: [e.to_dict() for e in ledger_service.find_overstock(store_id)],
    }, 200


@inventory_bp.get("/stores/<int:store_id>/products/<int:product_id>")
@require_auth
@require_role(ROLE_MANAGER, ROLE_STAFF)
@json_errors
def get_entry_route(store_id: int, product_id: int):
    if not can_access_store(g.current_user, store_id):
        return _forbidden(store_id)

    entry = ledger_service.get_entry(store_id, product_id)
    return {"entry": entry.to_dict(include_movements=True)}, 200


@inventory_bp.get("/stores/<int:store_id>/movements")
@require_auth
@require_role(ROLE_MANAGER, ROLE_STAFF)
@json_errors
def list_movements_route(store_id: int):
    if not can_access_store(g.current_user, store_id):
        return _forbidden(store_id)

    product_id = request.args.get("product_id")
    limit = coerce_int(request.args.get("limit", 100), "limit")
    if limit < 1 or limit > 1000:
        return {"error": "limit must be between 1 and 1000"}, 400

    movements = ledger_service.list_movements(
        store_id,
        coerce_int(product_id, "product_id") if product_id is not None else None,
        movement_type=request.args.get("type"),
        reference=request.args.get("reference"),
        limit=limit,
    )
    return {"store_id": store_id, "movements": [m.to_dict() for m in movements]}, 200


@inventory_bp.post("/stores/<int:store_id>/movements")
@require_auth
@require_role(ROLE_MANAGER)
@json_errors
def apply_movement_route(store_id: int):
    """
    Post a manual movement (stock in, adjustment, shrink, transfer).

    Body: {product_id, type, quantity, reason?, reference?}
    """
    if not can_access_store(g.current_user, store_id):
        return _forbidden(store_id)

    payload = request.get_json(silent=True) or {}
    if payload.get("product_id") is None:
        return {"error": "product_id is required"}, 400
    if payload.get("type") is None or payload.get("quantity") is None:
        return {"error": "type and quantity are required"}, 400

    entry = ledger_service.apply_movement(
        store_id,
        coerce_int(payload["product_id"], "product_id"),
        movement_type=payload["type"],
        quantity=payload["quantity"],
        reason=payload.get("reason"),
        reference=payload.get("reference"),
        performed_by=g.current_user.id,
    )
    return {"entry": entry.to_dict()}, 201


@inventory_bp.patch("/stores/<int:store_id>/products/<int:product_id>/reorder")
@require_auth
@require_role(ROLE_MANAGER)
@json_errors
def update_reorder_settings_route(store_id: int, product_id: int):
    if not can_access_store(g.current_user, store_id):
        return _forbidden(store_id)

    payload = request.get_json(silent=True) or {}
    entry = ledger_service.update_reorder_settings(
        store_id,
        product_id,
        reorder_level=payload.get("reorder_level"),
        max_stock=payload.get("max_stock"),
        updated_by=g.current_user.id,
    )
    return {"entry": entry.to_dict()}, 200


@inventory_bp.get("/products/<int:product_id>")
@require_auth
@json_errors
def catalog_quantity_route(product_id: int):
    """Catalog view of a product, with quantity derived from the store ledgers."""
    product = catalog_service.get_product(product_id)
    return {"product": catalog_service.product_to_dict(product)}, 200


def _can_manage_product(user, product) -> bool:
    """Admins manage any product; managers only products sold in their store."""
    if user.role == ROLE_ADMIN:
        return True
    return user.store_id is not None and product.is_sold_in(user.store_id)


@inventory_bp.patch("/products/<int:product_id>")
@require_auth
@require_role(ROLE_MANAGER)
@json_errors
def update_product_route(product_id: int):
    """Body: any of {sku, name, category, price_cents, cost_cents, supplier_id, is_active}."""
    product = catalog_service.get_product(product_id)
    if not _can_manage_product(g.current_user, product):
        return {"error": "Permission denied", "product_id": product_id}, 403

    product = catalog_service.update_product(product_id, request.get_json(silent=True) or {})
    return {"product": catalog_service.product_to_dict(product)}, 200


@inventory_bp.delete("/products/<int:product_id>")
@require_auth
@require_role(ROLE_MANAGER)
@json_errors
def deactivate_product_route(product_id: int):
    """Soft delete; ledgers, movements and past orders keep referencing the product."""
    product = catalog_service.get_product(product_id)
    if not _can_manage_product(g.current_user, product):
        return {"error": "Permission denied", "product_id": product_id}, 403

    product = catalog_service.deactivate_product(product_id)
    return {"product": catalog_service.product_to_dict(product)}, 200


@inventory_bp.get("/products")
@require_auth
@json_errors
def list_products_route():
    """Active catalog, optionally filtered by ?store_id=, with derived quantities."""
    store_id = request.args.get("store_id")
    products = catalog_service.list_products(
        store_id=coerce_int(store_id, "store_id") if store_id is not None else None,
    )
    quantities = catalog_service.catalog_quantities(p.id for p in products)
    return {
        "products": [
            catalog_service.product_to_dict(p, quantity=quantities.get(p.id, 0)) for p in products
        ]
    }, 200
