# Overview: Flask API routes for manager -> supplier orders and delivery acceptance.

from flask import Blueprint, request, g

from ..decorators import json_errors, require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_SUPPLIER
from ..services import delivery_service, manager_order_service
from ..validation import coerce_int


manager_orders_bp = Blueprint("manager_orders", __name__, url_prefix="/api/manager-orders")


def _can_view(user, order) -> bool:
    if user.role == ROLE_ADMIN:
        return True
    if user.role == ROLE_SUPPLIER:
        return order.supplier_id == user.id
    if user.role == ROLE_MANAGER:
        return order.store_id == user.store_id
    return False


@manager_orders_bp.post("")
@require_auth
@require_role(ROLE_MANAGER)
@json_errors
def create_order_route():
    """Body: {supplier_id, items: [{product_id, quantity}], expected_delivery_at?, notes?, store_id? (admin)}"""
    payload = request.get_json(silent=True) or {}
    if payload.get("supplier_id") is None:
        return {"error": "supplier_id is required"}, 400

    store_id = payload.get("store_id")
    order = manager_order_service.create_manager_order(
        g.current_user.id,
        coerce_int(payload["supplier_id"], "supplier_id"),
        payload.get("items"),
        store_id=coerce_int(store_id, "store_id") if store_id is not None else None,
        expected_delivery_at=payload.get("expected_delivery_at"),
        notes=payload.get("notes"),
    )
    return {"order": order.to_dict()}, 201


@manager_orders_bp.get("")
@require_auth
@require_role(ROLE_MANAGER, ROLE_SUPPLIER)
@json_errors
def list_orders_route():
    """Managers see their store's orders, suppliers the orders addressed to them."""
    user = g.current_user
    filters = {
        "status": request.args.get("status"),
        "delivery_status": request.args.get("delivery_status"),
    }
    if user.role == ROLE_SUPPLIER:
        filters["supplier_id"] = user.id
    elif user.role == ROLE_MANAGER:
        if user.store_id is None:
            return {"error": "Permission denied: no store assigned"}, 403
        filters["store_id"] = user.store_id
    elif request.args.get("store_id") is not None:
        filters["store_id"] = coerce_int(request.args["store_id"], "store_id")

    orders = manager_order_service.list_manager_orders(**filters)
    return {"orders": [o.to_dict(include_timeline=False) for o in orders]}, 200


@manager_orders_bp.get("/<int:order_id>")
@require_auth
@json_errors
def get_order_route(order_id: int):
    order = manager_order_service.get_manager_order(order_id)
    if not _can_view(g.current_user, order):
        return {"error": "Permission denied"}, 403
    return {"order": order.to_dict()}, 200


@manager_orders_bp.post("/<int:order_id>/approve")
@require_auth
@require_role(ROLE_SUPPLIER)
@json_errors
def approve_order_route(order_id: int):
    """Body: {expected_delivery_at: ISO-8601 strictly in the future, notes?}"""
    payload = request.get_json(silent=True) or {}
    order = manager_order_service.approve_manager_order(
        order_id,
        g.current_user.id,
        payload.get("expected_delivery_at"),
        notes=payload.get("notes"),
    )
    return {"order": order.to_dict()}, 200


@manager_orders_bp.post("/<int:order_id>/reject")
@require_auth
@require_role(ROLE_SUPPLIER)
@json_errors
def reject_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    order = manager_order_service.reject_manager_order(
        order_id, g.current_user.id, notes=payload.get("notes")
    )
    return {"order": order.to_dict()}, 200


@manager_orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_role(ROLE_MANAGER)
@json_errors
def cancel_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    order = manager_order_service.cancel_manager_order(
        order_id, g.current_user.id, notes=payload.get("notes")
    )
    return {"order": order.to_dict()}, 200


@manager_orders_bp.post("/<int:order_id>/delivery")
@require_auth
@require_role(ROLE_MANAGER)
@json_errors
def accept_delivery_route(order_id: int):
    """
    Body: {items: [{product_id, delivered_quantity}], notes?}

    409 when the delivery was already accepted or a quantity exceeds the order.
    """
    payload = request.get_json(silent=True) or {}
    order = delivery_service.accept_delivery(
        order_id,
        g.current_user.id,
        payload.get("items"),
        notes=payload.get("notes"),
    )
    return {"order": order.to_dict()}, 200


@manager_orders_bp.post("/<int:order_id>/close")
@require_auth
@require_role(ROLE_MANAGER)
@json_errors
def close_partial_delivery_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    order = delivery_service.close_partial_delivery(
        order_id, g.current_user.id, notes=payload.get("notes")
    )
    return {"order": order.to_dict()}, 200
