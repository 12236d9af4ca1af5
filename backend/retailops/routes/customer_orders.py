# Overview: Flask API routes for customer -> store orders.

from flask import Blueprint, request, g

from ..decorators import can_access_store, json_errors, require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_MANAGER, ROLE_STAFF
from ..services import customer_order_service
from ..validation import coerce_int


customer_orders_bp = Blueprint("customer_orders", __name__, url_prefix="/api/customer-orders")


def _can_view(user, order) -> bool:
    return order.customer_id == user.id or can_access_store(user, order.store_id)


@customer_orders_bp.post("")
@require_auth
@require_role(ROLE_CUSTOMER)
@json_errors
def create_order_route():
    """Body: {store_id, items: [{product_id, quantity}], notes?}"""
    payload = request.get_json(silent=True) or {}
    if payload.get("store_id") is None:
        return {"error": "store_id is required"}, 400

    order = customer_order_service.create_customer_order(
        g.current_user.id,
        coerce_int(payload["store_id"], "store_id"),
        payload.get("items"),
        notes=payload.get("notes"),
    )
    return {"order": order.to_dict()}, 201


@customer_orders_bp.get("")
@require_auth
@json_errors
def list_orders_route():
    """
    Customers see their own orders; store staff see their store's orders.
    Optional ?status=.
    """
    user = g.current_user
    status = request.args.get("status")

    if user.role == ROLE_CUSTOMER:
        orders = customer_order_service.list_customer_orders(customer_id=user.id, status=status)
    elif user.role in (ROLE_MANAGER, ROLE_STAFF):
        if user.store_id is None:
            return {"error": "Permission denied: no store assigned"}, 403
        orders = customer_order_service.list_customer_orders(store_id=user.store_id, status=status)
    elif user.role == ROLE_ADMIN:
        store_id = request.args.get("store_id")
        orders = customer_order_service.list_customer_orders(
            store_id=coerce_int(store_id, "store_id") if store_id is not None else None,
            status=status,
        )
    else:
        return {"error": "Permission denied"}, 403

    return {"orders": [o.to_dict(include_timeline=False) for o in orders]}, 200


@customer_orders_bp.get("/<int:order_id>")
@require_auth
@json_errors
def get_order_route(order_id: int):
    order = customer_order_service.get_customer_order(order_id)
    if not _can_view(g.current_user, order):
        return {"error": "Permission denied"}, 403
    return {"order": order.to_dict()}, 200


@customer_orders_bp.post("/<int:order_id>/complete")
@require_auth
@require_role(ROLE_MANAGER, ROLE_STAFF)
@json_errors
def complete_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    order = customer_order_service.complete_customer_order(
        order_id, g.current_user.id, notes=payload.get("notes")
    )
    return {"order": order.to_dict()}, 200


@customer_orders_bp.post("/<int:order_id>/reject")
@require_auth
@require_role(ROLE_MANAGER, ROLE_STAFF)
@json_errors
def reject_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    order = customer_order_service.reject_customer_order(
        order_id, g.current_user.id, notes=payload.get("notes")
    )
    return {"order": order.to_dict()}, 200


@customer_orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_role(ROLE_CUSTOMER)
@json_errors
def cancel_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    order = customer_order_service.cancel_customer_order(
        order_id, g.current_user.id, notes=payload.get("notes")
    )
    return {"order": order.to_dict()}, 200


@customer_orders_bp.patch("/<int:order_id>/estimated-delivery")
@require_auth
@require_role(ROLE_MANAGER, ROLE_STAFF)
@json_errors
def update_estimated_delivery_route(order_id: int):
    """Body: {estimated_delivery_at: ISO-8601, strictly in the future}"""
    payload = request.get_json(silent=True) or {}
    order = customer_order_service.update_estimated_delivery(
        order_id, g.current_user.id, payload.get("estimated_delivery_at")
    )
    return {"order": order.to_dict()}, 200
