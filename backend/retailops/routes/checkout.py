# Overview: Flask API routes for checkout; buys a cart from one store and returns the sale and receipt.

from flask import Blueprint, current_app, request, g

from ..decorators import can_access_store, json_errors, require_auth, require_role
from ..models.auth import ROLE_CUSTOMER
from ..services import checkout_service
from ..services.receipt_service import render_receipt
from ..validation import coerce_int


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _receipt_or_none(sale):
    """Receipt rendering never affects a committed sale."""
    try:
        return render_receipt(sale)
    except Exception:
        current_app.logger.warning("Receipt rendering failed for sale %s", sale.id, exc_info=True)
        return None


@checkout_bp.post("")
@require_auth
@require_role(ROLE_CUSTOMER)
@json_errors
def checkout_route():
    """
    Body: {store_id, items: [{product_id, quantity}], payment_method?, channel?}

    Any client price fields are ignored. 409 with details.items when stock
    is insufficient.
    """
    payload = request.get_json(silent=True) or {}
    if payload.get("store_id") is None:
        return {"error": "store_id is required"}, 400

    sale = checkout_service.checkout(
        coerce_int(payload["store_id"], "store_id"),
        g.current_user.id,
        payload.get("items"),
        payment_method=payload.get("payment_method") or "cash",
        channel=payload.get("channel") or "online",
    )
    return {"sale": sale.to_dict(), "receipt": _receipt_or_none(sale)}, 201


def _can_view_sale(user, sale) -> bool:
    return sale.customer_id == user.id or can_access_store(user, sale.store_id)


@checkout_bp.get("/sales/<int:sale_id>")
@require_auth
@json_errors
def get_sale_route(sale_id: int):
    sale = checkout_service.get_sale(sale_id)
    if not _can_view_sale(g.current_user, sale):
        return {"error": "Permission denied"}, 403
    return {"sale": sale.to_dict()}, 200


@checkout_bp.get("/sales/<int:sale_id>/receipt")
@require_auth
@json_errors
def get_receipt_route(sale_id: int):
    sale = checkout_service.get_sale(sale_id)
    if not _can_view_sale(g.current_user, sale):
        return {"error": "Permission denied"}, 403

    receipt = _receipt_or_none(sale)
    if receipt is None:
        return {"error": "Receipt unavailable"}, 503
    return current_app.response_class(receipt, mimetype="text/plain")
