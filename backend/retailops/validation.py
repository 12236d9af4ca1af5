from __future__ import annotations
from datetime import datetime
from retailops.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum quantity accepted on a single line or movement.
MAX_LINE_QUANTITY = 1_000_000


class EngineError(Exception):
    """Base class for errors raised by the ledger and order services."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": str(self)}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(EngineError, ValueError):
    """400-level input problem, raised before any mutation."""
    status_code = 400


class PermissionDeniedError(EngineError):
    """403-level: the actor is authenticated but not the party allowed to act."""
    status_code = 403


class NotFoundError(EngineError, LookupError):
    """404-level unknown product, order, store or ledger entry."""
    status_code = 404


class ConflictError(EngineError, ValueError):
    """409-level state-machine violation (terminal order, re-acceptance, over-delivery)."""
    status_code = 409


class ConsistencyError(EngineError):
    """
    409-level stock availability failure.

    Raised when a checkout cannot be satisfied, including a compare-and-decrement
    that lost a race against a concurrent checkout. Safe to retry with updated
    quantities.
    """
    status_code = 409


@dataclass(frozen=True)
class ModelValidationPolicy:
    """Which columns a client may set on a model, and which it must send."""
    writable_fields: set[str]
    required_on_create: frozenset[str] = frozenset()


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    return {c.key: c for c in model.__mapper__.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_datetime(value: Any, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be a datetime")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, DateTime):
        return coerce_datetime(value, col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool = False,
) -> dict:
    """
    Clean a JSON body into constructor kwargs (or, with partial=True, an
    attribute patch) for `model`.

    Keys outside policy.writable_fields are refused. Values are coerced by
    column type, NOT NULL string columns may not be blank, and String lengths
    are enforced. required_on_create is only checked when partial is False.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    rejected = sorted(k for k in payload if k not in policy.writable_fields or k not in cols)
    if rejected:
        raise ValidationError(f"Field not allowed: {', '.join(rejected)}")

    cleaned: dict = {}
    for key, raw in payload.items():
        col = cols[key]
        value = _coerce_value(col, raw)

        if value is None and not col.nullable:
            raise ValidationError(f"{key} cannot be null")
        if value == "" and not col.nullable:
            raise ValidationError(f"{key} cannot be blank")
        length = getattr(col.type, "length", None)
        if length and isinstance(value, str) and len(value) > length:
            raise ValidationError(f"{key} exceeds max length {length}")

        cleaned[key] = value

    return cleaned


def parse_line_items(raw_items: Any, *, quantity_field: str = "quantity", allow_zero: bool = False) -> list[dict]:
    """
    Normalize a client list of {product_id, <quantity_field>} pairs.

    Any price or total the client sends is dropped; the server always prices
    lines from the catalog.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    items: list[dict] = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        if raw.get("product_id") in (None, ""):
            raise ValidationError(f"items[{idx}].product_id is required")
        if raw.get(quantity_field) is None:
            raise ValidationError(f"items[{idx}].{quantity_field} is required")

        product_id = coerce_int(raw["product_id"], f"items[{idx}].product_id")
        quantity = coerce_int(raw[quantity_field], f"items[{idx}].{quantity_field}")

        if quantity < 0 or (quantity == 0 and not allow_zero):
            bound = ">= 0" if allow_zero else "> 0"
            raise ValidationError(f"items[{idx}].{quantity_field} must be {bound}")
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"items[{idx}].{quantity_field} cannot exceed {MAX_LINE_QUANTITY}")

        items.append({"product_id": product_id, quantity_field: quantity})

    return items
