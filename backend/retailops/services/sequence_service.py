# Overview: Order number allocation backed by an atomic per-(prefix, day) counter row.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderSequence
from ..validation import ValidationError
from retailops.time_utils import date_key


CUSTOMER_ORDER_PREFIX = "ORD"
MANAGER_ORDER_PREFIX = "MO"
SALE_TRANSACTION_PREFIX = "TXN"

KNOWN_PREFIXES = {CUSTOMER_ORDER_PREFIX, MANAGER_ORDER_PREFIX, SALE_TRANSACTION_PREFIX}


def format_order_number(prefix: str, day: str, value: int, pad: int = 4) -> str:
    return f"{prefix}-{day}-{value:0{pad}d}"


def _read_value(prefix: str, day: str) -> int:
    return (
        db.session.query(OrderSequence.last_value)
        .filter_by(prefix=prefix, date_key=day)
        .scalar()
    )


def next_order_number(prefix: str, *, at: datetime | None = None) -> str:
    """
    Allocate the next number for `prefix` on the given day (UTC).

    Must be called inside an open write transaction. The increment is a
    single UPDATE on the counter row; the first number of a day inserts the
    row inside a savepoint and falls back to the UPDATE if another writer
    created it first.
    """
    if prefix not in KNOWN_PREFIXES:
        raise ValidationError(f"Unknown order number prefix {prefix!r}")

    day = date_key(at)

    stmt = (
        update(OrderSequence)
        .where(
            OrderSequence.prefix == prefix,
            OrderSequence.date_key == day,
        )
        .values(last_value=OrderSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return format_order_number(prefix, day, _read_value(prefix, day))

    try:
        with db.session.begin_nested():
            db.session.add(OrderSequence(prefix=prefix, date_key=day, last_value=1))
        return format_order_number(prefix, day, 1)
    except IntegrityError:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return format_order_number(prefix, day, _read_value(prefix, day))
