# Overview: Plain-text receipt rendering for committed sales.

from __future__ import annotations

from ..models import Sale
from retailops.time_utils import to_utc_z


RECEIPT_WIDTH = 40


def format_cents(cents: int | None) -> str:
    if cents is None:
        return "-"
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}${cents // 100}.{cents % 100:02d}"


def _row(left: str, right: str, width: int = RECEIPT_WIDTH) -> str:
    space = max(1, width - len(left) - len(right))
    return f"{left}{' ' * space}{right}"


def render_receipt(sale: Sale) -> str:
    """Fixed-width receipt for `sale`. The sale must already be committed."""
    if sale.id is None:
        raise ValueError("Cannot render a receipt for an unsaved sale")

    rule = "-" * RECEIPT_WIDTH
    store_name = sale.store.name if sale.store else f"Store {sale.store_id}"

    lines = [
        store_name.center(RECEIPT_WIDTH).rstrip(),
        rule,
        f"Transaction: {sale.transaction_id}",
        f"Date: {to_utc_z(sale.sale_date)}",
        rule,
    ]
    for item in sale.lines:
        lines.append(item.name[:RECEIPT_WIDTH])
        lines.append(_row(
            f"  {item.quantity} x {format_cents(item.unit_price_cents)}",
            format_cents(item.total_price_cents),
        ))
    lines.extend([
        rule,
        _row("Items", str(sale.items_count)),
        _row("Subtotal", format_cents(sale.subtotal_cents)),
        _row("TOTAL", format_cents(sale.total_amount_cents)),
        _row("Paid by", sale.payment_method),
        rule,
        "Thank you for your purchase!".center(RECEIPT_WIDTH).rstrip(),
    ])
    return "\n".join(lines) + "\n"
