# Overview: Pytest coverage for transactional checkout and receipt rendering.

"""
Checkout Tests

Verifies:
- A checkout decrements every line's ledger and writes one Sale with server prices
- Any shortfall rejects the whole checkout with no partial decrement
- Inactive, unauthorized and unknown products are rejected before any write
- Duplicate lines are merged and client prices are ignored
"""

import pytest

from retailops.models import Sale, SaleLine, StockMovement
from retailops.services import checkout_service, ledger_service
from retailops.services.notification_service import EVENT_SALE_COMPLETED
from retailops.services.receipt_service import RECEIPT_WIDTH, format_cents, render_receipt
from retailops.validation import (
    ConsistencyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


def _quantity(store, product):
    entry = ledger_service.get_entry(store.id, product.id)
    return entry.quantity


class TestCheckout:
    def test_checkout_decrements_each_line(self, db_session, store, customer, product_a, product_b, stock):
        stock(store.id, product_a.id, 5)
        stock(store.id, product_b.id, 10)

        sale = checkout_service.checkout(store.id, customer.id, [
            {"product_id": product_a.id, "quantity": 2},
            {"product_id": product_b.id, "quantity": 3},
        ])

        assert sale.transaction_id.startswith("TXN-")
        assert sale.subtotal_cents == 2 * 1000 + 3 * 250
        assert sale.total_amount_cents == sale.subtotal_cents
        assert sale.total_cost_cents == 2 * 600 + 3 * 100
        assert sale.items_count == 5
        assert sale.status == "completed"

        assert _quantity(store, product_a) == 3
        assert _quantity(store, product_b) == 7

        outs = db_session.query(StockMovement).filter_by(type="out").order_by(StockMovement.id).all()
        assert [(m.product_id, m.quantity) for m in outs] == [(product_a.id, 2), (product_b.id, 3)]
        assert all(m.reference == sale.transaction_id for m in outs)
        assert all(m.reason == "Customer purchase" for m in outs)
        assert {line.stock_movement_id for line in sale.lines} == {m.id for m in outs}

    def test_shortfall_rejects_whole_checkout(self, db_session, store, customer, product_a, product_b, stock):
        stock(store.id, product_a.id, 5)
        stock(store.id, product_b.id, 1)

        with pytest.raises(ConsistencyError) as exc_info:
            checkout_service.checkout(store.id, customer.id, [
                {"product_id": product_a.id, "quantity": 2},
                {"product_id": product_b.id, "quantity": 3},
            ])

        assert exc_info.value.details["items"] == [{
            "product_id": product_b.id,
            "name": "Paper Filters",
            "requested": 3,
            "available": 1,
        }]

        # No partial decrement of product A
        assert _quantity(store, product_a) == 5
        assert _quantity(store, product_b) == 1
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).filter_by(type="out").count() == 0

    def test_lost_race_on_later_line_undoes_earlier_lines(
        self, db_session, store, customer, product_a, product_b, stock, captured_events, monkeypatch
    ):
        stock(store.id, product_a.id, 5)
        stock(store.id, product_b.id, 10)
        captured_events.clear()

        real_decrement = checkout_service.decrement_for_sale
        calls = []

        def _second_line_loses(entry, quantity, **kwargs):
            calls.append(entry.product_id)
            if len(calls) == 2:
                return None
            return real_decrement(entry, quantity, **kwargs)

        monkeypatch.setattr(checkout_service, "decrement_for_sale", _second_line_loses)

        with pytest.raises(ConsistencyError) as exc_info:
            checkout_service.checkout(store.id, customer.id, [
                {"product_id": product_a.id, "quantity": 2},
                {"product_id": product_b.id, "quantity": 3},
            ])

        assert calls == [product_a.id, product_b.id]
        assert exc_info.value.details["items"][0]["product_id"] == product_b.id

        # Product A was decremented inside the transaction; the rollback restores it
        assert _quantity(store, product_a) == 5
        assert _quantity(store, product_b) == 10
        assert db_session.query(StockMovement).filter_by(type="out").count() == 0
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLine).count() == 0
        assert captured_events == []

    def test_product_without_ledger_has_nothing_available(self, db_session, store, customer, product_a):
        with pytest.raises(ConsistencyError) as exc_info:
            checkout_service.checkout(store.id, customer.id, [{"product_id": product_a.id, "quantity": 1}])

        assert exc_info.value.details["items"][0]["available"] == 0
        assert exc_info.value.status_code == 409

    def test_exact_stock_sells_out(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 2)
        checkout_service.checkout(store.id, customer.id, [{"product_id": product_a.id, "quantity": 2}])

        assert _quantity(store, product_a) == 0
        assert [e.product_id for e in ledger_service.find_out_of_stock(store.id)] == [product_a.id]

    def test_client_prices_are_ignored(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 5)

        sale = checkout_service.checkout(store.id, customer.id, [
            {"product_id": product_a.id, "quantity": 1, "unit_price_cents": 1, "total_price_cents": 1},
        ])

        assert sale.total_amount_cents == 1000
        assert sale.lines[0].unit_price_cents == 1000

    def test_duplicate_lines_are_merged(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 5)

        sale = checkout_service.checkout(store.id, customer.id, [
            {"product_id": product_a.id, "quantity": 2},
            {"product_id": product_a.id, "quantity": 3},
        ])

        assert len(sale.lines) == 1
        assert sale.lines[0].quantity == 5
        assert _quantity(store, product_a) == 0

    def test_merged_lines_checked_against_total(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 4)

        with pytest.raises(ConsistencyError):
            checkout_service.checkout(store.id, customer.id, [
                {"product_id": product_a.id, "quantity": 2},
                {"product_id": product_a.id, "quantity": 3},
            ])
        assert _quantity(store, product_a) == 4

    def test_unknown_cost_leaves_total_cost_empty(self, db_session, store, customer, product_a, stock):
        product_a.cost_cents = None
        db_session.commit()
        stock(store.id, product_a.id, 1)

        sale = checkout_service.checkout(store.id, customer.id, [{"product_id": product_a.id, "quantity": 1}])
        assert sale.total_cost_cents is None

    def test_sale_completed_event(self, db_session, store, customer, product_a, stock, captured_events):
        stock(store.id, product_a.id, 3)
        captured_events.clear()

        sale = checkout_service.checkout(store.id, customer.id, [{"product_id": product_a.id, "quantity": 1}])

        sale_events = [e for e in captured_events if e.event_type == EVENT_SALE_COMPLETED]
        assert len(sale_events) == 1
        assert sale_events[0].payload["transaction_id"] == sale.transaction_id
        assert sale_events[0].payload["total_amount_cents"] == 1000


class TestCheckoutRejections:
    def test_inactive_product(self, db_session, store, customer, inactive_product, stock):
        stock(store.id, inactive_product.id, 5)
        with pytest.raises(ValidationError):
            checkout_service.checkout(store.id, customer.id, [{"product_id": inactive_product.id, "quantity": 1}])
        assert _quantity(store, inactive_product) == 5

    def test_product_not_sold_in_store(self, db_session, store, customer, product_a, foreign_product, stock):
        stock(store.id, product_a.id, 5)
        stock(store.id, foreign_product.id, 5)

        with pytest.raises(ValidationError):
            checkout_service.checkout(store.id, customer.id, [
                {"product_id": product_a.id, "quantity": 1},
                {"product_id": foreign_product.id, "quantity": 1},
            ])
        assert _quantity(store, product_a) == 5

    def test_unknown_product(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 5)
        with pytest.raises(NotFoundError):
            checkout_service.checkout(store.id, customer.id, [
                {"product_id": product_a.id, "quantity": 1},
                {"product_id": 987654, "quantity": 1},
            ])
        assert _quantity(store, product_a) == 5

    def test_unknown_store(self, db_session, customer, product_a):
        with pytest.raises(NotFoundError):
            checkout_service.checkout(987654, customer.id, [{"product_id": product_a.id, "quantity": 1}])

    def test_store_staff_cannot_check_out(self, db_session, store, manager, product_a, stock):
        stock(store.id, product_a.id, 5)
        with pytest.raises(PermissionDeniedError):
            checkout_service.checkout(store.id, manager.id, [{"product_id": product_a.id, "quantity": 1}])

    @pytest.mark.parametrize("items", [
        [],
        None,
        [{"product_id": 1}],
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": -2}],
        [{"product_id": 1, "quantity": 1.5}],
    ])
    def test_malformed_items(self, db_session, store, customer, items):
        with pytest.raises(ValidationError):
            checkout_service.checkout(store.id, customer.id, items)
        assert db_session.query(Sale).count() == 0

    def test_invalid_payment_method(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 5)
        with pytest.raises(ValidationError):
            checkout_service.checkout(
                store.id, customer.id, [{"product_id": product_a.id, "quantity": 1}], payment_method="barter",
            )

    def test_invalid_channel(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 5)
        with pytest.raises(ValidationError):
            checkout_service.checkout(
                store.id, customer.id, [{"product_id": product_a.id, "quantity": 1}], channel="carrier_pigeon",
            )


class TestSaleLookups:
    def test_get_sale_by_transaction(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 5)
        sale = checkout_service.checkout(store.id, customer.id, [{"product_id": product_a.id, "quantity": 1}])

        assert checkout_service.get_sale_by_transaction(sale.transaction_id).id == sale.id
        with pytest.raises(NotFoundError):
            checkout_service.get_sale_by_transaction("TXN-19990101-0001")

    def test_list_sales_by_customer(self, db_session, store, customer, other_customer, product_a, stock):
        stock(store.id, product_a.id, 5)
        first = checkout_service.checkout(store.id, customer.id, [{"product_id": product_a.id, "quantity": 1}])
        checkout_service.checkout(store.id, other_customer.id, [{"product_id": product_a.id, "quantity": 1}])

        assert [s.id for s in checkout_service.list_sales(customer_id=customer.id)] == [first.id]
        assert len(checkout_service.list_sales(store_id=store.id)) == 2
        assert db_session.query(SaleLine).count() == 2


class TestReceipt:
    def test_format_cents(self):
        assert format_cents(1999) == "$19.99"
        assert format_cents(5) == "$0.05"
        assert format_cents(-250) == "-$2.50"
        assert format_cents(None) == "-"

    def test_render_receipt(self, db_session, store, customer, product_a, product_b, stock):
        stock(store.id, product_a.id, 5)
        stock(store.id, product_b.id, 5)
        sale = checkout_service.checkout(
            store.id,
            customer.id,
            [{"product_id": product_a.id, "quantity": 2}, {"product_id": product_b.id, "quantity": 1}],
            payment_method="credit_card",
        )

        receipt = render_receipt(sale)

        assert "Downtown" in receipt
        assert f"Transaction: {sale.transaction_id}" in receipt
        assert "Coffee Beans" in receipt
        assert "2 x $10.00" in receipt
        assert "$22.50" in receipt
        assert "credit_card" in receipt
        assert all(len(line) <= RECEIPT_WIDTH for line in receipt.splitlines())

    def test_unsaved_sale_has_no_receipt(self):
        with pytest.raises(ValueError):
            render_receipt(Sale())
