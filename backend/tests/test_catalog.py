# Overview: Pytest coverage for catalog writes and sellability checks.

import pytest

from retailops.models import Product, Sale
from retailops.services import (
    catalog_service,
    checkout_service,
    customer_order_service,
    ledger_service,
    manager_order_service,
)
from retailops.validation import ConflictError, NotFoundError, ValidationError


class TestCreateProduct:
    def test_create_with_stores(self, db_session, store, supplier):
        product = catalog_service.create_product(
            {"sku": " SKU-NEW ", "name": "Milk Frother", "price_cents": "2599", "supplier_id": supplier.id},
            store_ids=[store.id],
        )

        assert product.sku == "SKU-NEW"
        assert product.price_cents == 2599
        assert product.is_sold_in(store.id)
        assert catalog_service.get_catalog_quantity(product.id) == 0

    def test_missing_required_fields(self, db_session):
        with pytest.raises(ValidationError, match="price_cents"):
            catalog_service.create_product({"sku": "SKU-X", "name": "No Price"})

    def test_unknown_or_protected_fields(self, db_session):
        with pytest.raises(ValidationError, match="Field not allowed"):
            catalog_service.create_product({"sku": "SKU-X", "name": "X", "price_cents": 1, "id": 99})
        with pytest.raises(ValidationError, match="Field not allowed"):
            catalog_service.create_product({"sku": "SKU-X", "name": "X", "price_cents": 1, "quantity": 50})

    def test_bad_values(self, db_session):
        with pytest.raises(ValidationError):
            catalog_service.create_product({"sku": "SKU-X", "name": "X", "price_cents": 1.5})
        with pytest.raises(ValidationError):
            catalog_service.create_product({"sku": "SKU-X", "name": "X", "price_cents": -1})
        with pytest.raises(ValidationError):
            catalog_service.create_product({"sku": "SKU-X", "name": "   ", "price_cents": 1})

    def test_duplicate_sku(self, db_session, product_a):
        with pytest.raises(ConflictError):
            catalog_service.create_product({"sku": product_a.sku, "name": "Copy", "price_cents": 1})

    def test_supplier_must_have_supplier_role(self, db_session, customer):
        with pytest.raises(ValidationError):
            catalog_service.create_product({"sku": "SKU-X", "name": "X", "price_cents": 1, "supplier_id": customer.id})
        assert db_session.query(Product).filter_by(sku="SKU-X").count() == 0

    def test_unknown_store(self, db_session):
        with pytest.raises(NotFoundError):
            catalog_service.create_product({"sku": "SKU-X", "name": "X", "price_cents": 1}, store_ids=[404])


class TestUpdateProduct:
    def test_patch_only_given_fields(self, db_session, product_a):
        product = catalog_service.update_product(product_a.id, {"name": "Espresso Beans", "price_cents": "1200"})

        assert product.name == "Espresso Beans"
        assert product.price_cents == 1200
        assert product.sku == "SKU-A"
        assert product.cost_cents == 600

    def test_new_price_applies_to_later_checkouts_only(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 5)
        first = checkout_service.checkout(store.id, customer.id, [{"product_id": product_a.id, "quantity": 1}])

        catalog_service.update_product(product_a.id, {"price_cents": 1500})
        second = checkout_service.checkout(store.id, customer.id, [{"product_id": product_a.id, "quantity": 1}])

        assert checkout_service.get_sale(first.id).total_amount_cents == 1000
        assert second.total_amount_cents == 1500

    def test_rejections(self, db_session, product_a, product_b, customer):
        with pytest.raises(ValidationError):
            catalog_service.update_product(product_a.id, {})
        with pytest.raises(ValidationError):
            catalog_service.update_product(product_a.id, {"price_cents": -5})
        with pytest.raises(ValidationError, match="Field not allowed"):
            catalog_service.update_product(product_a.id, {"quantity": 500})
        with pytest.raises(ValidationError):
            catalog_service.update_product(product_a.id, {"supplier_id": customer.id})
        with pytest.raises(ConflictError):
            catalog_service.update_product(product_a.id, {"sku": product_b.sku})
        with pytest.raises(NotFoundError):
            catalog_service.update_product(424242, {"name": "Ghost"})

        assert catalog_service.get_product(product_a.id).price_cents == 1000

    def test_keeping_own_sku_is_allowed(self, db_session, product_a):
        assert catalog_service.update_product(product_a.id, {"sku": "SKU-A"}).sku == "SKU-A"


class TestDeactivateProduct:
    def test_soft_delete(self, db_session, store, product_a, stock):
        stock(store.id, product_a.id, 6)

        product = catalog_service.deactivate_product(product_a.id)

        assert product.is_active is False
        assert catalog_service.get_product(product_a.id) is not None
        assert ledger_service.get_entry(store.id, product_a.id).quantity == 6
        assert product_a.id not in [p.id for p in catalog_service.list_products(store_id=store.id)]
        # Idempotent
        assert catalog_service.deactivate_product(product_a.id).is_active is False

    def test_deactivated_product_refused_at_checkout(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 6)
        catalog_service.deactivate_product(product_a.id)

        with pytest.raises(ValidationError, match="inactive"):
            checkout_service.checkout(store.id, customer.id, [{"product_id": product_a.id, "quantity": 1}])

        assert ledger_service.get_entry(store.id, product_a.id).quantity == 6
        assert db_session.query(Sale).count() == 0

    def test_deactivated_product_refused_on_orders(self, db_session, store, manager, supplier, customer, product_a):
        catalog_service.deactivate_product(product_a.id)

        with pytest.raises(ValidationError):
            manager_order_service.create_manager_order(
                manager.id, supplier.id, [{"product_id": product_a.id, "quantity": 1}],
            )
        with pytest.raises(ValidationError):
            customer_order_service.create_customer_order(
                customer.id, store.id, [{"product_id": product_a.id, "quantity": 1}],
            )

    def test_reactivate_through_update(self, db_session, store, customer, product_a, stock):
        stock(store.id, product_a.id, 2)
        catalog_service.deactivate_product(product_a.id)
        catalog_service.update_product(product_a.id, {"is_active": True})

        sale = checkout_service.checkout(store.id, customer.id, [{"product_id": product_a.id, "quantity": 2}])
        assert sale.total_amount_cents == 2000

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            catalog_service.deactivate_product(424242)


class TestAuthorizeStore:
    def test_idempotent(self, db_session, other_store, product_a):
        catalog_service.authorize_store(product_a.id, other_store.id)
        product = catalog_service.authorize_store(product_a.id, other_store.id)

        assert sorted(s.id for s in product.stores).count(other_store.id) == 1


class TestSellable:
    def test_require_sellable(self, db_session, store, product_a, inactive_product, foreign_product):
        catalog_service.require_sellable(product_a, store.id)

        with pytest.raises(ValidationError, match="inactive"):
            catalog_service.require_sellable(inactive_product, store.id)
        with pytest.raises(ValidationError, match="not available"):
            catalog_service.require_sellable(foreign_product, store.id)

    def test_merge_and_price_lines(self, db_session, product_a, product_b):
        merged = catalog_service.merge_lines([
            {"product_id": product_a.id, "quantity": 1},
            {"product_id": product_b.id, "quantity": 2},
            {"product_id": product_a.id, "quantity": 3},
        ])
        assert merged == [
            {"product_id": product_a.id, "quantity": 4},
            {"product_id": product_b.id, "quantity": 2},
        ]

        priced, total = catalog_service.price_lines(merged)
        assert [line["total_price_cents"] for line in priced] == [4000, 500]
        assert total == 4500
