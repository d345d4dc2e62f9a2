"""
Catalog: product validation, SKU generation and counter operations.
"""

import pytest

from lpg.errors import Conflict, InsufficientInventory, ValidationFailed
from lpg.extensions import db
from lpg.models import AuditLog, Product
from lpg.services import catalog_service

from conftest import make_accessory, make_cylinder_product


class TestProducts:

    def test_category_implies_cylinder_type(self, org_a):
        product = make_cylinder_product(org_a.id)
        assert product.product_type == "CYLINDER"
        assert product.is_cylinder
        assert product.min_stock == 5
        assert product.max_stock == 100

    def test_generated_sku(self, org_a):
        product = make_accessory(org_a.id, name="Regulator Deluxe")
        assert product.sku == "REG-REG-0001"

    def test_duplicate_sku(self, org_a):
        catalog_service.create_product(org_a.id, None, {
            "name": "Hose", "category": "Gas Pipe", "price_cents": 100, "sku": "hose-1",
        })
        with pytest.raises(Conflict):
            catalog_service.create_product(org_a.id, None, {
                "name": "Hose 2", "category": "Gas Pipe", "price_cents": 100, "sku": "HOSE-1",
            })

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "No Price", "category": "Regulator"},
            {"name": "Odd", "category": "Spaceship", "price_cents": 100},
            {"name": "Cyl", "category": "LPG Cylinder", "price_cents": 100},
            {"name": "Neg", "category": "Regulator", "price_cents": -5},
            {"name": "Range", "category": "Regulator", "price_cents": 5, "min_stock": 10, "max_stock": 2},
            {"name": "Extra", "category": "Regulator", "price_cents": 5, "warehouse_id": 1},
        ],
    )
    def test_invalid(self, org_a, payload):
        with pytest.raises(ValidationFailed):
            catalog_service.create_product(org_a.id, None, payload)

    def test_deactivate_is_soft(self, owner_a, org_a, accessory):
        catalog_service.deactivate_product(org_a.id, accessory.id, owner_a.id)
        product = db.session.get(Product, accessory.id)
        assert product.is_active is False
        assert catalog_service.list_products(org_a.id).count() == 0
        assert catalog_service.list_products(org_a.id, is_active=None).count() == 1

    def test_low_stock(self, org_a):
        make_accessory(org_a.id, stock=2, name="Lighter")
        make_accessory(org_a.id, stock=50, name="Stove")
        assert [p.name for p in catalog_service.low_stock_products(org_a.id)] == ["Lighter"]

    def test_update_writes_audit(self, owner_a, org_a, accessory):
        catalog_service.update_product(org_a.id, accessory.id, owner_a.id, {"price_cents": 40000})
        entry = (
            db.session.query(AuditLog)
            .filter_by(resource="product", resource_id=accessory.id, action="UPDATE")
            .one()
        )
        assert entry.before["price_cents"] == 35000
        assert entry.after["price_cents"] == 40000


class TestCylinderCounters:

    def test_restock_filled(self, owner_a, org_a, cylinder_product):
        product = catalog_service.adjust_cylinder_state(
            org_a.id, cylinder_product.id, owner_a.id, state="filled", quantity=5
        )
        assert product.filled_count == 15

    def test_subtract_never_below_zero(self, owner_a, org_a, cylinder_product):
        with pytest.raises(InsufficientInventory):
            catalog_service.adjust_cylinder_state(
                org_a.id, cylinder_product.id, owner_a.id, state="empty", quantity=1, operation="subtract"
            )
        assert db.session.get(Product, cylinder_product.id).empty_count == 0

    def test_exchange_moves_counters(self, owner_a, org_a, cylinder_product):
        product = catalog_service.exchange_cylinders(org_a.id, cylinder_product.id, owner_a.id, quantity=3)
        assert (product.filled_count, product.empty_count, product.sold_count) == (7, 3, 3)

    def test_exchange_shortfall(self, owner_a, org_a, cylinder_product):
        with pytest.raises(InsufficientInventory):
            catalog_service.exchange_cylinders(org_a.id, cylinder_product.id, owner_a.id, quantity=11)

    def test_accessory_rejects_cylinder_state(self, owner_a, org_a, accessory):
        with pytest.raises(ValidationFailed):
            catalog_service.adjust_cylinder_state(org_a.id, accessory.id, owner_a.id, state="filled", quantity=1)

    def test_accessory_stock_adjust(self, owner_a, org_a, accessory):
        product = catalog_service.adjust_stock(org_a.id, accessory.id, owner_a.id, quantity=5, operation="subtract")
        assert product.stock == 15

    def test_cylinder_summary(self, org_a, cylinder_product, cylinders):
        summary = {row["cylinder_type"]: row for row in catalog_service.cylinder_summary(org_a.id)}
        assert summary["11.8kg"]["filled"] == 10
