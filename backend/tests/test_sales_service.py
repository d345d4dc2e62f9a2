"""
Sale engine tests.

Verifies:
- Cylinder reservation picks the first N IN_STOCK units by serial
- Counters, cylinder status/history and customer aggregates move together
- Any failure rolls back every write of the sale
- Invoice numbers are sequential per dealer and reset each day
- Credit sales respect the customer's credit limit
"""

from datetime import datetime

import pytest

from lpg.errors import InsufficientInventory, NotFound, ValidationFailed
from lpg.extensions import db
from lpg.models import AuditLog, Customer, Cylinder, CylinderHistory, Product, Sale, SafetyChecklist
from lpg.services import customer_service, sales_service

from conftest import make_accessory, make_customer, make_cylinder_product, register_cylinders


FIXED_NOW = datetime(2026, 3, 14, 9, 30)


@pytest.fixture
def fixed_clock(monkeypatch):
    monkeypatch.setattr(sales_service, "utcnow", lambda: FIXED_NOW)
    return FIXED_NOW


def _sale(org_id, user_id, items, **extra):
    return sales_service.create_sale(org_id, user_id, {"items": items, **extra})


# =============================================================================
# RESERVATION
# =============================================================================


class TestCylinderReservation:

    def test_reserves_lowest_serials_first(self, owner_a, org_a, cylinder_product, customer, fixed_clock):
        # Registered out of order on purpose
        register_cylinders(org_a.id, 2, start=3)
        register_cylinders(org_a.id, 2, start=1)

        sale = _sale(org_a.id, owner_a.id, [{"product_id": cylinder_product.id, "quantity": 2}],
                     customer_id=customer.id, paid_amount_cents=180000)

        assert sale.lines[0].serial_numbers == ["CYL-2024-000001", "CYL-2024-000002"]
        remaining = (
            db.session.query(Cylinder.serial_number)
            .filter_by(org_id=org_a.id, status="IN_STOCK")
            .order_by(Cylinder.serial_number)
            .all()
        )
        assert [s for (s,) in remaining] == ["CYL-2024-000003", "CYL-2024-000004"]

    def test_sold_cylinders_move_to_customer(self, owner_a, org_a, cylinder_product, cylinders, customer):
        sale = _sale(org_a.id, owner_a.id, [{"product_id": cylinder_product.id, "quantity": 1}],
                     customer_id=customer.id)

        cylinder = db.session.get(Cylinder, cylinders[0].id)
        assert cylinder.status == "WITH_CUSTOMER"
        assert cylinder.customer_id == customer.id
        assert cylinder.location_type == "CUSTOMER"

        history = db.session.query(CylinderHistory).filter_by(cylinder_id=cylinder.id, action="SOLD").one()
        assert history.sale_id == sale.id
        assert history.from_status == "IN_STOCK"
        assert history.to_status == "WITH_CUSTOMER"

    def test_walk_in_sale_location(self, owner_a, org_a, cylinder_product, cylinders):
        _sale(org_a.id, owner_a.id, [{"product_id": cylinder_product.id, "quantity": 1}])
        cylinder = db.session.get(Cylinder, cylinders[0].id)
        assert cylinder.location_type == "WALK_IN"
        assert cylinder.customer_id is None

    def test_two_lines_same_capacity_take_distinct_units(self, owner_a, org_a, cylinders):
        p1 = make_cylinder_product(org_a.id, name="Indane 11.8kg")
        p2 = make_cylinder_product(org_a.id, name="HP 11.8kg")

        sale = _sale(org_a.id, owner_a.id, [
            {"product_id": p1.id, "quantity": 2},
            {"product_id": p2.id, "quantity": 2},
        ])

        first, second = sale.lines
        assert first.serial_numbers == ["CYL-2024-000001", "CYL-2024-000002"]
        assert second.serial_numbers == ["CYL-2024-000003", "CYL-2024-000004"]

    def test_counters_updated(self, owner_a, org_a, cylinder_product, cylinders, accessory):
        _sale(org_a.id, owner_a.id, [
            {"product_id": cylinder_product.id, "quantity": 3},
            {"product_id": accessory.id, "quantity": 2},
        ])

        product = db.session.get(Product, cylinder_product.id)
        assert product.filled_count == 7
        assert product.sold_count == 3
        assert db.session.get(Product, accessory.id).stock == 18


# =============================================================================
# SHORTFALLS
# =============================================================================


class TestInsufficientInventory:

    def test_not_enough_registered_units(self, owner_a, org_a, cylinder_product):
        register_cylinders(org_a.id, 2)

        with pytest.raises(InsufficientInventory) as exc_info:
            _sale(org_a.id, owner_a.id, [{"product_id": cylinder_product.id, "quantity": 3}])

        err = exc_info.value
        assert err.status_code == 409
        assert err.details["requested"] == 3
        assert err.details["available"] == 2
        assert err.details["product_id"] == cylinder_product.id

    def test_not_enough_filled_counter(self, owner_a, org_a):
        product = make_cylinder_product(org_a.id, filled=1)
        register_cylinders(org_a.id, 4)

        with pytest.raises(InsufficientInventory) as exc_info:
            _sale(org_a.id, owner_a.id, [{"product_id": product.id, "quantity": 2}])
        assert exc_info.value.details["available"] == 1

    def test_other_capacity_units_do_not_count(self, owner_a, org_a):
        commercial = make_cylinder_product(org_a.id, capacity="45.4kg")
        register_cylinders(org_a.id, 5, capacity="11.8kg")

        with pytest.raises(InsufficientInventory):
            _sale(org_a.id, owner_a.id, [{"product_id": commercial.id, "quantity": 1}])

    def test_accessory_stock(self, owner_a, org_a):
        hose = make_accessory(org_a.id, stock=1, name="Suraksha Hose")
        with pytest.raises(InsufficientInventory):
            _sale(org_a.id, owner_a.id, [{"product_id": hose.id, "quantity": 2}])
        assert db.session.get(Product, hose.id).stock == 1


# =============================================================================
# ATOMICITY
# =============================================================================


class TestAtomicity:

    def _assert_untouched(self, org_id, product_id, cylinder_ids):
        assert db.session.query(Sale).filter_by(org_id=org_id).count() == 0
        product = db.session.get(Product, product_id)
        assert product.filled_count == 10
        assert product.sold_count == 0
        for cid in cylinder_ids:
            cylinder = db.session.get(Cylinder, cid)
            assert cylinder.status == "IN_STOCK"
            assert cylinder.customer_id is None
        assert db.session.query(CylinderHistory).filter_by(action="SOLD").count() == 0
        assert db.session.query(AuditLog).filter_by(resource="sale").count() == 0

    def test_customer_update_failure_rolls_back_everything(
        self, monkeypatch, owner_a, org_a, cylinder_product, cylinders, customer
    ):
        def boom(*args, **kwargs):
            raise RuntimeError("customer store unavailable")

        monkeypatch.setattr(customer_service, "apply_sale_to_customer", boom)

        with pytest.raises(RuntimeError):
            _sale(org_a.id, owner_a.id, [{"product_id": cylinder_product.id, "quantity": 2}],
                  customer_id=customer.id)

        self._assert_untouched(org_a.id, cylinder_product.id, [c.id for c in cylinders])
        c = db.session.get(Customer, customer.id)
        assert c.loyalty_points == 0
        assert c.total_refills == 0

    def test_later_line_failure_releases_earlier_lines(self, owner_a, org_a, cylinder_product, cylinders):
        hose = make_accessory(org_a.id, stock=0, name="Suraksha Hose")

        with pytest.raises(InsufficientInventory):
            _sale(org_a.id, owner_a.id, [
                {"product_id": cylinder_product.id, "quantity": 2},
                {"product_id": hose.id, "quantity": 1},
            ])

        self._assert_untouched(org_a.id, cylinder_product.id, [c.id for c in cylinders])

    def test_credit_limit_failure_rolls_back(self, owner_a, org_a, cylinder_product, cylinders):
        buyer = make_customer(org_a.id, credit_limit_cents=50000)

        with pytest.raises(ValidationFailed):
            _sale(org_a.id, owner_a.id, [{"product_id": cylinder_product.id, "quantity": 1}],
                  customer_id=buyer.id, payment_method="CREDIT")

        self._assert_untouched(org_a.id, cylinder_product.id, [c.id for c in cylinders])
        assert db.session.get(Customer, buyer.id).current_credit_cents == 0


# =============================================================================
# INVOICE NUMBERS
# =============================================================================


class TestInvoiceNumbers:

    def test_sequential_within_day(self, owner_a, org_a, accessory, fixed_clock):
        first = _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}])
        second = _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}])

        assert first.invoice_number == "LPG20260314001"
        assert second.invoice_number == "LPG20260314002"

    def test_sequence_resets_next_day(self, monkeypatch, owner_a, org_a, accessory, fixed_clock):
        _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}])
        _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}])

        monkeypatch.setattr(sales_service, "utcnow", lambda: datetime(2026, 3, 15, 0, 5))
        next_day = _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}])
        assert next_day.invoice_number == "LPG20260315001"

    def test_sequence_is_per_dealer(self, owner_a, owner_b, org_a, org_b, accessory, fixed_clock):
        _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}])
        other = make_accessory(org_b.id)
        sale_b = _sale(org_b.id, owner_b.id, [{"product_id": other.id, "quantity": 1}])
        assert sale_b.invoice_number == "LPG20260314001"

    def test_failed_sale_does_not_consume_number(self, owner_a, org_a, accessory, fixed_clock):
        with pytest.raises(InsufficientInventory):
            _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 999}])
        sale = _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}])
        assert sale.invoice_number == "LPG20260314001"


# =============================================================================
# TOTALS, PAYMENT AND CUSTOMER AGGREGATES
# =============================================================================


class TestTotalsAndCustomer:

    def test_totals_persisted(self, owner_a, org_a, cylinder_product, cylinders, customer):
        sale = _sale(
            org_a.id, owner_a.id,
            [{"product_id": cylinder_product.id, "quantity": 2}],
            customer_id=customer.id,
            discount_type="PERCENTAGE",
            discount_rate_bps=500,
            tax_rate_bps=1800,
            delivery_required=True,
            delivery_charges_cents=5000,
            paid_amount_cents=100000,
        )

        assert sale.subtotal_cents == 180000
        assert sale.discount_cents == 9000
        assert sale.tax_cents == 30780
        assert sale.total_cents == 206780
        assert sale.payment_status == "PARTIAL"
        assert sale.balance_due_cents == 106780
        assert len(sale.payments) == 1

    def test_customer_aggregates(self, owner_a, org_a, cylinder_product, cylinders, customer):
        _sale(org_a.id, owner_a.id, [{"product_id": cylinder_product.id, "quantity": 2}],
              customer_id=customer.id, paid_amount_cents=180000)

        c = db.session.get(Customer, customer.id)
        assert c.loyalty_points == 18
        assert c.total_spent_cents == 180000
        assert c.total_refills == 2
        assert c.last_purchase_at is not None

    def test_accessory_lines_are_not_refills(self, owner_a, org_a, accessory, customer):
        _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 3}], customer_id=customer.id)
        assert db.session.get(Customer, customer.id).total_refills == 0

    def test_price_override(self, owner_a, org_a, accessory):
        sale = _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 2, "unit_price_cents": 30000}])
        assert sale.lines[0].unit_price_cents == 30000
        assert sale.total_cents == 60000

    def test_credit_sale_books_balance(self, owner_a, org_a, cylinder_product, cylinders):
        buyer = make_customer(org_a.id, credit_limit_cents=200000)
        sale = _sale(org_a.id, owner_a.id, [{"product_id": cylinder_product.id, "quantity": 1}],
                     customer_id=buyer.id, payment_method="CREDIT", paid_amount_cents=10000)

        assert sale.payment_status == "PARTIAL"
        assert db.session.get(Customer, buyer.id).current_credit_cents == 80000

        sales_service.add_payment(org_a.id, sale.id, owner_a.id, {"amount_cents": 80000, "method": "CASH"})
        sale = db.session.get(Sale, sale.id)
        assert sale.payment_status == "PAID"
        assert sale.payment_method == "MIXED"
        assert db.session.get(Customer, buyer.id).current_credit_cents == 0

    def test_payment_cannot_exceed_balance(self, owner_a, org_a, accessory):
        sale = _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}])
        with pytest.raises(ValidationFailed):
            sales_service.add_payment(org_a.id, sale.id, owner_a.id, {"amount_cents": 35001})

    def test_new_connection_creates_checklist(self, owner_a, org_a, cylinder_product, cylinders, customer):
        sale = _sale(org_a.id, owner_a.id, [{"product_id": cylinder_product.id, "quantity": 1}],
                     customer_id=customer.id, sale_type="NEW_CONNECTION")

        checklist = db.session.query(SafetyChecklist).filter_by(sale_id=sale.id).one()
        assert checklist.checklist_type == "new-connection"
        assert checklist.status == "PENDING"
        assert len(checklist.items) == 13

    def test_delivery_defaults_to_primary_premises(self, owner_a, org_a, accessory, customer):
        sale = _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}],
                     customer_id=customer.id, delivery_required=True, delivery_time="MORNING")

        assert sale.delivery_status == "PENDING"
        assert sale.delivery_premises_id == customer.primary_premises().id
        assert "411001" in sale.delivery_address

    def test_no_delivery_is_not_required(self, owner_a, org_a, accessory):
        sale = _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}])
        assert sale.delivery_status == "NOT_REQUIRED"

    def test_audit_row_written(self, owner_a, org_a, accessory):
        sale = _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}])
        entry = db.session.query(AuditLog).filter_by(resource="sale", resource_id=sale.id).one()
        assert entry.action == "CREATE"
        assert entry.after["invoice_number"] == sale.invoice_number


# =============================================================================
# REQUEST VALIDATION
# =============================================================================


class TestRequestValidation:

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"items": []},
            {"items": [{"product_id": 1, "quantity": 0}]},
            {"items": [{"product_id": 1, "quantity": 1}], "payment_method": "BARTER"},
            {"items": [{"product_id": 1, "quantity": 1}], "sale_type": "GIFT"},
            {"items": [{"product_id": 1, "quantity": 1}], "warehouse_id": 3},
            {"items": [{"product_id": 1, "quantity": 1}], "payment_method": "CREDIT"},
            {"items": [{"product_id": 1, "quantity": 1}], "delivery_charges_cents": 500},
            {"items": [{"product_id": 1, "quantity": 1}], "delivery_required": True},
        ],
    )
    def test_rejected(self, payload):
        with pytest.raises(ValidationFailed):
            sales_service.parse_sale_request(payload)

    def test_unknown_product(self, owner_a, org_a):
        with pytest.raises(NotFound):
            _sale(org_a.id, owner_a.id, [{"product_id": 999999, "quantity": 1}])

    def test_inactive_customer(self, owner_a, org_a, accessory, customer):
        customer_service.deactivate_customer(org_a.id, customer.id, owner_a.id)
        with pytest.raises(ValidationFailed):
            _sale(org_a.id, owner_a.id, [{"product_id": accessory.id, "quantity": 1}], customer_id=customer.id)

    def test_other_dealers_product(self, owner_a, org_a, org_b):
        foreign = make_accessory(org_b.id)
        with pytest.raises(NotFound):
            _sale(org_a.id, owner_a.id, [{"product_id": foreign.id, "quantity": 1}])
        assert db.session.get(Product, foreign.id).stock == 20
