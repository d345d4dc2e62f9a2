"""
Customer store: validation, premises rules, credit and loyalty aggregates.
"""

import pytest

from lpg.errors import Conflict, ValidationFailed
from lpg.extensions import db
from lpg.models import Customer
from lpg.services import customer_service, sales_service

from conftest import make_customer


PREMISES = {"name": "Shop", "street": "4 Station Road", "city": "Nashik", "pincode": "422001"}


class TestCreateCustomer:

    def test_first_premises_is_primary(self, org_a):
        customer = customer_service.create_customer(org_a.id, None, {
            "name": "Kiran Patil",
            "phone": "98765 43210",
            "premises": [dict(PREMISES), dict(PREMISES, name="Godown")],
        })
        assert customer.phone == "9876543210"
        assert [p.is_primary for p in customer.premises] == [True, False]
        assert customer.loyalty_tier == "BRONZE"

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "No Phone"},
            {"name": "Bad Phone", "phone": "12345"},
            {"name": "Bad Type", "phone": "9876500000", "customer_type": "ALIEN"},
            {"name": "Bad Pin", "phone": "9876500000", "premises": [dict(PREMISES, pincode="4220")]},
            {"name": "Missing City", "phone": "9876500000",
             "premises": [{"name": "Home", "street": "1 Lane", "pincode": "422001"}]},
            {"name": "Negative Credit", "phone": "9876500000", "credit_limit_cents": -1},
        ],
    )
    def test_invalid(self, org_a, payload):
        with pytest.raises(ValidationFailed):
            customer_service.create_customer(org_a.id, None, payload)

    def test_phone_unique_per_dealer(self, org_a, org_b):
        make_customer(org_a.id, phone="9000000001")
        with pytest.raises(Conflict):
            make_customer(org_a.id, phone="9000000001", name="Someone Else")
        assert make_customer(org_b.id, phone="9000000001").org_id == org_b.id


class TestPremises:

    def test_cannot_remove_last_premises(self, owner_a, org_a, customer):
        only = customer.primary_premises()
        with pytest.raises(ValidationFailed):
            customer_service.remove_premises(org_a.id, customer.id, only.id, owner_a.id)

    def test_removing_primary_promotes_another(self, owner_a, org_a, customer):
        first = customer.primary_premises()
        second = customer_service.add_premises(org_a.id, customer.id, owner_a.id, dict(PREMISES))
        assert second.is_primary is False

        customer_service.remove_premises(org_a.id, customer.id, first.id, owner_a.id)
        customer = db.session.get(Customer, customer.id)
        assert customer.primary_premises().id == second.id

    def test_new_primary_demotes_old(self, owner_a, org_a, customer):
        old = customer.primary_premises()
        new = customer_service.add_premises(org_a.id, customer.id, owner_a.id, dict(PREMISES, is_primary=True))
        customer = db.session.get(Customer, customer.id)
        assert customer.primary_premises().id == new.id
        assert [p.is_primary for p in customer.premises if p.id == old.id] == [False]


class TestCredit:

    def test_add_within_limit(self, owner_a, org_a):
        customer = make_customer(org_a.id, credit_limit_cents=100000)
        customer = customer_service.adjust_credit(org_a.id, customer.id, owner_a.id, amount_cents=60000)
        assert customer.current_credit_cents == 60000
        assert customer.available_credit_cents == 40000

    def test_add_over_limit_rejected(self, owner_a, org_a):
        customer = make_customer(org_a.id, credit_limit_cents=100000)
        customer_service.adjust_credit(org_a.id, customer.id, owner_a.id, amount_cents=60000)
        with pytest.raises(ValidationFailed):
            customer_service.adjust_credit(org_a.id, customer.id, owner_a.id, amount_cents=50000)
        assert db.session.get(Customer, customer.id).current_credit_cents == 60000

    def test_subtract_floors_at_zero(self, owner_a, org_a):
        customer = make_customer(org_a.id, credit_limit_cents=100000)
        customer_service.adjust_credit(org_a.id, customer.id, owner_a.id, amount_cents=20000)
        customer = customer_service.adjust_credit(org_a.id, customer.id, owner_a.id,
                                                  amount_cents=50000, operation="subtract")
        assert customer.current_credit_cents == 0

    def test_limit_cannot_drop_below_outstanding(self, owner_a, org_a):
        customer = make_customer(org_a.id, credit_limit_cents=100000)
        customer_service.adjust_credit(org_a.id, customer.id, owner_a.id, amount_cents=60000)

        with pytest.raises(ValidationFailed):
            customer_service.update_customer(org_a.id, customer.id, owner_a.id,
                                             {"credit_limit_cents": 50000, "name": "Asha V."})
        customer = db.session.get(Customer, customer.id)
        assert customer.credit_limit_cents == 100000
        assert customer.name == "Asha Verma"

        customer = customer_service.update_customer(org_a.id, customer.id, owner_a.id,
                                                    {"credit_limit_cents": 60000})
        assert customer.credit_limit_cents == 60000


class TestAggregates:

    def test_loyalty_tier_follows_points(self, owner_a, org_a, customer):
        db.session.query(Customer).filter_by(id=customer.id).update({Customer.loyalty_points: 1000})
        db.session.commit()
        assert db.session.get(Customer, customer.id).loyalty_tier == "GOLD"

    def test_refill_history_lists_cylinder_lines(self, owner_a, org_a, customer, cylinder_product, cylinders,
                                                 accessory):
        sales_service.create_sale(org_a.id, owner_a.id, {
            "items": [
                {"product_id": cylinder_product.id, "quantity": 2},
                {"product_id": accessory.id, "quantity": 1},
            ],
            "customer_id": customer.id,
        })

        entries = customer_service.refill_history(org_a.id, customer.id)
        assert len(entries) == 1
        assert entries[0]["quantity"] == 2
        assert entries[0]["serial_numbers"] == ["CYL-2024-000001", "CYL-2024-000002"]

    def test_top_customers_by_spend(self, owner_a, org_a, accessory):
        small = make_customer(org_a.id, phone="9000000001", name="Small Spender")
        big = make_customer(org_a.id, phone="9000000002", name="Big Spender")
        for buyer, qty in ((small, 1), (big, 3)):
            sales_service.create_sale(org_a.id, owner_a.id, {
                "items": [{"product_id": accessory.id, "quantity": qty}],
                "customer_id": buyer.id,
            })

        top = customer_service.top_customers(org_a.id, limit=2)
        assert [c.id for c in top] == [big.id, small.id]

        analytics = customer_service.customer_analytics(org_a.id)
        assert analytics["total_customers"] == 2
        assert analytics["total_spent_cents"] == 4 * 35000
        assert analytics["by_type"]["INDIVIDUAL"] == 2
