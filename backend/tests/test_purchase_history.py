"""
Per-customer purchase history, gas consumption and refill forecasting.
"""

import csv
import io
from datetime import timedelta

import pytest

from lpg.errors import NotFound, ValidationFailed
from lpg.extensions import db
from lpg.services import customer_service, purchase_history_service, sales_service
from lpg.time_utils import month_keys, utcnow

from conftest import make_customer


def _buy(org_id, user_id, customer, product, *, quantity=1, days_ago=0, **extra):
    payload = {"items": [{"product_id": product.id, "quantity": quantity}], "customer_id": customer.id}
    payload.update(extra)
    sale = sales_service.create_sale(org_id, user_id, payload)
    if days_ago:
        sale.created_at = utcnow() - timedelta(days=days_ago)
        db.session.commit()
    return sale


def _age(customer, days):
    customer.created_at = utcnow() - timedelta(days=days)
    db.session.commit()


@pytest.fixture
def regular(owner_a, org_a, cylinder_product, cylinders):
    """Customer of ninety days who refills one 11.8kg cylinder a month."""
    customer = make_customer(org_a.id, phone="9000000011", name="Regular Refiller")
    _age(customer, 90)
    for days_ago in (85, 55, 25):
        _buy(org_a.id, owner_a.id, customer, cylinder_product, days_ago=days_ago)
    return customer


class TestConsumptionPattern:

    def test_monthly_weight_and_forecast(self, org_a, regular):
        pattern = customer_service.consumption_pattern(org_a.id, regular.id)

        assert [m["month"] for m in pattern["monthly"]] == month_keys(utcnow(), 12)
        assert sum(m["refills"] for m in pattern["monthly"]) == 3
        assert sum(m["amount_cents"] for m in pattern["monthly"]) == 3 * 90000
        assert pattern["total_weight_grams"] == 3 * 11800
        assert pattern["average_monthly_grams"] == 11800
        assert pattern["last_refill_grams"] == 11800
        assert pattern["days_until_refill"] == 5
        assert pattern["next_expected_refill"] == (utcnow() + timedelta(days=5)).date().isoformat()

    def test_accessories_are_not_gas(self, owner_a, org_a, customer, accessory):
        _buy(org_a.id, owner_a.id, customer, accessory, quantity=3)
        pattern = customer_service.consumption_pattern(org_a.id, customer.id)
        assert pattern["total_weight_grams"] == 0
        assert pattern["last_refill_at"] is None
        assert pattern["next_expected_refill"] is None

    def test_months_window(self, org_a, regular):
        pattern = customer_service.consumption_pattern(org_a.id, regular.id, months=1)
        assert len(pattern["monthly"]) == 1
        with pytest.raises(ValidationFailed):
            customer_service.consumption_pattern(org_a.id, regular.id, months=0)

    def test_over_http(self, client, sales_headers, regular):
        resp = client.get(f"/api/customers/{regular.id}/consumption-pattern?months=6", headers=sales_headers)
        assert resp.status_code == 200
        assert len(resp.get_json()["data"]["monthly"]) == 6

    def test_other_dealer_is_404(self, org_b, regular):
        with pytest.raises(NotFound):
            customer_service.consumption_pattern(org_b.id, regular.id)


class TestDueForRefill:

    def test_due_within_window(self, owner_a, org_a, cylinder_product, regular):
        recent = make_customer(org_a.id, phone="9000000012", name="Just Refilled")
        _buy(org_a.id, owner_a.id, recent, cylinder_product, days_ago=1)

        due = customer_service.due_for_refill(org_a.id, days=7)
        assert [d["customer_id"] for d in due] == [regular.id]
        assert due[0]["name"] == "Regular Refiller"
        assert "monthly" not in due[0]

        assert customer_service.due_for_refill(org_a.id, days=3) == []

    def test_overdue_sorted_first(self, owner_a, org_a, cylinder_product, regular):
        lapsed = make_customer(org_a.id, phone="9000000013", name="Lapsed")
        _age(lapsed, 100)
        for days_ago in (100, 70):
            _buy(org_a.id, owner_a.id, lapsed, cylinder_product, days_ago=days_ago)

        due = customer_service.due_for_refill(org_a.id, days=7)
        assert [d["customer_id"] for d in due] == [lapsed.id, regular.id]
        # 23.6kg over four months: one cylinder lasts sixty days
        assert due[0]["days_until_refill"] == -10

    def test_inactive_customers_skipped(self, owner_a, org_a, regular):
        customer_service.deactivate_customer(org_a.id, regular.id, owner_a.id)
        assert customer_service.due_for_refill(org_a.id) == []

    def test_over_http(self, client, sales_headers, regular):
        resp = client.get("/api/customers/due-refill?days=10", headers=sales_headers)
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 1
        assert client.get("/api/customers/due-refill?days=abc", headers=sales_headers).status_code == 400


class TestPurchaseHistory:

    def test_list_search_and_range(self, client, owner_a, org_a, customer, cylinder_product, cylinders,
                                   accessory, sales_headers):
        old = _buy(org_a.id, owner_a.id, customer, cylinder_product, days_ago=40, notes="Diwali order")
        new = _buy(org_a.id, owner_a.id, customer, accessory)

        resp = client.get(f"/api/purchase-history/{customer.id}", headers=sales_headers)
        assert [s["id"] for s in resp.get_json()["data"]] == [new.id, old.id]

        resp = client.get(f"/api/purchase-history/{customer.id}?search=diwali", headers=sales_headers)
        assert [s["id"] for s in resp.get_json()["data"]] == [old.id]

        since = (utcnow() - timedelta(days=7)).date().isoformat()
        resp = client.get(f"/api/purchase-history/{customer.id}?start_date={since}", headers=sales_headers)
        assert [s["id"] for s in resp.get_json()["data"]] == [new.id]

    def test_summary(self, client, owner_a, org_a, customer, cylinder_product, cylinders, accessory,
                     sales_headers):
        _buy(org_a.id, owner_a.id, customer, cylinder_product, days_ago=30, paid_amount_cents=90000)
        _buy(org_a.id, owner_a.id, customer, accessory, quantity=2, payment_method="UPI")

        resp = client.get(f"/api/purchase-history/{customer.id}/summary", headers=sales_headers)
        summary = resp.get_json()["data"]
        assert summary["total_orders"] == 2
        assert summary["total_spent_cents"] == 90000 + 70000
        assert summary["total_paid_cents"] == 90000
        assert summary["outstanding_cents"] == 70000
        assert summary["average_order_cents"] == 80000
        assert summary["items_purchased"] == 3
        assert summary["lifespan_days"] in (29, 30)
        assert summary["by_payment_method"]["UPI"] == 1
        assert summary["by_sale_type"]["NEW_SALE"] == 2

    def test_summary_without_purchases(self, org_a, customer):
        summary = purchase_history_service.purchase_summary(org_a.id, customer.id)
        assert summary["total_orders"] == 0
        assert summary["average_order_cents"] == 0
        assert summary["purchase_frequency_days"] is None

    def test_preferences(self, owner_a, org_a, customer, cylinder_product, cylinders, accessory):
        _buy(org_a.id, owner_a.id, customer, accessory, quantity=2, payment_method="UPI")
        _buy(org_a.id, owner_a.id, customer, accessory, payment_method="UPI")
        _buy(org_a.id, owner_a.id, customer, cylinder_product)

        prefs = purchase_history_service.product_preferences(org_a.id, customer.id, limit=1)
        assert len(prefs["top_products"]) == 1
        top = prefs["top_products"][0]
        assert (top["product_id"], top["quantity"], top["order_count"]) == (accessory.id, 3, 2)
        assert prefs["preferred_payment_method"] == "UPI"

    def test_trends(self, client, owner_a, org_a, customer, accessory, sales_headers):
        _buy(org_a.id, owner_a.id, customer, accessory, days_ago=40)
        _buy(org_a.id, owner_a.id, customer, accessory)

        resp = client.get(f"/api/purchase-history/{customer.id}/trends?months=3", headers=sales_headers)
        trends = resp.get_json()["data"]
        assert [t["month"] for t in trends] == month_keys(utcnow(), 3)
        by_month = {t["month"]: t for t in trends}
        then = (utcnow() - timedelta(days=40)).strftime("%Y-%m")
        assert by_month[then]["order_count"] == 1
        assert by_month[then]["total_cents"] == 35000
        assert sum(t["order_count"] for t in trends) == 2

    def test_csv_export(self, client, owner_a, org_a, customer, accessory, sales_headers):
        sale = _buy(org_a.id, owner_a.id, customer, accessory, quantity=2, paid_amount_cents=50000)

        resp = client.get(f"/api/purchase-history/{customer.id}/export", headers=sales_headers)
        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"
        assert f"purchase-history-{customer.id}.csv" in resp.headers["Content-Disposition"]

        rows = list(csv.DictReader(io.StringIO(resp.get_data(as_text=True))))
        assert len(rows) == 1
        assert rows[0]["invoice_number"] == sale.invoice_number
        assert rows[0]["items"] == "2"
        assert rows[0]["total"] == "700.00"
        assert rows[0]["balance"] == "200.00"
        assert rows[0]["payment_status"] == "PARTIAL"

    def test_other_dealer_is_404(self, client, owner_b_headers, customer):
        resp = client.get(f"/api/purchase-history/{customer.id}/summary", headers=owner_b_headers)
        assert resp.status_code == 404

    def test_inventory_role_denied(self, client, inventory_headers, customer):
        resp = client.get(f"/api/purchase-history/{customer.id}", headers=inventory_headers)
        assert resp.status_code == 403
