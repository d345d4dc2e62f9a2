"""
Delivery routes and safety checklists/incidents.
"""

from datetime import date, timedelta

import pytest

from lpg.errors import Conflict, ValidationFailed
from lpg.extensions import db
from lpg.models import DeliveryPersonnel, Sale
from lpg.services import delivery_service, safety_service, sales_service


def _personnel(org_id, **overrides):
    payload = {
        "name": "Suresh Kumar",
        "phone": "9822001100",
        "vehicle_type": "VAN",
        "vehicle_number": "mh12ab1234",
        "license_number": "MH1220190001234",
        "license_expiry": (date.today() + timedelta(days=365)).isoformat(),
    }
    payload.update(overrides)
    return delivery_service.create_personnel(org_id, None, payload)


def _delivery_sale(org_id, user_id, product_id, customer_id):
    return sales_service.create_sale(org_id, user_id, {
        "items": [{"product_id": product_id, "quantity": 1}],
        "customer_id": customer_id,
        "delivery_required": True,
        "delivery_charges_cents": 3000,
    })


class TestDeliveryLifecycle:

    def test_full_route(self, owner_a, org_a, accessory, customer):
        driver = _personnel(org_a.id)
        first = _delivery_sale(org_a.id, owner_a.id, accessory.id, customer.id)
        second = _delivery_sale(org_a.id, owner_a.id, accessory.id, customer.id)

        route = delivery_service.assign(org_a.id, owner_a.id, {
            "personnel_id": driver.id, "sale_ids": [first.id, second.id],
        })
        assert route.status == "PLANNED"
        assert db.session.get(Sale, first.id).delivery_status == "SCHEDULED"
        assert db.session.get(DeliveryPersonnel, driver.id).availability == "ON_DELIVERY"

        delivery_service.start_route(org_a.id, route.id, owner_a.id)
        assert db.session.get(Sale, second.id).delivery_status == "IN_TRANSIT"

        delivery_service.record_proof(org_a.id, first.id, owner_a.id, {"signature": "data:image/png;base64,AAA"})
        assert db.session.get(Sale, first.id).delivered_at is not None

        route = delivery_service.complete_route(org_a.id, route.id, owner_a.id)
        assert route.status == "COMPLETED"
        assert db.session.get(Sale, first.id).delivery_status == "DELIVERED"
        assert db.session.get(Sale, second.id).delivery_status == "FAILED"

        driver = db.session.get(DeliveryPersonnel, driver.id)
        assert driver.availability == "AVAILABLE"
        assert driver.completed_deliveries == 1
        assert [s.id for s in delivery_service.pending_deliveries(org_a.id)] == [second.id]

    def test_failed_sale_can_be_rescheduled(self, owner_a, org_a, accessory, customer):
        driver = _personnel(org_a.id)
        sale = _delivery_sale(org_a.id, owner_a.id, accessory.id, customer.id)
        route = delivery_service.assign(org_a.id, owner_a.id, {"personnel_id": driver.id, "sale_ids": [sale.id]})
        delivery_service.start_route(org_a.id, route.id, owner_a.id)
        delivery_service.complete_route(org_a.id, route.id, owner_a.id)

        again = delivery_service.assign(org_a.id, owner_a.id, {"personnel_id": driver.id, "sale_ids": [sale.id]})
        assert again.status == "PLANNED"

    def test_busy_driver_rejected(self, owner_a, org_a, accessory, customer):
        driver = _personnel(org_a.id)
        a = _delivery_sale(org_a.id, owner_a.id, accessory.id, customer.id)
        b = _delivery_sale(org_a.id, owner_a.id, accessory.id, customer.id)
        delivery_service.assign(org_a.id, owner_a.id, {"personnel_id": driver.id, "sale_ids": [a.id]})

        with pytest.raises(ValidationFailed):
            delivery_service.assign(org_a.id, owner_a.id, {"personnel_id": driver.id, "sale_ids": [b.id]})
        assert db.session.get(Sale, b.id).delivery_status == "PENDING"

    def test_expired_license_rejected(self, owner_a, org_a, accessory, customer):
        driver = _personnel(org_a.id, license_expiry="2020-01-01")
        sale = _delivery_sale(org_a.id, owner_a.id, accessory.id, customer.id)
        with pytest.raises(ValidationFailed):
            delivery_service.assign(org_a.id, owner_a.id, {"personnel_id": driver.id, "sale_ids": [sale.id]})

    def test_counter_sale_cannot_be_routed(self, owner_a, org_a, accessory):
        driver = _personnel(org_a.id)
        sale = sales_service.create_sale(org_a.id, owner_a.id, {"items": [{"product_id": accessory.id, "quantity": 1}]})
        with pytest.raises(ValidationFailed):
            delivery_service.assign(org_a.id, owner_a.id, {"personnel_id": driver.id, "sale_ids": [sale.id]})

    def test_proof_requires_in_transit(self, owner_a, org_a, accessory, customer):
        sale = _delivery_sale(org_a.id, owner_a.id, accessory.id, customer.id)
        with pytest.raises(ValidationFailed):
            delivery_service.record_proof(org_a.id, sale.id, owner_a.id, {"signature": "sig"})

    def test_manual_status_transitions(self, owner_a, org_a, accessory, customer):
        sale = _delivery_sale(org_a.id, owner_a.id, accessory.id, customer.id)
        with pytest.raises(ValidationFailed):
            sales_service.update_delivery_status(org_a.id, sale.id, owner_a.id, status="DELIVERED")
        sale = sales_service.update_delivery_status(org_a.id, sale.id, owner_a.id, status="CANCELLED")
        assert sale.delivery_status == "CANCELLED"

    def test_delivery_endpoint_uses_roles(self, client, delivery_headers, owner_headers, org_a, owner_a,
                                          accessory, customer):
        driver = _personnel(org_a.id)
        sale = _delivery_sale(org_a.id, owner_a.id, accessory.id, customer.id)

        resp = client.post("/api/delivery/assign", headers=owner_headers,
                           json={"personnel_id": driver.id, "sale_ids": [sale.id]})
        assert resp.status_code == 201
        route_id = resp.get_json()["data"]["id"]

        assert client.put(f"/api/delivery/routes/{route_id}/start", headers=delivery_headers).status_code == 200
        resp = client.put(f"/api/delivery/{sale.id}/proof", headers=delivery_headers, json={"signature": "sig"})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["delivery"]["status"] == "DELIVERED"


class TestSafetyChecklists:

    def _checklist(self, owner_a, org_a, accessory, customer, checklist_type="refill"):
        sale = sales_service.create_sale(org_a.id, owner_a.id, {
            "items": [{"product_id": accessory.id, "quantity": 1}],
            "customer_id": customer.id,
        })
        return safety_service.create_checklist_for_sale(org_a.id, owner_a.id, {
            "sale_id": sale.id, "checklist_type": checklist_type,
        })

    def test_completion_requires_everything(self, owner_a, org_a, accessory, customer):
        checklist = self._checklist(owner_a, org_a, accessory, customer)
        assert checklist.status == "PENDING"

        for item in list(checklist.items):
            checklist = safety_service.check_item(org_a.id, checklist.id, item.id, owner_a.id)
        assert checklist.status == "IN_PROGRESS"

        checklist = safety_service.acknowledge(org_a.id, checklist.id, owner_a.id,
                                               signature="sig", customer_name="Asha Verma")
        assert checklist.status == "IN_PROGRESS"

        checklist = safety_service.set_flags(org_a.id, checklist.id, owner_a.id, {
            "safety_instructions_given": True, "emergency_contact_verified": True,
        })
        assert checklist.status == "COMPLETED"
        assert checklist.completed_at is not None

    def test_duplicate_checklist_conflict(self, owner_a, org_a, accessory, customer):
        checklist = self._checklist(owner_a, org_a, accessory, customer)
        with pytest.raises(Conflict):
            safety_service.create_checklist_for_sale(org_a.id, owner_a.id, {
                "sale_id": checklist.sale_id, "checklist_type": "refill",
            })

    def test_acknowledge_requires_signature(self, owner_a, org_a, accessory, customer):
        checklist = self._checklist(owner_a, org_a, accessory, customer)
        with pytest.raises(ValidationFailed):
            safety_service.acknowledge(org_a.id, checklist.id, owner_a.id, signature="", customer_name="X")


class TestIncidents:

    def _report(self, org_id, **overrides):
        payload = {
            "incident_type": "LEAK",
            "severity": "HIGH",
            "location": "12 MG Road, Pune",
            "description": "Regulator leak reported by customer",
        }
        payload.update(overrides)
        return safety_service.report_incident(org_id, None, payload)

    def test_status_only_moves_forward(self, owner_a, org_a):
        incident = self._report(org_a.id)
        incident = safety_service.update_incident_status(org_a.id, incident.id, owner_a.id, status="INVESTIGATING")
        incident = safety_service.update_incident_status(org_a.id, incident.id, owner_a.id,
                                                         status="RESOLVED", notes="Regulator replaced")
        assert incident.resolved_at is not None

        with pytest.raises(ValidationFailed):
            safety_service.update_incident_status(org_a.id, incident.id, owner_a.id, status="REPORTED")

    def test_missing_description(self, org_a):
        with pytest.raises(ValidationFailed):
            self._report(org_a.id, description="  ")

    def test_compliance_report(self, owner_a, org_a, accessory, customer):
        self._report(org_a.id)
        self._report(org_a.id, incident_type="NEAR_MISS", severity="LOW")
        sale = sales_service.create_sale(org_a.id, owner_a.id, {
            "items": [{"product_id": accessory.id, "quantity": 1}], "customer_id": customer.id,
        })
        safety_service.create_checklist_for_sale(org_a.id, owner_a.id, {"sale_id": sale.id, "checklist_type": "refill"})

        report = safety_service.compliance_report(org_a.id)
        assert report["open_incidents"] == 2
        assert report["pending_checklists"] == 1
        assert report["compliance_rate_pct"] == 0
