"""
Cylinder registry: registration, status state machine, history and inspections.
"""

from datetime import date, timedelta

import pytest

from lpg.errors import Conflict, NotFound, ValidationFailed
from lpg.extensions import db
from lpg.models import Cylinder, CylinderHistory, CylinderInspection
from lpg.services import cylinder_service
from lpg.time_utils import utcnow

from conftest import register_cylinders


def _register(org_id, **overrides):
    payload = {
        "capacity": "11.8kg",
        "manufacturer": "Bharat Pressure Vessels",
        "manufacturing_date": "2023-06-01",
    }
    payload.update(overrides)
    return cylinder_service.register_cylinder(org_id, None, payload)


class TestRegistration:

    def test_generates_serial(self, org_a):
        year = utcnow().year
        first = _register(org_a.id)
        second = _register(org_a.id)
        assert first.serial_number == f"CYL-{year}-000001"
        assert second.serial_number == f"CYL-{year}-000002"

    def test_starts_in_stock_with_history(self, org_a):
        cylinder = _register(org_a.id)
        assert cylinder.status == "IN_STOCK"
        assert cylinder.location_type == "WAREHOUSE"

        entries = cylinder_service.history(org_a.id, cylinder.id)
        assert [e.action for e in entries] == ["REGISTERED"]
        assert entries[0].from_status is None

    def test_next_test_due_from_manufacturing_date(self, org_a):
        cylinder = _register(org_a.id, manufacturing_date="2023-06-01")
        assert cylinder.next_test_due == date(2028, 6, 1)

    def test_duplicate_serial_rejected(self, org_a):
        _register(org_a.id, serial_number="CYL-2024-000042")
        with pytest.raises(Conflict):
            _register(org_a.id, serial_number="CYL-2024-000042")

    def test_same_serial_allowed_in_other_dealer(self, org_a, org_b):
        _register(org_a.id, serial_number="CYL-2024-000042")
        other = _register(org_b.id, serial_number="CYL-2024-000042")
        assert other.org_id == org_b.id

    @pytest.mark.parametrize(
        "overrides",
        [
            {"serial_number": "CYL-24-1"},
            {"capacity": "5kg"},
            {"manufacturing_date": (date.today() + timedelta(days=30)).isoformat()},
            {"manufacturer": ""},
        ],
    )
    def test_invalid_input(self, org_a, overrides):
        with pytest.raises(ValidationFailed):
            _register(org_a.id, **overrides)


class TestStatusMachine:

    @pytest.mark.parametrize(
        "from_status,to_status,allowed",
        [
            ("IN_STOCK", "WITH_CUSTOMER", True),
            ("IN_STOCK", "UNDER_INSPECTION", True),
            ("WITH_CUSTOMER", "IN_STOCK", True),
            ("WITH_CUSTOMER", "UNDER_INSPECTION", False),
            ("IN_TRANSIT", "WITH_CUSTOMER", True),
            ("UNDER_INSPECTION", "WITH_CUSTOMER", False),
            ("CONDEMNED", "IN_STOCK", False),
        ],
    )
    def test_transition_table(self, from_status, to_status, allowed):
        assert cylinder_service.can_transition(from_status, to_status) is allowed

    def test_change_status_appends_history(self, owner_a, org_a, customer):
        cylinder = register_cylinders(org_a.id, 1)[0]
        cylinder_service.change_status(org_a.id, cylinder.id, owner_a.id, status="WITH_CUSTOMER",
                                       customer_id=customer.id, note="Issued at counter")
        cylinder_service.change_status(org_a.id, cylinder.id, owner_a.id, status="IN_STOCK", note="Returned")

        entries = cylinder_service.history(org_a.id, cylinder.id)
        assert [(e.from_status, e.to_status) for e in entries] == [
            (None, "IN_STOCK"),
            ("IN_STOCK", "WITH_CUSTOMER"),
            ("WITH_CUSTOMER", "IN_STOCK"),
        ]
        cylinder = db.session.get(Cylinder, cylinder.id)
        assert cylinder.customer_id is None
        assert cylinder.location_type == "WAREHOUSE"

    def test_dispatched_cylinder_arrives_with_its_customer(self, owner_a, org_a, customer):
        cylinder = register_cylinders(org_a.id, 1)[0]
        cylinder_service.change_status(org_a.id, cylinder.id, owner_a.id, status="IN_TRANSIT",
                                       customer_id=customer.id)
        cylinder_service.change_status(org_a.id, cylinder.id, owner_a.id, status="WITH_CUSTOMER")

        cylinder = db.session.get(Cylinder, cylinder.id)
        assert cylinder.status == "WITH_CUSTOMER"
        assert cylinder.location_type == "CUSTOMER"
        assert cylinder.customer_id == customer.id
        assert [c.id for c in cylinder_service.with_customer(org_a.id, customer.id)] == [cylinder.id]
        assert cylinder_service.history(org_a.id, cylinder.id)[-1].customer_id == customer.id

    def test_note_must_be_text(self, owner_a, org_a):
        cylinder = register_cylinders(org_a.id, 1)[0]
        with pytest.raises(ValidationFailed):
            cylinder_service.change_status(org_a.id, cylinder.id, owner_a.id, status="CONDEMNED",
                                           note=["dented"])
        assert db.session.get(Cylinder, cylinder.id).status == "IN_STOCK"

    def test_illegal_transition_leaves_no_trace(self, owner_a, org_a):
        cylinder = register_cylinders(org_a.id, 1)[0]
        cylinder_service.change_status(org_a.id, cylinder.id, owner_a.id, status="CONDEMNED", note="Dented")

        with pytest.raises(ValidationFailed):
            cylinder_service.change_status(org_a.id, cylinder.id, owner_a.id, status="IN_STOCK")

        assert db.session.query(CylinderHistory).filter_by(cylinder_id=cylinder.id).count() == 2
        cylinder = db.session.get(Cylinder, cylinder.id)
        assert cylinder.status == "CONDEMNED"
        assert cylinder.is_active is False
        assert cylinder.condemnation_reason == "Dented"

    def test_condemned_units_are_not_reservable(self, owner_a, org_a):
        units = register_cylinders(org_a.id, 3)
        cylinder_service.change_status(org_a.id, units[0].id, owner_a.id, status="CONDEMNED")

        picked = cylinder_service.find_reservable(org_a.id, "11.8kg", 3)
        assert [c.serial_number for c in picked] == ["CYL-2024-000002", "CYL-2024-000003"]

    def test_other_dealers_cylinder_not_found(self, owner_a, org_a, org_b):
        foreign = register_cylinders(org_b.id, 1)[0]
        with pytest.raises(NotFound):
            cylinder_service.change_status(org_a.id, foreign.id, owner_a.id, status="CONDEMNED")
        assert db.session.get(Cylinder, foreign.id).status == "IN_STOCK"


class TestInspections:

    def test_hydrostatic_pass_sets_five_years(self, owner_a, org_a):
        cylinder = register_cylinders(org_a.id, 1)[0]
        cylinder_service.record_inspection(org_a.id, cylinder.id, owner_a.id, {
            "inspection_type": "HYDROSTATIC",
            "result": "PASSED",
            "inspection_date": "2025-02-10",
            "inspector": "R. Iyer",
        })
        cylinder = db.session.get(Cylinder, cylinder.id)
        assert cylinder.last_hydrostatic_test == date(2025, 2, 10)
        assert cylinder.next_test_due == date(2030, 2, 10)
        assert cylinder.status == "IN_STOCK"

    def test_visual_pass_sets_one_year(self, owner_a, org_a):
        cylinder = register_cylinders(org_a.id, 1)[0]
        cylinder_service.record_inspection(org_a.id, cylinder.id, owner_a.id, {
            "inspection_type": "VISUAL",
            "result": "PASSED",
            "inspection_date": "2025-02-10",
        })
        assert db.session.get(Cylinder, cylinder.id).next_test_due == date(2026, 2, 10)

    def test_pass_returns_unit_from_inspection(self, owner_a, org_a):
        cylinder = register_cylinders(org_a.id, 1)[0]
        cylinder_service.change_status(org_a.id, cylinder.id, owner_a.id, status="UNDER_INSPECTION")
        cylinder_service.record_inspection(org_a.id, cylinder.id, owner_a.id, {
            "inspection_type": "HYDROSTATIC",
            "result": "PASSED",
        })
        assert db.session.get(Cylinder, cylinder.id).status == "IN_STOCK"

    def test_failure_condemns(self, owner_a, org_a):
        cylinder = register_cylinders(org_a.id, 1)[0]
        cylinder_service.record_inspection(org_a.id, cylinder.id, owner_a.id, {
            "inspection_type": "ULTRASONIC",
            "result": "FAILED",
            "notes": "Wall thickness below limit",
        })
        cylinder = db.session.get(Cylinder, cylinder.id)
        assert cylinder.status == "CONDEMNED"
        assert cylinder.condemnation_reason == "Wall thickness below limit"
        assert db.session.query(CylinderInspection).filter_by(cylinder_id=cylinder.id).count() == 1

    def test_cannot_inspect_unit_with_customer(self, owner_a, org_a, customer):
        cylinder = register_cylinders(org_a.id, 1)[0]
        cylinder_service.change_status(org_a.id, cylinder.id, owner_a.id, status="WITH_CUSTOMER",
                                       customer_id=customer.id)
        with pytest.raises(ValidationFailed):
            cylinder_service.record_inspection(org_a.id, cylinder.id, owner_a.id, {
                "inspection_type": "VISUAL",
                "result": "PASSED",
            })
        assert db.session.query(CylinderInspection).count() == 0

    @pytest.mark.parametrize("field", ["inspector", "notes"])
    def test_free_text_must_be_string(self, owner_a, org_a, field):
        cylinder = register_cylinders(org_a.id, 1)[0]
        with pytest.raises(ValidationFailed):
            cylinder_service.record_inspection(org_a.id, cylinder.id, owner_a.id, {
                "inspection_type": "VISUAL",
                "result": "PASSED",
                field: {"x": 1},
            })
        assert db.session.query(CylinderInspection).count() == 0

    def test_due_for_inspection(self, org_a):
        overdue = _register(org_a.id, manufacturing_date="2019-01-01")
        _register(org_a.id, manufacturing_date=utcnow().date().isoformat())

        due = cylinder_service.due_for_inspection(org_a.id, days=30).all()
        assert [c.id for c in due] == [overdue.id]
