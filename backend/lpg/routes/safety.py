# backend/lpg/routes/safety.py
"""
Safety API: per-sale checklists with customer acknowledgment, incident
reporting and the compliance report.
"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_permission
from ..models import SafetyChecklist, SafetyIncident
from ..permissions import Capability
from ..responses import ok, ok_page, page_args, paginate, json_body, datetime_arg
from ..services import safety_service
from ..services.tenant_service import require_owned


safety_bp = Blueprint("safety", __name__, url_prefix="/api/safety")


# -- Checklists --

@safety_bp.post("/checklists")
@require_auth
@require_permission(Capability.MANAGE_SAFETY)
def create_checklist_route():
    """Body: sale_id, checklist_type (new-connection|refill|exchange|inspection)"""
    checklist = safety_service.create_checklist_for_sale(g.org_id, g.current_user.id, json_body())
    return ok(checklist.to_dict(), message="Checklist created", status=201)


@safety_bp.get("/checklists/sale/<int:sale_id>")
@require_auth
@require_permission(Capability.VIEW_SAFETY)
def sale_checklists_route(sale_id: int):
    checklists = safety_service.checklists_for_sale(g.org_id, sale_id)
    return ok([c.to_dict() for c in checklists])


@safety_bp.get("/checklists/<int:checklist_id>")
@require_auth
@require_permission(Capability.VIEW_SAFETY)
def get_checklist_route(checklist_id: int):
    return ok(require_owned(SafetyChecklist, checklist_id, g.org_id, "Checklist").to_dict())


@safety_bp.put("/checklists/<int:checklist_id>/items/<int:item_id>")
@require_auth
@require_permission(Capability.MANAGE_SAFETY)
def check_item_route(checklist_id: int, item_id: int):
    data = json_body()
    checklist = safety_service.check_item(
        g.org_id, checklist_id, item_id, g.current_user.id, notes=data.get("notes")
    )
    return ok(checklist.to_dict(), message="Item checked")


@safety_bp.put("/checklists/<int:checklist_id>/flags")
@require_auth
@require_permission(Capability.MANAGE_SAFETY)
def set_flags_route(checklist_id: int):
    """Body: safety_instructions_given?, emergency_contact_verified?"""
    checklist = safety_service.set_flags(g.org_id, checklist_id, g.current_user.id, json_body())
    return ok(checklist.to_dict(), message="Checklist updated")


@safety_bp.post("/checklists/<int:checklist_id>/acknowledge")
@require_auth
@require_permission(Capability.MANAGE_SAFETY)
def acknowledge_route(checklist_id: int):
    """Body: signature, customer_name"""
    data = json_body()
    checklist = safety_service.acknowledge(
        g.org_id,
        checklist_id,
        g.current_user.id,
        signature=data.get("signature"),
        customer_name=data.get("customer_name"),
    )
    return ok(checklist.to_dict(), message="Checklist acknowledged")


# -- Incidents --

@safety_bp.post("/incidents")
@require_auth
@require_permission(Capability.MANAGE_SAFETY)
def report_incident_route():
    """Required: incident_type, severity, location, description"""
    incident = safety_service.report_incident(g.org_id, g.current_user.id, json_body())
    return ok(incident.to_dict(), message="Incident reported", status=201)


@safety_bp.get("/incidents")
@require_auth
@require_permission(Capability.VIEW_SAFETY)
def list_incidents_route():
    """Query params: status, severity, start_date, end_date, page, limit"""
    page, limit = page_args()
    query = safety_service.list_incidents(
        g.org_id,
        status=request.args.get("status"),
        severity=request.args.get("severity"),
        start=datetime_arg("start_date"),
        end=datetime_arg("end_date", end_of_day=True),
    )
    return ok_page(paginate(query, page=page, limit=limit))


@safety_bp.get("/incidents/<int:incident_id>")
@require_auth
@require_permission(Capability.VIEW_SAFETY)
def get_incident_route(incident_id: int):
    return ok(require_owned(SafetyIncident, incident_id, g.org_id, "Incident").to_dict())


@safety_bp.put("/incidents/<int:incident_id>/status")
@require_auth
@require_permission(Capability.MANAGE_SAFETY)
def incident_status_route(incident_id: int):
    """Body: status, notes?. Status only moves forward."""
    data = json_body()
    incident = safety_service.update_incident_status(
        g.org_id, incident_id, g.current_user.id, status=data.get("status"), notes=data.get("notes")
    )
    return ok(incident.to_dict(), message="Incident updated")


@safety_bp.get("/compliance-report")
@require_auth
@require_permission(Capability.VIEW_SAFETY)
def compliance_report_route():
    report = safety_service.compliance_report(
        g.org_id,
        start=datetime_arg("start_date"),
        end=datetime_arg("end_date", end_of_day=True),
    )
    return ok(report)
