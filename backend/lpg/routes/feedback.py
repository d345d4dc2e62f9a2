# backend/lpg/routes/feedback.py
"""
Feedback API: staff submit and track their own feedback; feedback
managers triage everything submitted within the dealer.
"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_permission
from ..permissions import Capability
from ..responses import ok, ok_page, page_args, paginate, json_body
from ..services import feedback_service


feedback_bp = Blueprint("feedback", __name__, url_prefix="/api/feedback")


@feedback_bp.post("")
@require_auth
def submit_feedback_route():
    """Required: title, message. Optional: category, priority, device_info, is_public"""
    feedback = feedback_service.submit_feedback(g.org_id, g.current_user.id, json_body())
    return ok(feedback.to_dict(), message="Feedback submitted", status=201)


@feedback_bp.get("/my")
@require_auth
def my_feedback_route():
    """Query params: status, category, page, limit"""
    page, limit = page_args()
    query = feedback_service.list_my_feedback(
        g.org_id,
        g.current_user.id,
        status=request.args.get("status"),
        category=request.args.get("category"),
    )
    return ok_page(paginate(query, page=page, limit=limit))


@feedback_bp.get("/admin/all")
@require_auth
@require_permission(Capability.MANAGE_FEEDBACK)
def list_feedback_route():
    """Query params: status, category, priority, page, limit"""
    page, limit = page_args()
    query = feedback_service.list_feedback(
        g.org_id,
        status=request.args.get("status"),
        category=request.args.get("category"),
        priority=request.args.get("priority"),
    )
    return ok_page(paginate(query, page=page, limit=limit))


@feedback_bp.get("/admin/stats")
@require_auth
@require_permission(Capability.MANAGE_FEEDBACK)
def feedback_stats_route():
    return ok(feedback_service.feedback_stats(g.org_id))


@feedback_bp.get("/<int:feedback_id>")
@require_auth
def get_feedback_route(feedback_id: int):
    return ok(feedback_service.get_feedback(g.org_id, feedback_id, g.current_user.id).to_dict())


@feedback_bp.delete("/<int:feedback_id>")
@require_auth
def delete_feedback_route(feedback_id: int):
    feedback_service.delete_feedback(g.org_id, feedback_id, g.current_user.id)
    return ok(None, message="Feedback deleted")


@feedback_bp.put("/<int:feedback_id>/status")
@require_auth
@require_permission(Capability.MANAGE_FEEDBACK)
def feedback_status_route(feedback_id: int):
    """Body: status, admin_response?"""
    data = json_body()
    feedback = feedback_service.update_status(
        g.org_id,
        feedback_id,
        g.current_user.id,
        status=data.get("status"),
        admin_response=data.get("admin_response"),
    )
    return ok(feedback.to_dict(), message="Feedback updated")
