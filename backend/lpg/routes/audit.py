# backend/lpg/routes/audit.py
"""
Audit trail API (read-only).

Entries are written by the services inside the same transaction as the
change they describe; nothing here mutates them.
"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_permission
from ..permissions import Capability
from ..responses import ok_page, page_args, paginate
from ..services import audit_service


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


@audit_bp.get("")
@require_auth
@require_permission(Capability.VIEW_AUDIT_LOG)
def list_audit_logs_route():
    """
    Query params:
    - resource: organization|user|role|brand|product|cylinder|customer|premises|sale|...
    - resource_id, user_id, action
    - page, limit
    """
    page, limit = page_args()
    query = audit_service.list_audit_logs(
        g.org_id,
        resource=request.args.get("resource"),
        resource_id=request.args.get("resource_id", type=int),
        user_id=request.args.get("user_id", type=int),
        action=request.args.get("action"),
    )
    return ok_page(paginate(query, page=page, limit=limit))
