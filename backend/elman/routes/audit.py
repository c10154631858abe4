# Overview: Owner-only audit log listing.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_OWNER
from ..services import audit_service

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("")
@require_auth
@require_role(ROLE_OWNER)
def list_audit_route():
    """
    Query params:
    - entity, action: exact-match filters
    - limit: default 200, clamped to [1, AUDIT_MAX_LIMIT]
    """
    limit = request.args.get("limit", default=audit_service.DEFAULT_AUDIT_LIMIT, type=int)
    return jsonify(audit_service.list_audit(
        entity=request.args.get("entity") or None,
        action=request.args.get("action") or None,
        limit=limit,
        max_limit=current_app.config["AUDIT_MAX_LIMIT"],
    ))
