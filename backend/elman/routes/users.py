# Overview: Owner-only staff account administration.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import DomainError
from ..models.auth import ROLE_CASHIER, ROLE_OWNER
from ..services import audit_service, auth_service

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role(ROLE_OWNER)
def list_users_route():
    return jsonify(auth_service.list_users())


@users_bp.post("")
@require_auth
@require_role(ROLE_OWNER)
def create_user_route():
    """Request body: {"username": "...", "password": "...", "role": "owner|cashier"}"""
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            data.get("username"),
            data.get("password"),
            role=data.get("role") or ROLE_CASHIER,
        )
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("user.create", "user", user.id, meta={"username": user.username, "role": user.role})
    return jsonify(user.to_dict()), 201


@users_bp.put("/<int:user_id>")
@require_auth
@require_role(ROLE_OWNER)
def update_user_route(user_id: int):
    """Request body (all optional): {"password": "...", "role": "...", "is_active": bool}"""
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.update_user(
            user_id,
            password=data.get("password"),
            role=data.get("role"),
            is_active=data.get("is_active"),
        )
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("user.update", "user", user.id, meta={
        "role": data.get("role"),
        "is_active": data.get("is_active"),
        "password": data.get("password"),
    })
    return jsonify(user.to_dict())
