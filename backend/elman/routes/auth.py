# Overview: Flask API routes for login, logout, bootstrap and password reset.

"""
Authentication routes.

Bootstrap and reset-password are not session-authenticated; they require the
X-Bootstrap-Secret header to match BOOTSTRAP_SECRET. When BOOTSTRAP_SECRET is
unset both endpoints answer 500.
"""

import hmac

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import DomainError
from ..services import audit_service, auth_service, session_service

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _check_bootstrap_secret():
    secret = (current_app.config.get("BOOTSTRAP_SECRET") or "").strip()
    if not secret:
        return jsonify({"error": "BOOTSTRAP_SECRET is not set on server"}), 500
    provided = (request.headers.get("X-Bootstrap-Secret") or "").strip()
    if not hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8")):
        return jsonify({"error": "Unauthorized"}), 401
    return None


@auth_bp.post("/bootstrap")
def bootstrap_route():
    """
    Create the first owner account.

    Request body: {"username": "...", "password": "..."}
    Returns 400 "Already bootstrapped" once any user exists.
    """
    denied = _check_bootstrap_secret()
    if denied:
        return denied

    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.bootstrap_owner(data.get("username"), data.get("password"))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to bootstrap owner")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("auth.bootstrap", "user", user.id, user=user)
    return jsonify({"ok": True, "user": user.to_dict()}), 201


@auth_bp.post("/reset-password")
def reset_password_route():
    """Request body: {"username": "...", "new_password": "..."}"""
    denied = _check_bootstrap_secret()
    if denied:
        return denied

    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.reset_password(data.get("username"), data.get("new_password"))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reset password")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record(
        "auth.reset_password", "user", user.id,
        meta={"username": user.username, "password": data.get("new_password")},
        user=None,
    )
    return jsonify({"ok": True})


@auth_bp.post("/login")
def login_route():
    """
    Request body: {"username": "...", "password": "..."}
    Returns {"token": "<opaque>", "user": {...}}.
    """
    data = request.get_json(silent=True) or {}
    username = data.get("username")
    password = data.get("password")
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400

    user = auth_service.authenticate(username, password)
    if user is None:
        return jsonify({"error": "Invalid username or password"}), 401

    _session, token = session_service.create_session(
        user,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    audit_service.record("auth.login", "user", user.id, user=user)
    return jsonify({"token": token, "user": user.to_dict()})


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.raw_token)
    return jsonify({"ok": True})


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()})
