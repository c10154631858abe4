# Overview: Request authentication and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _read_token(allow_query_token: bool) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    if allow_query_token:
        # Browser-opened PDF links cannot set headers
        token = (request.args.get("token") or "").strip()
        return token or None
    return None


def require_auth(f=None, *, allow_query_token: bool = False):
    """
    Require a valid session token.

    Sets:
    - g.current_user: The authenticated User object
    - g.session_token: The SessionToken row

    Returns 401 if the token is missing, unknown, expired, revoked, or the
    user is deactivated. With allow_query_token=True, ?token= is accepted
    when no Authorization header is sent.
    """
    def decorator(view):
        @wraps(view)
        def decorated_function(*args, **kwargs):
            token = _read_token(allow_query_token)
            if not token:
                return jsonify({"error": "Authentication required"}), 401

            context = session_service.validate_session(token)
            if not context:
                return jsonify({"error": "Invalid or expired token"}), 401

            g.current_user = context.user
            g.session_token = context.session
            g.raw_token = token

            return view(*args, **kwargs)

        return decorated_function

    if f is not None:
        return decorator(f)
    return decorator


def require_role(*roles):
    """Require the authenticated user to hold one of the given roles (owner, cashier)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, 'current_user'):
                return jsonify({"error": "Authentication required"}), 401
            if g.current_user.role not in roles:
                return jsonify({
                    "error": "Forbidden",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
