# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'actor')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session token.

    Sets on Flask g:
    - g.current_user: the authenticated User
    - g.actor: Actor(id, role) passed explicitly to services
    - g.session_context: the SessionContext
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required", "kind": "unauthenticated"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token", "kind": "unauthenticated"}), 401

        g.current_user = context.user
        g.actor = context.actor
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require the authenticated user to hold one of the given roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "kind": "unauthenticated"}), 401

            if g.actor.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "kind": "permission_denied",
                    "details": {"required_roles": list(roles), "role": g.actor.role},
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
