# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import bearer_token, require_auth
from ..services import auth_service, session_service
from ..time_utils import to_utc_z

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    The token goes in the Authorization header ("Bearer <token>") on
    every protected request.
    """
    data = request.get_json(silent=True) or {}
    identifier = data.get("username") or data.get("email")
    password = data.get("password")

    if not isinstance(identifier, str) or not isinstance(password, str) or not identifier or not password:
        return jsonify({"error": "username/email and password required", "kind": "invalid_input"}), 400

    user_agent = request.headers.get("User-Agent")
    ip_address = request.remote_addr

    user = auth_service.authenticate(identifier, password, ip_address=ip_address, user_agent=user_agent)
    if not user:
        return jsonify({"error": "Invalid credentials", "kind": "unauthenticated"}), 401

    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    return jsonify({
        "user": user.to_dict(),
        "token": token,
        "expires_at": to_utc_z(session.expires_at),
    }), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(bearer_token(), reason="User logout")
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
