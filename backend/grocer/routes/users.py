# Overview: Flask API routes for staff accounts; parses input and returns JSON responses.

# backend/grocer/routes/users.py
"""
User management routes.

- List: admin, manager
- Create, deactivate, reactivate: admin
- Read/update: the user themselves, or an admin (enforced in users_service)
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..errors import PermissionDeniedError
from ..services import users_service

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role("admin", "manager")
def list_users_route():
    users = users_service.list_users(role=request.args.get("role"), status=request.args.get("status"))
    return {"items": [u.to_dict() for u in users], "count": len(users)}


@users_bp.post("")
@require_auth
@require_role("admin")
def create_user_route():
    payload = request.get_json(silent=True) or {}
    return users_service.register_user(payload=payload, actor=g.actor).to_dict(), 201


@users_bp.get("/<int:user_id>")
@require_auth
def get_user_route(user_id: int):
    if user_id != g.actor.id and not g.actor.is_management:
        raise PermissionDeniedError("You can only view your own account")
    return users_service.get_user(user_id).to_dict()


@users_bp.put("/<int:user_id>")
@require_auth
def update_user_route(user_id: int):
    payload = request.get_json(silent=True) or {}
    return users_service.update_user(user_id=user_id, payload=payload, actor=g.actor).to_dict()


@users_bp.post("/<int:user_id>/deactivate")
@require_auth
@require_role("admin")
def deactivate_user_route(user_id: int):
    return users_service.deactivate_user(user_id=user_id, actor=g.actor).to_dict()


@users_bp.post("/<int:user_id>/reactivate")
@require_auth
@require_role("admin")
def reactivate_user_route(user_id: int):
    return users_service.reactivate_user(user_id=user_id, actor=g.actor).to_dict()


@users_bp.get("/<int:user_id>/login-history")
@require_auth
def login_history_route(user_id: int):
    rows = users_service.login_history(
        user_id=user_id,
        actor=g.actor,
        limit=max(min(request.args.get("limit", default=50, type=int), 200), 1),
    )
    return {"items": [row.to_dict() for row in rows], "count": len(rows)}


@users_bp.get("/<int:user_id>/stats")
@require_auth
def user_stats_route(user_id: int):
    return users_service.user_stats(user_id=user_id, actor=g.actor)
