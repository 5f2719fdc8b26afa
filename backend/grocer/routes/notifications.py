# Overview: Flask API routes for the notification inbox.

from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..errors import InvalidInputError
from ..services import notification_service

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    """Latest 50 notifications for the caller, newest first. ?unread=true filters."""
    unread_only = (request.args.get("unread") or "").lower() in ("1", "true", "yes")
    rows = notification_service.list_notifications(actor=g.actor, unread_only=unread_only)
    return {"items": [n.to_dict() for n in rows], "count": len(rows)}


@notifications_bp.get("/unread-count")
@require_auth
def unread_count_route():
    return {"unread": notification_service.unread_count(actor=g.actor)}


@notifications_bp.put("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    return notification_service.mark_read(notification_id=notification_id, actor=g.actor).to_dict()


@notifications_bp.put("/read-all")
@require_auth
def mark_all_read_route():
    return {"updated": notification_service.mark_all_read(actor=g.actor)}


@notifications_bp.delete("/<int:notification_id>")
@require_auth
def delete_notification_route(notification_id: int):
    notification_service.delete_notification(notification_id=notification_id, actor=g.actor)
    return {"message": "Notification deleted"}, 200


@notifications_bp.post("")
@require_auth
@require_role("admin", "manager")
def create_notification_route():
    payload = request.get_json(silent=True) or {}
    user_id = payload.get("user_id")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise InvalidInputError("user_id must be an integer", {"field": "user_id"})
    notification = notification_service.create_notification(
        user_id=user_id,
        notification_type=payload.get("type"),
        title=payload.get("title"),
        message=payload.get("message"),
        related_id=payload.get("related_id"),
        related_type=payload.get("related_type"),
    )
    return notification.to_dict(), 201
