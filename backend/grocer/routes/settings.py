# Overview: Flask API routes for store settings.

from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..services import settings_service

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
@require_auth
def get_settings_route():
    return settings_service.get_settings().to_dict()


@settings_bp.put("")
@require_auth
@require_role("admin")
def update_settings_route():
    payload = request.get_json(silent=True) or {}
    return settings_service.update_settings(payload=payload, actor=g.actor).to_dict()
