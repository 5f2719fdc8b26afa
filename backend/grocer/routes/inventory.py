# backend/grocer/routes/inventory.py
"""
Inventory routes.

Quantity only changes through PATCH /<id>/adjust (and through sales); the
generic update route rejects a quantity field.

All routes require authentication.
- Reads: any role
- Create/update/adjust: admin, manager, storekeeper
- Delete: admin, manager
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..services import inventory_service

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STOCK_ROLES = ("admin", "manager", "storekeeper")


@inventory_bp.get("")
@require_auth
def list_inventory_route():
    """
    Query params:
    - low_stock: true to only return rows at or below their minimum
    - expiring_within_days: int
    """
    low_stock_only = (request.args.get("low_stock") or "").lower() in ("1", "true", "yes")
    rows = inventory_service.list_inventory(
        low_stock_only=low_stock_only,
        expiring_within_days=request.args.get("expiring_within_days", type=int),
    )
    return {"items": [row.to_dict() for row in rows], "count": len(rows)}


@inventory_bp.get("/<int:inventory_id>")
@require_auth
def get_inventory_route(inventory_id: int):
    return inventory_service.get_inventory(inventory_id).to_dict()


@inventory_bp.get("/product/<int:product_id>")
@require_auth
def get_inventory_by_product_route(product_id: int):
    inventory = inventory_service.get_inventory_by_product(product_id)
    if inventory is None:
        return {"error": "Inventory not found", "kind": "not_found", "details": {"product_id": product_id}}, 404
    return inventory.to_dict()


@inventory_bp.post("")
@require_auth
@require_role(*STOCK_ROLES)
def create_inventory_route():
    payload = request.get_json(silent=True) or {}
    inventory = inventory_service.create_inventory(payload=payload, actor=g.actor)
    return inventory.to_dict(), 201


@inventory_bp.put("/<int:inventory_id>")
@require_auth
@require_role(*STOCK_ROLES)
def update_inventory_route(inventory_id: int):
    payload = request.get_json(silent=True) or {}
    return inventory_service.update_inventory(inventory_id=inventory_id, payload=payload, actor=g.actor).to_dict()


@inventory_bp.patch("/<int:inventory_id>/adjust")
@require_auth
@require_role(*STOCK_ROLES)
def adjust_inventory_route(inventory_id: int):
    """
    Adjust stock by a signed delta.

    Body: {"delta": int (non-zero), "reason": str?, "type": "adjustment"|"purchase"|"restock"|"return"}
    400 on invalid input or insufficient stock, 404 if the inventory row is unknown.
    """
    adjustment = inventory_service.parse_adjustment_payload(request.get_json(silent=True))
    result = inventory_service.adjust_inventory(
        inventory_id=inventory_id,
        delta=adjustment.delta,
        reason=adjustment.reason,
        actor=g.actor,
        transaction_type=adjustment.transaction_type,
    )
    inventory = inventory_service.get_inventory(inventory_id)
    return {
        "inventory": inventory.to_dict(),
        "previous_quantity": result.previous_quantity,
        "new_quantity": result.new_quantity,
        "low_stock": result.low_stock,
        "transaction": result.transaction.to_dict(),
    }, 200


@inventory_bp.delete("/<int:inventory_id>")
@require_auth
@require_role("admin", "manager")
def delete_inventory_route(inventory_id: int):
    inventory_service.delete_inventory(inventory_id=inventory_id, actor=g.actor)
    return {"message": "Inventory deleted"}, 200


@inventory_bp.get("/<int:inventory_id>/transactions")
@require_auth
def list_transactions_route(inventory_id: int):
    rows = inventory_service.list_transactions(
        inventory_id=inventory_id,
        limit=request.args.get("limit", type=int),
    )
    return {"items": [row.to_dict() for row in rows], "count": len(rows)}
