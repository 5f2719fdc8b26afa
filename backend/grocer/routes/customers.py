# Overview: Flask API routes for customers operations; parses input and returns JSON responses.

from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..services import customers_service, sales_service

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")

FRONT_DESK_ROLES = ("admin", "manager", "cashier")


@customers_bp.get("")
@require_auth
def list_customers_route():
    """Query params: q (name, email or phone), limit."""
    customers = customers_service.list_customers(
        q=request.args.get("q"),
        limit=request.args.get("limit", type=int),
    )
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    return customers_service.get_customer(customer_id).to_dict()


@customers_bp.get("/<int:customer_id>/sales")
@require_auth
def customer_sales_route(customer_id: int):
    sales = sales_service.sales_by_customer(customer_id)
    return {"items": [s.to_dict(include_items=False) for s in sales], "count": len(sales)}


@customers_bp.post("")
@require_auth
@require_role(*FRONT_DESK_ROLES)
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    return customers_service.create_customer(payload=payload, actor=g.actor).to_dict(), 201


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_role(*FRONT_DESK_ROLES)
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    return customers_service.update_customer(customer_id=customer_id, payload=payload, actor=g.actor).to_dict()


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_role("admin", "manager")
def delete_customer_route(customer_id: int):
    customers_service.delete_customer(customer_id=customer_id, actor=g.actor)
    return {"message": "Customer deleted"}, 200
