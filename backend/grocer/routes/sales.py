# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/grocer/routes/sales.py
"""
Sales routes.

POST   /api/sales          record a sale (201)
DELETE /api/sales/<id>     cancel a sale and restock (200)
PUT    /api/sales/<id>     change payment method/status only

During sale creation a product or customer that does not exist is a bad
request (400), not a missing resource.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import NotFoundError
from ..services import sales_service
from ..time_utils import parse_iso_datetime

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

CHECKOUT_ROLES = ("admin", "manager", "cashier")


@sales_bp.post("")
@require_auth
@require_role(*CHECKOUT_ROLES)
def create_sale_route():
    sale_input = sales_service.parse_sale_payload(request.get_json(silent=True))
    try:
        sale = sales_service.create_sale(sale_input, g.actor)
    except NotFoundError as e:
        current_app.logger.info("Sale rejected, unknown reference: %s", e.details)
        return jsonify(e.to_dict()), 400
    return jsonify(sale.to_dict()), 201


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Query params: status, customer_id, start, end (ISO-8601), limit (max 500), offset.
    """
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 datetimes", "kind": "invalid_input"}), 400

    limit = max(min(request.args.get("limit", default=100, type=int), 500), 1)
    sales, total = sales_service.list_sales(
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
        start=start,
        end=end,
        limit=limit,
        offset=max(request.args.get("offset", default=0, type=int), 0),
    )
    return jsonify({"items": [s.to_dict(include_items=False) for s in sales], "count": len(sales), "total": total})


@sales_bp.get("/customer/<int:customer_id>")
@require_auth
def sales_by_customer_route(customer_id: int):
    sales = sales_service.sales_by_customer(customer_id)
    return jsonify({"items": [s.to_dict(include_items=False) for s in sales], "count": len(sales)})


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    return jsonify(sales_service.get_sale(sale_id).to_dict())


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_role("admin", "manager", "cashier", "accountant")
def update_sale_route(sale_id: int):
    payload = request.get_json(silent=True)
    sale = sales_service.update_sale(sale_id=sale_id, payload=payload, actor=g.actor)
    return jsonify(sale.to_dict())


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_role("admin", "manager")
def cancel_sale_route(sale_id: int):
    sale = sales_service.cancel_sale(sale_id, g.actor)
    return jsonify(sale.to_dict()), 200
