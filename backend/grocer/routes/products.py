# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/grocer/routes/products.py
"""
Product catalog routes.

All routes require authentication.
- Reads: any role
- Create/update: admin, manager, storekeeper
- Delete: admin, manager
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..services import products_service

products_bp = Blueprint("products", __name__, url_prefix="/api/products")

CATALOG_ROLES = ("admin", "manager", "storekeeper")


def _bool_arg(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.strip().lower() in ("1", "true", "yes")


@products_bp.get("")
@require_auth
def list_products():
    """
    List products.

    Query params:
    - q: search name/description
    - barcode: exact barcode
    - category: exact category label
    - active: true/false
    - page, per_page: optional pagination (per_page max 100)
    """
    return products_service.list_products(
        q=request.args.get("q"),
        barcode=request.args.get("barcode"),
        category=request.args.get("category"),
        active=_bool_arg("active"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/categories")
@require_auth
def list_categories():
    return {"items": products_service.list_categories()}


@products_bp.get("/barcode/<string:barcode>")
@require_auth
def get_product_by_barcode(barcode: str):
    return products_service.get_product_by_barcode(barcode).to_dict()


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    return products_service.get_product(product_id).to_dict()


@products_bp.post("")
@require_auth
@require_role(*CATALOG_ROLES)
def create_product_route():
    """
    Create a product. Pass ?generate_barcode=true to assign an in-store EAN-13.
    """
    payload = request.get_json(silent=True) or {}
    product = products_service.create_product(
        payload=payload,
        actor=g.actor,
        generate=bool(_bool_arg("generate_barcode")),
    )
    return product.to_dict(), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(*CATALOG_ROLES)
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    return products_service.update_product(product_id=product_id, payload=payload, actor=g.actor).to_dict()


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role("admin", "manager")
def delete_product_route(product_id: int):
    products_service.delete_product(product_id=product_id, actor=g.actor)
    return {"message": "Product deleted"}, 200
