# backend/grocer/services/products_service.py
"""
Products Service

Barcodes are globally unique. A product created with generate_barcode=True
gets an EAN-13 from the in-store range (prefix 200-299 is reserved for
internal use by GS1), so it can never collide with a manufacturer code.
"""
from __future__ import annotations

import secrets

from flask import current_app

from ..actor import Actor
from ..errors import ConflictError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Inventory, Product, SaleItem
from ..validation import ModelValidationPolicy, enforce_rules_product, validate_payload
from .concurrency import run_with_retry

IN_STORE_BARCODE_PREFIX = "200"
BARCODE_GENERATION_ATTEMPTS = 10

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "price_cents", "cost_cents", "category", "barcode", "is_active"},
    required_on_create={"name", "price_cents"},
)


def ean13_check_digit(first_twelve: str) -> str:
    """Weights alternate 1, 3 from the left over the first 12 digits."""
    total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(first_twelve))
    return str((10 - total % 10) % 10)


def is_valid_ean13(code: str) -> bool:
    return len(code) == 13 and code.isdigit() and ean13_check_digit(code[:12]) == code[12]


def generate_barcode() -> str:
    """Random in-store EAN-13 not yet used by any product."""
    for _ in range(BARCODE_GENERATION_ATTEMPTS):
        body = IN_STORE_BARCODE_PREFIX + f"{secrets.randbelow(10 ** 9):09d}"
        code = body + ean13_check_digit(body)
        if db.session.query(Product.id).filter(Product.barcode == code).first() is None:
            return code
    raise ConflictError("Could not allocate a unique barcode, try again")


def _ensure_barcode_free(barcode: str | None, exclude_product_id: int | None = None) -> None:
    if not barcode:
        return
    query = db.session.query(Product.id).filter(Product.barcode == barcode)
    if exclude_product_id is not None:
        query = query.filter(Product.id != exclude_product_id)
    if query.first() is not None:
        raise ConflictError("Barcode already exists", {"barcode": barcode})


def list_products(
    *,
    q: str | None = None,
    barcode: str | None = None,
    category: str | None = None,
    active: bool | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional search and pagination.

    q matches name or description (case-insensitive substring).
    """
    base_query = db.session.query(Product)
    if q:
        pattern = f"%{q.strip()}%"
        base_query = base_query.filter(db.or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
    if barcode:
        base_query = base_query.filter(Product.barcode == barcode.strip())
    if category:
        base_query = base_query.filter(Product.category == category)
    if active is not None:
        base_query = base_query.filter(Product.is_active.is_(active))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", {"product_id": product_id})
    return product


def get_product_by_barcode(barcode: str) -> Product:
    product = db.session.query(Product).filter(Product.barcode == barcode).first()
    if product is None:
        raise NotFoundError("Product not found", {"barcode": barcode})
    return product


def create_product(*, payload: dict, actor: Actor, generate: bool = False) -> Product:
    """
    Create a product from request JSON.

    generate=True assigns an in-store barcode; it cannot be combined with an
    explicit barcode.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    if generate and patch.get("barcode"):
        raise InvalidInputError("Provide a barcode or request generation, not both", {"field": "barcode"})
    if patch.get("barcode") == "":
        patch["barcode"] = None

    def _op():
        if generate:
            patch["barcode"] = generate_barcode()
            patch["is_generated_barcode"] = True
        else:
            _ensure_barcode_free(patch.get("barcode"))
        product = Product(**patch)
        db.session.add(product)
        db.session.commit()
        return product

    product = run_with_retry(_op)
    current_app.logger.info("Product %s created by user %s", product.id, actor.id)
    return product


def update_product(*, product_id: int, payload: dict, actor: Actor) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    if patch.get("barcode") == "":
        patch["barcode"] = None

    def _op():
        product = get_product(product_id)
        if "barcode" in patch and patch["barcode"] != product.barcode:
            _ensure_barcode_free(patch["barcode"], exclude_product_id=product.id)
            product.is_generated_barcode = False
        for key, value in patch.items():
            setattr(product, key, value)
        db.session.commit()
        return product

    product = run_with_retry(_op)
    current_app.logger.info("Product %s updated by user %s: %s", product_id, actor.id, sorted(patch))
    return product


def delete_product(*, product_id: int, actor: Actor) -> None:
    """
    Hard delete. Products that appear on a sale or own an inventory record
    are kept; deactivate them instead.
    """
    def _op():
        product = get_product(product_id)
        if db.session.query(SaleItem.id).filter(SaleItem.product_id == product.id).first() is not None:
            raise ConflictError(
                "Product is referenced by sales; deactivate it instead",
                {"product_id": product.id},
            )
        if db.session.query(Inventory.id).filter(Inventory.product_id == product.id).first() is not None:
            raise ConflictError(
                "Product has an inventory record; delete or deactivate it first",
                {"product_id": product.id},
            )
        db.session.delete(product)
        db.session.commit()

    run_with_retry(_op)
    current_app.logger.info("Product %s deleted by user %s", product_id, actor.id)


def list_categories() -> list[dict]:
    """Distinct category labels with product counts."""
    rows = (
        db.session.query(Product.category, db.func.count(Product.id))
        .filter(Product.category.isnot(None))
        .group_by(Product.category)
        .order_by(Product.category.asc())
        .all()
    )
    return [{"category": category, "product_count": count} for category, count in rows]
