"""
Sales Service - checkout and cancellation

A sale is written in one database transaction together with its line items,
the stock decrements and their ledger rows. Either all of it commits or none
of it does. Cancellation is the mirror image: every line's quantity goes back
through the ledger as a "return" and the sale becomes terminal.

Pricing:
    line.subtotal = unit_price * quantity - line.discount
    sale.subtotal = sum(line.subtotal)
    sale.total    = sale.subtotal + tax - sale.discount
unit_price defaults to the product's catalog price at the time of sale and is
captured on the line. tax defaults to the store tax rate applied to the subtotal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..actor import Actor
from ..errors import (
    AlreadyCancelledError,
    InsufficientStockError,
    InvalidInputError,
    NotFoundError,
)
from ..extensions import db
from ..models import Customer, Inventory, Product, Sale, SaleItem
from ..models.sales import PAYMENT_METHODS, PAYMENT_STATUSES
from ..time_utils import utcnow
from ..validation import optional_str, reject_unknown_fields, strict_int
from . import inventory_service, notification_service, settings_service
from .concurrency import begin_write, lock_for_update, run_with_retry

# "refunded" is reached through cancel_sale only
CREATE_PAYMENT_STATUSES = ("pending", "paid", "partially_paid")


@dataclass(frozen=True)
class SaleItemInput:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None
    discount_cents: int = 0


@dataclass(frozen=True)
class SaleInput:
    items: list[SaleItemInput]
    customer_id: int | None = None
    tax_cents: int | None = None
    discount_cents: int = 0
    payment_method: str = "cash"
    payment_status: str = "paid"
    notes: str | None = None
    sale_date: datetime | None = field(default=None)


def _non_negative(value, name: str) -> int:
    value = strict_int(value, name)
    if value < 0:
        raise InvalidInputError(f"{name} must be >= 0", {"field": name})
    return value


def _parse_item(raw, index: int) -> SaleItemInput:
    where = f"items[{index}]"
    if not isinstance(raw, dict):
        raise InvalidInputError(f"{where} must be an object", {"index": index})
    reject_unknown_fields(raw, {"product_id", "quantity", "unit_price_cents", "discount_cents"}, where)

    for required in ("product_id", "quantity"):
        if raw.get(required) is None:
            raise InvalidInputError(f"{where}.{required} is required", {"index": index, "field": required})

    quantity = strict_int(raw["quantity"], f"{where}.quantity")
    if quantity <= 0:
        raise InvalidInputError(f"{where}.quantity must be > 0", {"index": index, "field": "quantity"})

    unit_price = raw.get("unit_price_cents")
    return SaleItemInput(
        product_id=strict_int(raw["product_id"], f"{where}.product_id"),
        quantity=quantity,
        unit_price_cents=None if unit_price is None else _non_negative(unit_price, f"{where}.unit_price_cents"),
        discount_cents=_non_negative(raw.get("discount_cents", 0) or 0, f"{where}.discount_cents"),
    )


def parse_sale_payload(payload) -> SaleInput:
    """
    Build a SaleInput from request JSON.

    Integers must be JSON integers: "2", 2.0 and true are all rejected rather
    than coerced. Unknown fields are rejected.
    """
    if not isinstance(payload, dict):
        raise InvalidInputError("Invalid JSON payload")
    reject_unknown_fields(
        payload,
        {"customer_id", "items", "tax_cents", "discount_cents", "payment_method", "payment_status", "notes"},
    )

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidInputError("Sale must have at least one item", {"field": "items"})
    items = [_parse_item(raw, i) for i, raw in enumerate(raw_items)]

    customer_id = payload.get("customer_id")
    if customer_id is not None:
        customer_id = strict_int(customer_id, "customer_id")

    tax = payload.get("tax_cents")
    payment_method = payload.get("payment_method") or "cash"
    if payment_method not in PAYMENT_METHODS:
        raise InvalidInputError(
            "Invalid payment method",
            {"field": "payment_method", "allowed": list(PAYMENT_METHODS)},
        )
    payment_status = payload.get("payment_status") or "paid"
    if payment_status not in CREATE_PAYMENT_STATUSES:
        raise InvalidInputError(
            "Invalid payment status",
            {"field": "payment_status", "allowed": list(CREATE_PAYMENT_STATUSES)},
        )

    return SaleInput(
        items=items,
        customer_id=customer_id,
        tax_cents=None if tax is None else _non_negative(tax, "tax_cents"),
        discount_cents=_non_negative(payload.get("discount_cents", 0) or 0, "discount_cents"),
        payment_method=payment_method,
        payment_status=payment_status,
        notes=optional_str(payload.get("notes"), "notes"),
    )


def _required_by_product(items: list[SaleItemInput]) -> dict[int, int]:
    required: dict[int, int] = {}
    for item in items:
        required[item.product_id] = required.get(item.product_id, 0) + item.quantity
    return required


def _lock_inventory_for_product(product: Product) -> Inventory | None:
    return lock_for_update(db.session.query(Inventory).filter(Inventory.product_id == product.id)).first()


def create_sale(sale_input: SaleInput, actor: Actor) -> Sale:
    """
    Record a completed sale and take its stock.

    Raises InvalidInputError, NotFoundError (product or customer) or
    InsufficientStockError naming the first short product; nothing is written
    in any of those cases.
    """
    if not sale_input.items:
        raise InvalidInputError("Sale must have at least one item", {"field": "items"})
    for index, item in enumerate(sale_input.items):
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
            raise InvalidInputError(f"items[{index}].quantity must be > 0", {"index": index, "field": "quantity"})

    if sale_input.customer_id is not None and db.session.get(Customer, sale_input.customer_id) is None:
        raise NotFoundError("Customer not found", {"customer_id": sale_input.customer_id})

    settings_service.get_settings()
    required = _required_by_product(sale_input.items)

    def _op():
        begin_write()

        # Lock in product id order so concurrent sales over the same products
        # cannot deadlock each other.
        products: dict[int, Product] = {}
        inventories: dict[int, Inventory] = {}
        for product_id in sorted(required):
            product = db.session.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product not found", {"product_id": product_id})
            if not product.is_active:
                raise InvalidInputError(f"Product {product.name} is not available for sale", {"product_id": product_id})
            products[product_id] = product

            inventory = _lock_inventory_for_product(product)
            available = inventory.quantity if inventory is not None else 0
            if inventory is None or available < required[product_id]:
                raise InsufficientStockError(
                    product.name,
                    available=available,
                    requested=required[product_id],
                    details={"product_id": product_id},
                )
            inventories[product_id] = inventory

        lines = []
        for index, item in enumerate(sale_input.items):
            product = products[item.product_id]
            unit_price = item.unit_price_cents if item.unit_price_cents is not None else product.price_cents
            line_subtotal = unit_price * item.quantity - item.discount_cents
            if line_subtotal < 0:
                raise InvalidInputError(
                    f"items[{index}] discount exceeds line amount",
                    {"index": index, "product_id": item.product_id},
                )
            lines.append((item, unit_price, line_subtotal))

        subtotal = sum(line_subtotal for _, _, line_subtotal in lines)
        settings = settings_service.lock_settings()
        tax = sale_input.tax_cents
        if tax is None:
            tax = settings_service.tax_for_subtotal(settings, subtotal)
        total = subtotal + tax - sale_input.discount_cents
        if total < 0:
            raise InvalidInputError(
                "Sale discount exceeds subtotal plus tax",
                {"subtotal_cents": subtotal, "tax_cents": tax, "discount_cents": sale_input.discount_cents},
            )

        sale = Sale(
            receipt_number=settings_service.allocate_receipt_number(settings),
            customer_id=sale_input.customer_id,
            user_id=actor.id,
            sale_date=sale_input.sale_date or utcnow(),
            subtotal_cents=subtotal,
            tax_cents=tax,
            discount_cents=sale_input.discount_cents,
            total_cents=total,
            payment_method=sale_input.payment_method,
            payment_status=sale_input.payment_status,
            status="completed",
            notes=sale_input.notes,
        )
        db.session.add(sale)
        db.session.flush()

        low_stock: dict[int, tuple[int, int]] = {}
        for item, unit_price, line_subtotal in lines:
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_cents=unit_price,
                discount_cents=item.discount_cents,
                subtotal_cents=line_subtotal,
            ))
            inventory = inventories[item.product_id]
            result = inventory_service.apply_delta(
                inventory,
                delta=-item.quantity,
                reason=f"Sale {sale.receipt_number}",
                actor=actor,
                transaction_type="sale",
                reference_type="sale",
                reference_id=sale.id,
            )
            if result.low_stock:
                low_stock[item.product_id] = (result.new_quantity, inventory.min_stock_level)
            else:
                low_stock.pop(item.product_id, None)

        db.session.commit()
        return sale.id, low_stock

    sale_id, low_stock = run_with_retry(_op)

    current_app.logger.info("Sale %s created by user %s", sale_id, actor.id)
    for product_id, (quantity, min_level) in low_stock.items():
        notification_service.notify_low_stock(product_id, quantity, min_level)

    return get_sale(sale_id)


def cancel_sale(sale_id: int, actor: Actor) -> Sale:
    """Cancel a sale and return every line's quantity to stock."""

    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter(Sale.id == sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found", {"sale_id": sale_id})
        if sale.status == "cancelled":
            raise AlreadyCancelledError("Sale is already cancelled", {"sale_id": sale_id})

        for item in sorted(sale.items, key=lambda i: (i.product_id, i.id)):
            inventory = lock_for_update(
                db.session.query(Inventory).filter(Inventory.product_id == item.product_id)
            ).first()
            if inventory is None:
                raise NotFoundError(
                    "Inventory record for sold product no longer exists",
                    {"product_id": item.product_id, "sale_id": sale_id},
                )
            inventory_service.apply_delta(
                inventory,
                delta=item.quantity,
                reason=f"Cancelled sale {sale.receipt_number}",
                actor=actor,
                transaction_type="return",
                reference_type="sale",
                reference_id=sale.id,
            )

        sale.status = "cancelled"
        sale.payment_status = "refunded"
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = actor.id
        db.session.commit()
        return sale.id

    run_with_retry(_op)
    current_app.logger.info("Sale %s cancelled by user %s", sale_id, actor.id)
    return get_sale(sale_id)


def update_sale(*, sale_id: int, payload: dict, actor: Actor) -> Sale:
    """Only payment fields may change after a sale is recorded."""
    if not isinstance(payload, dict):
        raise InvalidInputError("Invalid JSON payload")
    reject_unknown_fields(payload, {"payment_method", "payment_status"})
    if not payload:
        raise InvalidInputError("Nothing to update")

    if "payment_method" in payload and payload["payment_method"] not in PAYMENT_METHODS:
        raise InvalidInputError(
            "Invalid payment method",
            {"field": "payment_method", "allowed": list(PAYMENT_METHODS)},
        )
    if "payment_status" in payload and payload["payment_status"] not in CREATE_PAYMENT_STATUSES:
        raise InvalidInputError(
            "Invalid payment status",
            {"field": "payment_status", "allowed": list(CREATE_PAYMENT_STATUSES)},
        )

    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter(Sale.id == sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found", {"sale_id": sale_id})
        if sale.status == "cancelled":
            raise InvalidInputError("Cancelled sales cannot be updated", {"sale_id": sale_id})
        for key, value in payload.items():
            setattr(sale, key, value)
        db.session.commit()
        return sale.id

    run_with_retry(_op)
    current_app.logger.info("Sale %s payment updated by user %s", sale_id, actor.id)
    return get_sale(sale_id)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found", {"sale_id": sale_id})
    return sale


def list_sales(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    query = db.session.query(Sale)
    if status:
        query = query.filter(Sale.status == status)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    if end is not None:
        query = query.filter(Sale.sale_date <= end)

    total = query.count()
    sales = query.order_by(Sale.sale_date.desc(), Sale.id.desc()).offset(offset).limit(limit).all()
    return sales, total


def sales_by_customer(customer_id: int) -> list[Sale]:
    if db.session.get(Customer, customer_id) is None:
        raise NotFoundError("Customer not found", {"customer_id": customer_id})
    return (
        db.session.query(Sale)
        .filter(Sale.customer_id == customer_id)
        .order_by(Sale.sale_date.desc(), Sale.id.desc())
        .all()
    )
