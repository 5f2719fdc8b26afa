# Overview: Service-layer operations for inventory; the stock ledger and inventory records.

# backend/grocer/services/inventory_service.py
"""
Inventory Ledger Invariants (authoritative)

Quantity model:
- Each product has at most one Inventory row holding the current quantity.
- Inventory.quantity equals the sum of quantity_delta over its InventoryTransaction rows.
- quantity never goes negative; a change that would take it below zero fails
  with InsufficientStockError and writes nothing.

Ledger writes:
- apply_delta() is the only code path that changes Inventory.quantity.
- Every change appends exactly one InventoryTransaction (previous, delta, new, actor).
- Zero deltas are rejected; the ledger never records a no-op.
- Initial stock given at inventory creation is recorded as a "purchase".

Transactions:
- adjust_inventory() is a complete unit of work: lock, check, write, commit.
- apply_delta() does not commit; the sale flow composes it inside its own
  transaction and dispatches notifications itself after commit.
- Low-stock and expiry alerts go out only after commit and never raise.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..actor import Actor
from ..errors import ConflictError, InsufficientStockError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Inventory, InventoryTransaction, Product
from ..time_utils import utcnow
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_inventory,
    optional_str,
    reject_unknown_fields,
    strict_int,
    validate_payload,
)
from . import notification_service
from .concurrency import begin_write, lock_for_update, run_with_retry

# Types a user may post through the adjust endpoint. "sale" rows are written
# by the sale flow only.
MANUAL_ADJUSTMENT_TYPES = ("adjustment", "purchase", "restock", "return")

INVENTORY_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "min_stock_level", "expiry_date", "location"},
    required_on_create={"product_id"},
)


@dataclass(frozen=True)
class AdjustmentInput:
    delta: int
    reason: str | None
    transaction_type: str = "adjustment"


@dataclass(frozen=True)
class AdjustmentResult:
    previous_quantity: int
    new_quantity: int
    transaction: InventoryTransaction
    low_stock: bool


def parse_adjustment_payload(payload) -> AdjustmentInput:
    """Strictly parse {"delta": int, "reason": str?, "type": str?}."""
    if not isinstance(payload, dict):
        raise InvalidInputError("Invalid JSON payload")
    reject_unknown_fields(payload, {"delta", "reason", "type"})

    if "delta" not in payload:
        raise InvalidInputError("delta is required", {"field": "delta"})
    delta = strict_int(payload["delta"], "delta")
    if delta == 0:
        raise InvalidInputError("delta must be non-zero", {"field": "delta"})

    transaction_type = payload.get("type") or "adjustment"
    if transaction_type not in MANUAL_ADJUSTMENT_TYPES:
        raise InvalidInputError(
            "Invalid adjustment type",
            {"type": transaction_type, "allowed": list(MANUAL_ADJUSTMENT_TYPES)},
        )

    reason = optional_str(payload.get("reason"), "reason", max_length=255)
    return AdjustmentInput(delta=delta, reason=reason, transaction_type=transaction_type)


# =============================================================================
# Ledger
# =============================================================================

def get_inventory_for_update(inventory_id: int) -> Inventory:
    inventory = lock_for_update(db.session.query(Inventory).filter(Inventory.id == inventory_id)).first()
    if inventory is None:
        raise NotFoundError("Inventory not found", {"inventory_id": inventory_id})
    return inventory


def apply_delta(
    inventory: Inventory,
    *,
    delta: int,
    reason: str | None,
    actor: Actor,
    transaction_type: str = "adjustment",
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> AdjustmentResult:
    """
    Change quantity by delta and append the audit row. Caller holds the row
    lock and owns the commit.
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise InvalidInputError("delta must be a non-zero integer", {"field": "delta"})

    previous = inventory.quantity
    new_quantity = previous + delta
    if new_quantity < 0:
        raise InsufficientStockError(
            inventory.product.name if inventory.product else f"product {inventory.product_id}",
            available=previous,
            requested=-delta,
            details={"inventory_id": inventory.id, "product_id": inventory.product_id},
        )

    inventory.quantity = new_quantity
    transaction = InventoryTransaction(
        inventory_id=inventory.id,
        user_id=actor.id,
        type=transaction_type,
        quantity_delta=delta,
        previous_quantity=previous,
        new_quantity=new_quantity,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        created_at=utcnow(),
    )
    db.session.add(transaction)

    return AdjustmentResult(
        previous_quantity=previous,
        new_quantity=new_quantity,
        transaction=transaction,
        low_stock=new_quantity <= inventory.min_stock_level,
    )


def adjust_inventory(
    *,
    inventory_id: int,
    delta: int,
    reason: str | None,
    actor: Actor,
    transaction_type: str = "adjustment",
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> AdjustmentResult:
    """Standalone ledger write: lock, check, write, commit, then alert."""

    def _op():
        begin_write()
        inventory = get_inventory_for_update(inventory_id)
        result = apply_delta(
            inventory,
            delta=delta,
            reason=reason,
            actor=actor,
            transaction_type=transaction_type,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        db.session.commit()
        return result, inventory.product_id, inventory.min_stock_level

    result, product_id, min_level = run_with_retry(_op)

    current_app.logger.info(
        "Inventory %s adjusted by %s (%s -> %s) by user %s",
        inventory_id, delta, result.previous_quantity, result.new_quantity, actor.id,
    )
    if result.low_stock:
        notification_service.notify_low_stock(product_id, result.new_quantity, min_level)
    return result


# =============================================================================
# Inventory records
# =============================================================================

def get_inventory(inventory_id: int) -> Inventory:
    inventory = db.session.get(Inventory, inventory_id)
    if inventory is None:
        raise NotFoundError("Inventory not found", {"inventory_id": inventory_id})
    return inventory


def get_inventory_by_product(product_id: int) -> Inventory | None:
    return db.session.query(Inventory).filter_by(product_id=product_id).first()


def list_inventory(*, low_stock_only: bool = False, expiring_within_days: int | None = None) -> list[Inventory]:
    query = db.session.query(Inventory).join(Product, Inventory.product_id == Product.id)
    if low_stock_only:
        query = query.filter(Inventory.quantity <= Inventory.min_stock_level)
    if expiring_within_days is not None:
        horizon = utcnow() + timedelta(days=expiring_within_days)
        query = query.filter(Inventory.expiry_date.isnot(None), Inventory.expiry_date <= horizon)
    return query.order_by(Product.name.asc(), Inventory.id.asc()).all()


def create_inventory(*, payload: dict, actor: Actor) -> Inventory:
    """
    Create the inventory row for a product.

    Initial stock ("quantity" in the payload) goes through the ledger as a
    purchase so the audit trail accounts for every unit.
    """
    if not isinstance(payload, dict):
        raise InvalidInputError("Invalid JSON payload")
    payload = dict(payload)
    initial_quantity = 0
    if "quantity" in payload:
        initial_quantity = strict_int(payload.pop("quantity"), "quantity")
        if initial_quantity < 0:
            raise InvalidInputError("quantity must be >= 0", {"field": "quantity"})

    patch = validate_payload(model=Inventory, payload=payload, policy=INVENTORY_POLICY, partial=False)
    enforce_rules_inventory(patch)

    product = db.session.get(Product, patch["product_id"])
    if product is None:
        raise NotFoundError("Product not found", {"product_id": patch["product_id"]})

    def _op():
        begin_write()
        if get_inventory_by_product(product.id) is not None:
            raise ConflictError(
                "Inventory already exists for this product",
                {"product_id": product.id},
            )
        inventory = Inventory(quantity=0, **patch)
        db.session.add(inventory)
        db.session.flush()

        result = None
        if initial_quantity > 0:
            result = apply_delta(
                inventory,
                delta=initial_quantity,
                reason="Initial stock",
                actor=actor,
                transaction_type="purchase",
            )
        db.session.commit()
        return inventory, result

    inventory, result = run_with_retry(_op)

    if result is not None and result.low_stock:
        notification_service.notify_low_stock(inventory.product_id, inventory.quantity, inventory.min_stock_level)
    notification_service.check_expiry(inventory)
    return inventory


def update_inventory(*, inventory_id: int, payload: dict, actor: Actor) -> Inventory:
    """Update thresholds, expiry and location. Quantity is ledger-only."""
    if isinstance(payload, dict) and "quantity" in payload:
        raise InvalidInputError(
            "quantity cannot be set directly; use the adjust endpoint",
            {"field": "quantity"},
        )
    if isinstance(payload, dict) and "product_id" in payload:
        raise InvalidInputError("product_id cannot be changed", {"field": "product_id"})

    patch = validate_payload(model=Inventory, payload=payload, policy=INVENTORY_POLICY, partial=True)
    enforce_rules_inventory(patch)

    def _op():
        begin_write()
        inventory = get_inventory_for_update(inventory_id)
        for key, value in patch.items():
            setattr(inventory, key, value)
        db.session.commit()
        return inventory

    inventory = run_with_retry(_op)
    current_app.logger.info("Inventory %s updated by user %s: %s", inventory_id, actor.id, sorted(patch))

    if "expiry_date" in patch:
        notification_service.check_expiry(inventory)
    return inventory


def delete_inventory(*, inventory_id: int, actor: Actor) -> None:
    def _op():
        begin_write()
        inventory = get_inventory_for_update(inventory_id)
        has_history = (
            db.session.query(InventoryTransaction.id)
            .filter(InventoryTransaction.inventory_id == inventory.id)
            .first()
            is not None
        )
        if has_history:
            raise ConflictError(
                "Inventory with transaction history cannot be deleted",
                {"inventory_id": inventory.id},
            )
        db.session.delete(inventory)
        db.session.commit()

    run_with_retry(_op)
    current_app.logger.info("Inventory %s deleted by user %s", inventory_id, actor.id)


def list_transactions(*, inventory_id: int, limit: int | None = None) -> list[InventoryTransaction]:
    get_inventory(inventory_id)
    query = (
        db.session.query(InventoryTransaction)
        .filter(InventoryTransaction.inventory_id == inventory_id)
        .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
    )
    if limit is not None:
        query = query.limit(max(limit, 1))
    return query.all()


def ledger_balance(inventory_id: int) -> int:
    """Sum of all recorded deltas; equals Inventory.quantity when the ledger is consistent."""
    total = (
        db.session.query(db.func.coalesce(db.func.sum(InventoryTransaction.quantity_delta), 0))
        .filter(InventoryTransaction.inventory_id == inventory_id)
        .scalar()
    )
    return int(total or 0)


def check_all_expiry(now=None) -> dict:
    """Run the expiry policy over every dated inventory row."""
    counts = {notification_service.EXPIRED: 0, notification_service.NEAR_EXPIRY: 0}
    rows = db.session.query(Inventory).filter(Inventory.expiry_date.isnot(None)).all()
    for inventory in rows:
        status = notification_service.check_expiry(inventory, now=now)
        if status is not None:
            counts[status] += 1
    return counts
