# Overview: Service-layer operations for customers; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app

from ..actor import Actor
from ..errors import ConflictError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Customer, Sale
from ..validation import ModelValidationPolicy, validate_payload
from .concurrency import run_with_retry

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "address", "notes"},
    required_on_create={"name"},
)


def _normalize(patch: dict) -> dict:
    if "email" in patch:
        email = patch["email"]
        if email:
            email = email.lower()
            if "@" not in email:
                raise InvalidInputError("email is not a valid address", {"field": "email"})
        patch["email"] = email or None
    return patch


def _ensure_email_free(email: str | None, exclude_customer_id: int | None = None) -> None:
    if not email:
        return
    query = db.session.query(Customer.id).filter(Customer.email == email)
    if exclude_customer_id is not None:
        query = query.filter(Customer.id != exclude_customer_id)
    if query.first() is not None:
        raise ConflictError("Customer with this email already exists", {"email": email})


def list_customers(*, q: str | None = None, limit: int | None = None) -> list[Customer]:
    query = db.session.query(Customer)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(db.or_(
            Customer.name.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.phone.ilike(pattern),
        ))
    query = query.order_by(Customer.name.asc(), Customer.id.asc())
    if limit is not None:
        query = query.limit(max(limit, 1))
    return query.all()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", {"customer_id": customer_id})
    return customer


def create_customer(*, payload: dict, actor: Actor) -> Customer:
    patch = _normalize(validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False))

    def _op():
        _ensure_email_free(patch.get("email"))
        customer = Customer(**patch)
        db.session.add(customer)
        db.session.commit()
        return customer

    customer = run_with_retry(_op)
    current_app.logger.info("Customer %s created by user %s", customer.id, actor.id)
    return customer


def update_customer(*, customer_id: int, payload: dict, actor: Actor) -> Customer:
    patch = _normalize(validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True))

    def _op():
        customer = get_customer(customer_id)
        _ensure_email_free(patch.get("email"), exclude_customer_id=customer.id)
        for key, value in patch.items():
            setattr(customer, key, value)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def delete_customer(*, customer_id: int, actor: Actor) -> None:
    def _op():
        customer = get_customer(customer_id)
        if db.session.query(Sale.id).filter(Sale.customer_id == customer.id).first() is not None:
            raise ConflictError("Customer has sales and cannot be deleted", {"customer_id": customer.id})
        db.session.delete(customer)
        db.session.commit()

    run_with_retry(_op)
    current_app.logger.info("Customer %s deleted by user %s", customer_id, actor.id)
