from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import InvalidInputError
from .time_utils import parse_iso_datetime


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def strict_int(value: Any, field: str) -> int:
    """
    Accept only real JSON integers.

    bool is a subclass of int and is rejected, as are floats ("2.0") and
    numeric strings ("2"): typed payloads must not be coerced.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"{field} must be an integer", {"field": field})
    return value


def optional_str(value: Any, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInputError(f"{field} must be a string", {"field": field})
    value = value.strip()
    if max_length and len(value) > max_length:
        raise InvalidInputError(f"{field} exceeds max length {max_length}", {"field": field})
    return value or None


def reject_unknown_fields(payload: dict, allowed: set[str], where: str = "payload") -> None:
    unknown = sorted(k for k in payload.keys() if k not in allowed)
    if unknown:
        raise InvalidInputError(
            f"Field not allowed in {where}: {', '.join(unknown)}",
            {"fields": unknown},
        )


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - JSON integers only; "5", 5.0 and true are rejected, not coerced
    if isinstance(coltype, Integer):
        if isinstance(value, float):
            raise InvalidInputError(f"{col.key} must be an integer, not a decimal", {"field": col.key})
        return strict_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise InvalidInputError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise InvalidInputError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise InvalidInputError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise InvalidInputError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise InvalidInputError(f"{col.key} must be a string")
        return value.strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidInputError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise InvalidInputError(f"Missing required fields: {', '.join(missing)}", {"fields": missing})

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise InvalidInputError(f"Field not allowed: {k}", {"field": k})
        if k not in cols:
            raise InvalidInputError(f"Unknown field: {k}", {"field": k})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise InvalidInputError(f"{k} cannot be null", {"field": k})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise InvalidInputError(f"{k} cannot be blank", {"field": k})

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise InvalidInputError(f"{k} exceeds max length {col.type.length}", {"field": k})

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for field in ("price_cents", "cost_cents"):
        if field in patch and patch[field] is not None:
            value = patch[field]
            if value < 0:
                raise InvalidInputError(f"{field} must be >= 0", {"field": field})
            if value > MAX_PRICE_CENTS:
                raise InvalidInputError(
                    f"{field} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})",
                    {"field": field},
                )


def enforce_rules_inventory(patch: dict) -> None:
    if "min_stock_level" in patch and patch["min_stock_level"] is not None:
        if patch["min_stock_level"] < 0:
            raise InvalidInputError("min_stock_level must be >= 0", {"field": "min_stock_level"})
