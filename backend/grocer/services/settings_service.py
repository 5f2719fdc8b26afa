# Overview: Service-layer operations for store settings; single-row configuration and receipt numbering.

from __future__ import annotations

from ..actor import Actor
from ..errors import InvalidInputError, PermissionDeniedError
from ..extensions import db
from ..models import StoreSettings
from ..validation import ModelValidationPolicy, validate_payload
from .concurrency import begin_write, lock_for_update, run_with_retry

SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields={
        "store_name", "store_email", "store_phone", "store_address", "store_website", "tax_id",
        "currency_code", "currency_symbol", "tax_rate_bps", "language",
        "invoice_prefix", "invoice_suffix", "invoice_next_number",
        "invoice_show_logo", "invoice_show_tax_id", "invoice_footer_text",
        "receipt_show_logo", "receipt_show_tax_details", "receipt_footer_text",
    },
)


def get_settings() -> StoreSettings:
    """Return the settings row, creating it with defaults on first use."""
    settings = db.session.query(StoreSettings).order_by(StoreSettings.id.asc()).first()
    if settings is None:
        settings = StoreSettings()
        db.session.add(settings)
        db.session.commit()
    return settings


def update_settings(*, payload: dict, actor: Actor) -> StoreSettings:
    if not actor.is_admin:
        raise PermissionDeniedError("Only administrators can change store settings")

    patch = validate_payload(model=StoreSettings, payload=payload, policy=SETTINGS_POLICY, partial=True)

    if "tax_rate_bps" in patch and not 0 <= patch["tax_rate_bps"] <= 10_000:
        raise InvalidInputError("tax_rate_bps must be between 0 and 10000", {"field": "tax_rate_bps"})
    if "invoice_next_number" in patch and patch["invoice_next_number"] < 1:
        raise InvalidInputError("invoice_next_number must be >= 1", {"field": "invoice_next_number"})
    if "currency_code" in patch:
        code = patch["currency_code"].upper()
        if len(code) != 3 or not code.isalpha():
            raise InvalidInputError("currency_code must be a 3-letter ISO code", {"field": "currency_code"})
        patch["currency_code"] = code

    get_settings()

    def _op():
        begin_write()
        settings = lock_settings()
        for key, value in patch.items():
            setattr(settings, key, value)
        db.session.commit()
        return settings

    return run_with_retry(_op)


def lock_settings() -> StoreSettings:
    """
    Load the settings row under lock inside the caller's write transaction.
    Callers run get_settings() first so the row exists.
    """
    settings = lock_for_update(db.session.query(StoreSettings).order_by(StoreSettings.id.asc())).first()
    if settings is None:
        raise RuntimeError("Store settings row missing; call get_settings() before opening the transaction")
    return settings


def allocate_receipt_number(settings: StoreSettings) -> str:
    """Consume the next invoice number. Commits with the caller's transaction."""
    number = settings.invoice_next_number
    settings.invoice_next_number = number + 1
    return settings.format_receipt_number(number)


def tax_for_subtotal(settings: StoreSettings, subtotal_cents: int) -> int:
    """Store tax rate applied to a subtotal, rounded half-up to the cent."""
    return (subtotal_cents * settings.tax_rate_bps + 5_000) // 10_000
