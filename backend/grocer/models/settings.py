from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StoreSettings(db.Model):
    """
    Store-wide configuration. There is exactly one row; settings_service
    creates it with defaults on first read.

    invoice_next_number is consumed by sales_service when allocating receipt
    numbers, inside the sale transaction.
    """
    __tablename__ = "store_settings"
    __table_args__ = (
        db.CheckConstraint("tax_rate_bps >= 0 AND tax_rate_bps <= 10000", name="ck_store_settings_tax_rate"),
        db.CheckConstraint("invoice_next_number >= 1", name="ck_store_settings_invoice_next"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    store_name = db.Column(db.String(255), nullable=False, default="My Grocery Store")
    store_email = db.Column(db.String(255), nullable=True)
    store_phone = db.Column(db.String(32), nullable=True)
    store_address = db.Column(db.Text, nullable=True)
    store_website = db.Column(db.String(255), nullable=True)
    tax_id = db.Column(db.String(64), nullable=True)

    currency_code = db.Column(db.String(3), nullable=False, default="USD")
    currency_symbol = db.Column(db.String(8), nullable=False, default="$")
    # Basis points: 825 == 8.25%
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    language = db.Column(db.String(8), nullable=False, default="en")

    invoice_prefix = db.Column(db.String(16), nullable=False, default="INV-")
    invoice_suffix = db.Column(db.String(16), nullable=False, default="")
    invoice_next_number = db.Column(db.Integer, nullable=False, default=1001)

    invoice_show_logo = db.Column(db.Boolean, nullable=False, default=True)
    invoice_show_tax_id = db.Column(db.Boolean, nullable=False, default=True)
    invoice_footer_text = db.Column(db.Text, nullable=True)

    receipt_show_logo = db.Column(db.Boolean, nullable=False, default=True)
    receipt_show_tax_details = db.Column(db.Boolean, nullable=False, default=True)
    receipt_footer_text = db.Column(db.Text, nullable=True, default="Thank you for shopping with us!")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def format_receipt_number(self, number: int) -> str:
        return f"{self.invoice_prefix}{number}{self.invoice_suffix}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_name": self.store_name,
            "store_email": self.store_email,
            "store_phone": self.store_phone,
            "store_address": self.store_address,
            "store_website": self.store_website,
            "tax_id": self.tax_id,
            "currency_code": self.currency_code,
            "currency_symbol": self.currency_symbol,
            "tax_rate_bps": self.tax_rate_bps,
            "language": self.language,
            "invoice_prefix": self.invoice_prefix,
            "invoice_suffix": self.invoice_suffix,
            "invoice_next_number": self.invoice_next_number,
            "invoice_show_logo": self.invoice_show_logo,
            "invoice_show_tax_id": self.invoice_show_tax_id,
            "invoice_footer_text": self.invoice_footer_text,
            "receipt_show_logo": self.receipt_show_logo,
            "receipt_show_tax_details": self.receipt_show_tax_details,
            "receipt_footer_text": self.receipt_footer_text,
            "updated_at": to_utc_z(self.updated_at),
        }
