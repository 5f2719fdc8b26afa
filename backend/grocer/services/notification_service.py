# Overview: Service-layer operations for notifications; stock alert fan-out and per-user inbox.

"""
Stock alerts go through a NotificationSink so delivery can change without
touching the ledger. The sink in use lives in app.extensions and is picked
from config (NOTIFICATION_SINK) at startup; tests swap it directly.

notify_low_stock / notify_expiry are fire-and-forget: they run after the
stock change has committed, and any failure is logged and swallowed so a
broken alert path never undoes a sale or an adjustment.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..actor import MANAGEMENT_ROLES, Actor
from ..errors import InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Notification, Product, User
from ..models.notifications import NOTIFICATION_TYPES
from ..time_utils import to_date_str, to_naive_utc, utcnow
from .concurrency import run_with_retry

SINK_EXTENSION_KEY = "grocer.notification_sink"
NOTIFICATION_LIST_LIMIT = 50

EXPIRED = "expired"
NEAR_EXPIRY = "near"


class NotificationSink:
    """Delivery port for stock alerts."""

    def low_stock(self, *, product: Product, quantity: int, min_level: int) -> int:
        raise NotImplementedError

    def expiry(self, *, product: Product, expiry_date: datetime, status: str) -> int:
        raise NotImplementedError


def low_stock_message(product: Product, quantity: int, min_level: int) -> tuple[str, str]:
    return (
        "Low Stock Alert",
        f"Product {product.name} is running low on stock. "
        f"Current quantity: {quantity}, Minimum required: {min_level}",
    )


def expiry_message(product: Product, expiry_date: datetime, status: str) -> tuple[str, str, str]:
    if status == EXPIRED:
        return (
            "expiry_alert",
            "Expired Item Alert",
            f"Product {product.name} has expired on {to_date_str(expiry_date)}.",
        )
    return (
        "near_expiry",
        "Near Expiry Alert",
        f"Product {product.name} will expire on {to_date_str(expiry_date)}.",
    )


class DatabaseNotificationSink(NotificationSink):
    """One unread notification row per active admin or manager."""

    def _recipients(self) -> list[User]:
        return (
            db.session.query(User)
            .filter(User.role.in_(MANAGEMENT_ROLES), User.status == "active")
            .order_by(User.id.asc())
            .all()
        )

    def _fan_out(self, *, notification_type: str, title: str, message: str, product: Product) -> int:
        recipients = self._recipients()
        if not recipients:
            current_app.logger.warning(
                "No admin or manager to receive %s alert for product %s", notification_type, product.id
            )
            return 0

        for user in recipients:
            db.session.add(Notification(
                user_id=user.id,
                type=notification_type,
                title=title,
                message=message,
                related_id=product.id,
                related_type="product",
                is_read=False,
            ))
        db.session.commit()
        return len(recipients)

    def low_stock(self, *, product: Product, quantity: int, min_level: int) -> int:
        title, message = low_stock_message(product, quantity, min_level)
        return self._fan_out(notification_type="low_stock", title=title, message=message, product=product)

    def expiry(self, *, product: Product, expiry_date: datetime, status: str) -> int:
        notification_type, title, message = expiry_message(product, expiry_date, status)
        return self._fan_out(notification_type=notification_type, title=title, message=message, product=product)


class LogNotificationSink(NotificationSink):
    """Writes alerts to the application log only."""

    def low_stock(self, *, product: Product, quantity: int, min_level: int) -> int:
        title, message = low_stock_message(product, quantity, min_level)
        current_app.logger.warning("%s: %s", title, message)
        return 0

    def expiry(self, *, product: Product, expiry_date: datetime, status: str) -> int:
        _, title, message = expiry_message(product, expiry_date, status)
        current_app.logger.warning("%s: %s", title, message)
        return 0


SINKS = {
    "database": DatabaseNotificationSink,
    "log": LogNotificationSink,
}


def init_app(app) -> None:
    name = app.config.get("NOTIFICATION_SINK", "database")
    if name not in SINKS:
        raise RuntimeError(f"Unknown NOTIFICATION_SINK: {name!r} (expected one of {', '.join(SINKS)})")
    app.extensions[SINK_EXTENSION_KEY] = SINKS[name]()


def get_sink() -> NotificationSink:
    return current_app.extensions[SINK_EXTENSION_KEY]


def set_sink(app, sink: NotificationSink) -> None:
    app.extensions[SINK_EXTENSION_KEY] = sink


# =============================================================================
# Fire-and-forget dispatch
# =============================================================================

def notify_low_stock(product_id: int, current_quantity: int, min_level: int) -> int:
    """Alert management that a product is at or below its minimum level. Never raises."""
    try:
        product = db.session.get(Product, product_id)
        if product is None:
            current_app.logger.warning("Low stock alert skipped: product %s not found", product_id)
            return 0
        return get_sink().low_stock(product=product, quantity=current_quantity, min_level=min_level)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to send low stock notification for product %s", product_id)
        return 0


def notify_expiry(product_id: int, expiry_date: datetime, status: str) -> int:
    """Alert management about an expired or soon-to-expire product. Never raises."""
    try:
        product = db.session.get(Product, product_id)
        if product is None:
            current_app.logger.warning("Expiry alert skipped: product %s not found", product_id)
            return 0
        return get_sink().expiry(product=product, expiry_date=expiry_date, status=status)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to send expiry notification for product %s", product_id)
        return 0


def expiry_status(expiry_date: datetime | None, now: datetime | None = None, warning_days: int | None = None) -> str | None:
    """
    "expired" if the date has passed (or is now), "near" if it falls within
    the warning window, otherwise None.
    """
    if expiry_date is None:
        return None
    # PostgreSQL hands back aware values for timestamptz columns
    expiry_date = to_naive_utc(expiry_date)
    now = to_naive_utc(now) if now is not None else utcnow()
    if warning_days is None:
        warning_days = current_app.config.get("EXPIRY_WARNING_DAYS", 7)

    if expiry_date <= now:
        return EXPIRED
    if expiry_date - now <= timedelta(days=warning_days):
        return NEAR_EXPIRY
    return None


def check_expiry(inventory, now: datetime | None = None) -> str | None:
    """
    Evaluate one inventory row and alert if needed. Returns the status found,
    or None if nothing is due or the check itself failed. Never raises.
    """
    try:
        status = expiry_status(inventory.expiry_date, now=now)
        if status is not None:
            notify_expiry(inventory.product_id, to_naive_utc(inventory.expiry_date), status)
        return status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Expiry check failed for product %s", inventory.product_id)
        return None


# =============================================================================
# Inbox
# =============================================================================

def list_notifications(*, actor: Actor, limit: int = NOTIFICATION_LIST_LIMIT, unread_only: bool = False) -> list[Notification]:
    query = db.session.query(Notification).filter(Notification.user_id == actor.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def unread_count(*, actor: Actor) -> int:
    return (
        db.session.query(db.func.count(Notification.id))
        .filter(Notification.user_id == actor.id, Notification.is_read.is_(False))
        .scalar()
        or 0
    )


def _get_own(notification_id: int, actor: Actor) -> Notification:
    notification = db.session.query(Notification).filter_by(id=notification_id, user_id=actor.id).first()
    if notification is None:
        raise NotFoundError("Notification not found", {"notification_id": notification_id})
    return notification


def mark_read(*, notification_id: int, actor: Actor) -> Notification:
    def _op():
        notification = _get_own(notification_id, actor)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
        db.session.commit()
        return notification

    return run_with_retry(_op)


def mark_all_read(*, actor: Actor) -> int:
    def _op():
        updated = (
            db.session.query(Notification)
            .filter(Notification.user_id == actor.id, Notification.is_read.is_(False))
            .update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
        )
        db.session.commit()
        return updated

    return run_with_retry(_op)


def delete_notification(*, notification_id: int, actor: Actor) -> None:
    def _op():
        db.session.delete(_get_own(notification_id, actor))
        db.session.commit()

    run_with_retry(_op)


def create_notification(
    *,
    user_id: int,
    notification_type: str,
    title: str,
    message: str,
    related_id: int | None = None,
    related_type: str | None = None,
) -> Notification:
    if notification_type not in NOTIFICATION_TYPES:
        raise InvalidInputError(
            "Invalid notification type",
            {"type": notification_type, "allowed": list(NOTIFICATION_TYPES)},
        )
    if not title or not message:
        raise InvalidInputError("title and message are required")
    if db.session.get(User, user_id) is None:
        raise InvalidInputError("Recipient user not found", {"user_id": user_id})

    def _op():
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            related_id=related_id,
            related_type=related_type,
        )
        db.session.add(notification)
        db.session.commit()
        return notification

    return run_with_retry(_op)
