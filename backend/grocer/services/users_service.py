# Overview: Service-layer operations for staff accounts; lifecycle, roles and activity.

"""
User lifecycle

Accounts move between "active" and "deactivated"; they are never deleted,
so every sale and ledger row keeps a valid author. Two rules protect the
system from locking itself out:
- an administrator cannot deactivate or demote themselves;
- the last active administrator cannot be deactivated or demoted.
"""

from __future__ import annotations

from flask import current_app

from ..actor import Actor
from ..errors import ConflictError, InvalidInputError, NotFoundError, PermissionDeniedError
from ..extensions import db
from ..models import LoginHistory, Sale, User
from ..models.auth import USER_ROLES, USER_STATUSES
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, validate_payload
from . import session_service
from .auth_service import hash_password
from .concurrency import run_with_retry

USER_POLICY = ModelValidationPolicy(
    writable_fields={"username", "email", "full_name", "phone", "role"},
    required_on_create={"username", "email", "full_name"},
)
SELF_EDITABLE_FIELDS = {"email", "full_name", "phone", "password"}


def _require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError(f"Only administrators can {action}")


def _active_admin_count() -> int:
    return (
        db.session.query(db.func.count(User.id))
        .filter(User.role == "admin", User.status == "active")
        .scalar()
        or 0
    )


def _ensure_unique(username: str | None, email: str | None, exclude_user_id: int | None = None) -> None:
    conditions = []
    if username:
        conditions.append(User.username == username)
    if email:
        conditions.append(User.email == email)
    if not conditions:
        return
    query = db.session.query(User).filter(db.or_(*conditions))
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    existing = query.first()
    if existing is not None:
        field = "username" if username and existing.username == username else "email"
        raise ConflictError(f"A user with this {field} already exists", {"field": field})


def _check_role(role: str) -> None:
    if role not in USER_ROLES:
        raise InvalidInputError("Invalid role", {"field": "role", "allowed": list(USER_ROLES)})


def list_users(*, role: str | None = None, status: str | None = None) -> list[User]:
    query = db.session.query(User)
    if role:
        query = query.filter(User.role == role)
    if status:
        if status not in USER_STATUSES:
            raise InvalidInputError("Invalid status", {"field": "status", "allowed": list(USER_STATUSES)})
        query = query.filter(User.status == status)
    return query.order_by(User.username.asc()).all()


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", {"user_id": user_id})
    return user


def create_user(
    *,
    username: str,
    email: str,
    password: str,
    full_name: str,
    role: str = "staff",
    phone: str | None = None,
) -> User:
    """Create an account. Used by the API (via register_user) and the CLI."""
    _check_role(role)
    email = email.lower()
    _ensure_unique(username, email)

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
        phone=phone,
        role=role,
        status="active",
    )
    db.session.add(user)
    db.session.commit()
    return user


def register_user(*, payload: dict, actor: Actor) -> User:
    _require_admin(actor, "create users")
    if not isinstance(payload, dict):
        raise InvalidInputError("Invalid JSON payload")
    payload = dict(payload)
    password = payload.pop("password", None)
    if not password:
        raise InvalidInputError("Missing required fields: password", {"fields": ["password"]})

    patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=False)

    def _op():
        return create_user(password=password, **patch)

    user = run_with_retry(_op)
    current_app.logger.info("User %s (%s) created by user %s", user.id, user.role, actor.id)
    return user


def update_user(*, user_id: int, payload: dict, actor: Actor) -> User:
    """
    Users may edit their own profile and password. Only administrators can
    edit other accounts or change roles.
    """
    if not isinstance(payload, dict):
        raise InvalidInputError("Invalid JSON payload")
    if actor.id != user_id:
        _require_admin(actor, "edit other users")
    if not actor.is_admin:
        forbidden = sorted(set(payload) - SELF_EDITABLE_FIELDS)
        if forbidden:
            raise PermissionDeniedError("You cannot change these fields", {"fields": forbidden})

    payload = dict(payload)
    password = payload.pop("password", None)
    patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=True)
    if "email" in patch:
        patch["email"] = patch["email"].lower()
    if "role" in patch:
        _check_role(patch["role"])

    def _op():
        user = get_user(user_id)
        _ensure_unique(patch.get("username"), patch.get("email"), exclude_user_id=user.id)

        if "role" in patch and user.role == "admin" and patch["role"] != "admin":
            if user.id == actor.id:
                raise ConflictError("You cannot remove your own administrator role")
            if user.is_active and _active_admin_count() <= 1:
                raise ConflictError("Cannot demote the last active administrator")

        for key, value in patch.items():
            setattr(user, key, value)
        if password:
            user.password_hash = hash_password(password)
        db.session.commit()
        return user

    user = run_with_retry(_op)
    if password:
        session_service.revoke_all_user_sessions(user.id, reason="Password changed")
    return user


def deactivate_user(*, user_id: int, actor: Actor) -> User:
    _require_admin(actor, "deactivate users")
    if user_id == actor.id:
        raise ConflictError("You cannot deactivate your own account")

    def _op():
        user = get_user(user_id)
        if not user.is_active:
            raise ConflictError("User is already deactivated", {"user_id": user_id})
        if user.role == "admin" and _active_admin_count() <= 1:
            raise ConflictError("Cannot deactivate the last active administrator")
        user.status = "deactivated"
        user.deactivated_at = utcnow()
        db.session.commit()
        return user

    user = run_with_retry(_op)
    session_service.revoke_all_user_sessions(user.id, reason="User account deactivated")
    current_app.logger.info("User %s deactivated by user %s", user_id, actor.id)
    return user


def reactivate_user(*, user_id: int, actor: Actor) -> User:
    _require_admin(actor, "reactivate users")

    def _op():
        user = get_user(user_id)
        if user.is_active:
            raise ConflictError("User is already active", {"user_id": user_id})
        user.status = "active"
        user.deactivated_at = None
        db.session.commit()
        return user

    user = run_with_retry(_op)
    current_app.logger.info("User %s reactivated by user %s", user_id, actor.id)
    return user


def login_history(*, user_id: int, actor: Actor, limit: int = 50) -> list[LoginHistory]:
    if actor.id != user_id and not actor.is_admin:
        raise PermissionDeniedError("You can only view your own login history")
    get_user(user_id)
    return (
        db.session.query(LoginHistory)
        .filter(LoginHistory.user_id == user_id)
        .order_by(LoginHistory.created_at.desc(), LoginHistory.id.desc())
        .limit(limit)
        .all()
    )


def user_stats(*, user_id: int, actor: Actor) -> dict:
    """Sales activity for one user; completed sales only."""
    if actor.id != user_id and not actor.is_management:
        raise PermissionDeniedError("You can only view your own statistics")
    user = get_user(user_id)

    sales_count, revenue = (
        db.session.query(db.func.count(Sale.id), db.func.coalesce(db.func.sum(Sale.total_cents), 0))
        .filter(Sale.user_id == user.id, Sale.status == "completed")
        .one()
    )
    successful_logins = (
        db.session.query(db.func.count(LoginHistory.id))
        .filter(LoginHistory.user_id == user.id, LoginHistory.success.is_(True))
        .scalar()
    )
    return {
        "user_id": user.id,
        "completed_sales": int(sales_count or 0),
        "revenue_cents": int(revenue or 0),
        "average_sale_cents": int(revenue // sales_count) if sales_count else 0,
        "successful_logins": int(successful_logins or 0),
        "last_login_at": user.to_dict()["last_login_at"],
    }
