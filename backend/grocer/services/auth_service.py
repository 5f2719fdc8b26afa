# Overview: Service-layer operations for auth; password hashing and credential checks.

"""
Authentication Service

Passwords are hashed with bcrypt. The cost factor comes from BCRYPT_ROUNDS
(12 by default; tests lower it). Every login attempt, successful or not, is
written to login_history.
"""

import re

import bcrypt
from flask import current_app

from ..errors import InvalidInputError
from ..extensions import db
from ..models import LoginHistory, User
from ..time_utils import utcnow


class PasswordValidationError(InvalidInputError):
    """Raised when password doesn't meet strength requirements."""
    kind = "weak_password"


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)
    """
    if not isinstance(password, str):
        raise PasswordValidationError("Password must be a string")

    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt-hash."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check; malformed hashes simply fail."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _record_attempt(
    *,
    identifier: str,
    user: User | None,
    success: bool,
    reason: str | None,
    ip_address: str | None,
    user_agent: str | None,
) -> None:
    db.session.add(LoginHistory(
        user_id=user.id if user else None,
        identifier=identifier[:255],
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:255] or None,
        created_at=utcnow(),
    ))
    db.session.commit()


def authenticate(
    identifier: str,
    password: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> User | None:
    """
    Authenticate by username or email.

    Returns the User on success (and stamps last_login_at), None otherwise.
    Deactivated accounts never authenticate.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier.lower()),
    ).first()

    if user is None:
        _record_attempt(identifier=identifier, user=None, success=False, reason="Unknown account",
                        ip_address=ip_address, user_agent=user_agent)
        return None

    if not user.is_active:
        _record_attempt(identifier=identifier, user=user, success=False, reason="Account deactivated",
                        ip_address=ip_address, user_agent=user_agent)
        return None

    if not verify_password(password, user.password_hash):
        _record_attempt(identifier=identifier, user=user, success=False, reason="Invalid credentials",
                        ip_address=ip_address, user_agent=user_agent)
        return None

    user.last_login_at = utcnow()
    _record_attempt(identifier=identifier, user=user, success=True, reason=None,
                    ip_address=ip_address, user_agent=user_agent)
    return user
