# Overview: Service-layer operations for user accounts and password authentication.

"""
Authentication Service

WHY: Every workflow step is attributed to a user and gated by that user's
role. Passwords are hashed with bcrypt; bearer sessions live in
session_service.

SECURITY NOTES:
- bcrypt cost factor from BCRYPT_ROUNDS (12 by default, lower in tests)
- Minimum 8 characters with upper, lower, digit and special character
- Inactive users cannot authenticate
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Branch, User
from ..permissions import Role
from ..errors import ValidationError
from stockflow.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    code = "password_validation_error"


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
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
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: str,
    branch_id: int | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValidationError: unknown role, duplicate username/email, unknown branch
        PasswordValidationError: weak password
    """
    if role not in Role.ALL:
        raise ValidationError(f"Invalid role. Must be one of: {', '.join(Role.ALL)}")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValidationError("Username or email already exists")

    if branch_id is not None and db.session.get(Branch, branch_id) is None:
        raise ValidationError(f"Branch {branch_id} not found")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        branch_id=branch_id,
    )
    db.session.add(user)
    db.session.commit()

    current_app.logger.info("Created user %s with role %s", user.username, user.role)
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Check credentials by username or email.

    Returns the user (and stamps last_login_at) or None.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
