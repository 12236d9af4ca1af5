# Overview: Service-layer operations for auth; password hashing, user creation and login checks.

"""
Identity for the engine's actors (admins, store managers and staff,
suppliers, customers).

- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters with upper, lower, digit and special character
- Managers and staff must be bound to a store; other roles must not be
- Session tokens are managed separately (see session_service.py)
"""

from __future__ import annotations

import re

import bcrypt

from ..extensions import db
from ..models import Store, User
from ..models.auth import ROLES, STORE_ROLES, ROLE_SUPPLIER
from ..validation import ConflictError, NotFoundError, ValidationError


class PasswordValidationError(ValidationError):
    """Raised when a password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: str,
    *,
    store_id: int | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    company_name: str | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises ValidationError for a weak password or bad role/store binding,
    ConflictError when the username or email is taken.
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username:
        raise ValidationError("username is required")
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if role not in ROLES:
        raise ValidationError(f"Invalid role {role!r}. Must be one of: {', '.join(sorted(ROLES))}")

    if role in STORE_ROLES:
        if store_id is None:
            raise ValidationError(f"{role} users must be assigned to a store")
        if db.session.get(Store, store_id) is None:
            raise NotFoundError(f"Store {store_id} not found")
    elif store_id is not None:
        raise ValidationError(f"{role} users cannot be assigned to a store")

    if role == ROLE_SUPPLIER and not (company_name or "").strip():
        raise ValidationError("Suppliers require a company_name")

    if db.session.query(User.id).filter_by(username=username).first():
        raise ConflictError(f"Username {username!r} already exists")
    if db.session.query(User.id).filter_by(email=email).first():
        raise ConflictError(f"Email {email!r} already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        store_id=store_id,
        first_name=first_name,
        last_name=last_name,
        company_name=company_name,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Look a user up by username or email and check the password.

    Returns None for unknown users, wrong passwords and inactive accounts.
    """
    if not identifier or not password:
        return None

    ident = identifier.strip()
    user = db.session.query(User).filter(
        (User.username == ident) | (User.email == ident.lower())
    ).first()

    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user
