# Overview: Operator accounts, password hashing and role assignment.

"""
Authentication Service

WHY: Every sale is attributed to the operator who rang it up, and the
operator's assigned store decides which inventory the sale draws from.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import re

import bcrypt

from ..extensions import db
from ..models import Role, Store, User, UserRole
from ..time_utils import utcnow

ROLE_SUPER_ADMIN = "SuperAdmin"
ROLE_STORE_MANAGER = "StoreManager"
ROLE_CASHIER = "Cashier"

DEFAULT_ROLES = (
    (ROLE_SUPER_ADMIN, "Full access across all stores"),
    (ROLE_STORE_MANAGER, "Inventory, assembly offers and sales history for one store"),
    (ROLE_CASHIER, "POS sales for one store"),
)


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """Validate strength, then bcrypt-hash the password."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check; malformed hashes simply fail."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    store_id: int | None = None,
    full_name: str | None = None,
    roles: tuple[str, ...] = (),
    bcrypt_rounds: int = 12,
) -> User:
    """
    Create an operator account.

    Raises ValueError if the username/email is taken or the store is unknown,
    PasswordValidationError if the password is too weak.
    """
    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValueError("Username or email already exists")

    if store_id is not None and db.session.get(Store, store_id) is None:
        raise ValueError("Store not found")

    user = User(
        username=username,
        email=email,
        full_name=full_name,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
        store_id=store_id,
    )
    db.session.add(user)
    db.session.flush()

    for role_name in roles:
        _attach_role(user.id, role_name)

    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Look up an active user by username or email and verify the password.

    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()
    if not user:
        return None

    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def _attach_role(user_id: int, role_name: str) -> UserRole:
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise ValueError(f"Role {role_name} not found")

    existing = db.session.query(UserRole).filter_by(user_id=user_id, role_id=role.id).first()
    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)
    db.session.add(user_role)
    db.session.flush()
    return user_role


def assign_role(user_id: int, role_name: str) -> UserRole:
    """Assign role to user."""
    user_role = _attach_role(user_id, role_name)
    db.session.commit()
    return user_role


def user_role_names(user: User) -> set[str]:
    return {ur.role.name for ur in user.user_roles}


def user_has_role(user: User, *role_names: str) -> bool:
    return bool(user_role_names(user) & set(role_names))


def create_default_roles() -> None:
    """Create standard roles if they don't exist."""
    for name, desc in DEFAULT_ROLES:
        if not db.session.query(Role).filter_by(name=name).first():
            db.session.add(Role(name=name, description=desc))
    db.session.commit()
