# Overview: Password hashing and admin/cashier account operations.

"""
Authentication Service

Admins and cashiers are separate account tables. Both log in with email +
password; the login request names which kind of account it is for.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt

from ..extensions import db
from ..models import Admin, Cashier, Shop
from duka.time_utils import utcnow

ACTOR_TYPES = ("admin", "cashier")


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AccountError(Exception):
    """Raised when an account cannot be created (duplicate email, unknown shop)."""
    pass


def validate_password_strength(password: str) -> None:
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """Hash password using bcrypt. Password is validated for strength before hashing."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check of password against a bcrypt hash."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _email_taken(email: str) -> bool:
    return (
        db.session.query(Admin.id).filter_by(email=email).first() is not None
        or db.session.query(Cashier.id).filter_by(email=email).first() is not None
    )


def create_admin(name: str, email: str, password: str, *, rounds: int = 12) -> Admin:
    """
    Create an admin account.

    Raises AccountError if the email is already used by any account,
    PasswordValidationError if the password is too weak.
    """
    email = _normalize_email(email)
    if not name or not email:
        raise AccountError("Name and email are required")
    if _email_taken(email):
        raise AccountError("Email already exists")

    admin = Admin(name=name.strip(), email=email, password_hash=hash_password(password, rounds=rounds))
    db.session.add(admin)
    db.session.commit()
    return admin


def create_cashier(
    name: str,
    email: str,
    password: str,
    shop_id: int,
    *,
    phone: str = "",
    rounds: int = 12,
) -> Cashier:
    """
    Create a cashier bound to one shop.

    Raises AccountError if the shop doesn't exist or is inactive, or if the
    email is already used by any account.
    """
    email = _normalize_email(email)
    if not name or not email:
        raise AccountError("Name and email are required")

    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise AccountError("Shop not found")
    if not shop.is_active:
        raise AccountError("Shop is not active")

    if _email_taken(email):
        raise AccountError("Email already exists")

    cashier = Cashier(
        name=name.strip(),
        email=email,
        phone=phone or "",
        password_hash=hash_password(password, rounds=rounds),
        shop_id=shop.id,
        status="active",
    )
    db.session.add(cashier)
    db.session.commit()
    return cashier


def authenticate(actor_type: str, email: str, password: str) -> Admin | Cashier | None:
    """
    Authenticate an admin or a cashier with email and password.

    Returns the account if credentials are valid and the account is active,
    None otherwise. Updates last_login_at on success.
    """
    if actor_type not in ACTOR_TYPES:
        return None

    model = Admin if actor_type == "admin" else Cashier
    account = db.session.query(model).filter_by(email=_normalize_email(email)).first()
    if not account or not account.is_active:
        return None

    if actor_type == "cashier" and (account.shop is None or not account.shop.is_active):
        return None

    if not verify_password(password, account.password_hash):
        return None

    account.last_login_at = utcnow()
    db.session.commit()
    return account
