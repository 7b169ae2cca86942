# Overview: Bearer session tokens for admins and cashiers.

"""
Session Token Management Service

Tokens are cryptographically secure, hashed in database, and time-limited.
A validated session resolves to an Actor: either an AdminActor or a
CashierActor. Cashier actors always carry their shop; that shop is the one
their sales are recorded against.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- 2-hour idle timeout (SESSION_IDLE_TIMEOUT)
- Revocable on logout; sessions of deactivated accounts are revoked on use
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Union

from ..extensions import db
from ..models import Admin, Cashier, SessionToken
from duka.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass(frozen=True)
class AdminActor:
    id: int
    name: str
    email: str
    role: str = "admin"


@dataclass(frozen=True)
class CashierActor:
    id: int
    name: str
    email: str
    shop_id: int
    shop_name: str
    role: str = "cashier"


Actor = Union[AdminActor, CashierActor]


@dataclass
class SessionContext:
    actor: Actor
    session: SessionToken


def generate_token() -> str:
    """64-character hex string; the plaintext token is never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is sufficient here: tokens are high-entropy, unlike passwords."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def actor_for(account: Admin | Cashier) -> Actor:
    if isinstance(account, Admin):
        return AdminActor(id=account.id, name=account.name, email=account.email)
    return CashierActor(
        id=account.id,
        name=account.name,
        email=account.email,
        shop_id=account.shop_id,
        shop_name=account.shop.name if account.shop else f"Shop {account.shop_id}",
    )


def create_session(
    account: Admin | Cashier,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Create a session for an authenticated account.

    Returns (session_record, plaintext_token).
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        actor_type="admin" if isinstance(account, Admin) else "cashier",
        actor_id=account.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Validate a session token.

    Returns None if the token is invalid, expired, revoked, idle for too
    long, or belongs to an account that is no longer active. Updates
    last_used_at on success.
    """
    now = utcnow()
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        return None

    model = Admin if session.actor_type == "admin" else Cashier
    account = db.session.get(model, session.actor_id)
    if not account or not account.is_active:
        _revoke(session, "Account deactivated")
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(actor=actor_for(account), session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Returns True if a live session was revoked, False if none was found."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    return True
