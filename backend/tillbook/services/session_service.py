# Overview: Bearer session tokens: issue, resolve to an Identity, revoke, clean up.

"""
Session Token Management Service with Multi-Tenant Support

WHY: Every request must be attributed to exactly one identity. The bearer
token is the only input; user, tenant and role are resolved from the
database on each request and never trusted from the client.

MULTI-TENANT: Sessions capture tenant_id at creation time. A session is
only valid while that tenant is still the user's tenant and the tenant is
active or on trial. Suspended or expired tenants behave exactly like an
invalid token.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute and idle timeouts (SESSION_ABSOLUTE_TIMEOUT_HOURS / SESSION_IDLE_TIMEOUT_HOURS)
- Revocable on logout, password change or security events
- Tracks client IP and user agent
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, Tenant, User
from ..permissions import Identity
from tillbook.time_utils import utcnow

logger = logging.getLogger(__name__)

CLEANUP_RETENTION_DAYS = 30


@dataclass
class SessionContext:
    """
    Resolved request context returned by validate_session.

    identity is the value handed to services; user and session are kept
    for routes that need to report on them (/api/auth/me, logout).
    """
    user: User
    session: SessionToken
    identity: Identity

    @property
    def tenant_id(self) -> int | None:
        return self.identity.tenant_id


def _absolute_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24))


def _idle_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_IDLE_TIMEOUT_HOURS", 2))


def generate_token() -> str:
    """64-character hex token (32 bytes of entropy). Sent to the client, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    user: User,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Create new session token for user with tenant context.

    Returns (session_record, plaintext_token).

    Raises ValueError if the user's tenant cannot be served.
    """
    if user.tenant_id is not None:
        tenant = db.session.get(Tenant, user.tenant_id)
        if not tenant or not tenant.is_serviceable:
            raise ValueError("Tenant is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        tenant_id=user.tenant_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_timeout(),
        user_agent=(user_agent or "")[:512] or None,
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
    Resolve a bearer token to a SessionContext.

    Returns None if:
    - Token is unknown, expired, idle too long, or revoked
    - User account is deactivated
    - User's tenant changed since login
    - Tenant is not active/trial

    Updates last_used_at on success.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > _idle_timeout():
        _revoke(session, "Idle timeout")
        return None

    user = session.user

    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    # MULTI-TENANT: the tenant captured at login must still be the user's tenant
    if session.tenant_id != user.tenant_id:
        _revoke(session, "Tenant membership changed")
        return None

    if user.tenant_id is not None:
        tenant = db.session.get(Tenant, user.tenant_id)
        if not tenant or not tenant.is_serviceable:
            logger.info("Rejected session for user %s: tenant %s not serviceable", user.id, user.tenant_id)
            return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session, identity=Identity.for_user(user))


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke one session token. Returns False if it was not active."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions", *, commit: bool = True) -> int:
    """
    Revoke all active sessions for a user.

    Returns count of sessions revoked.
    """
    now = utcnow()

    count = db.session.query(SessionToken).filter_by(
        user_id=user_id,
        is_revoked=False
    ).update(
        {"is_revoked": True, "revoked_at": now, "revoked_reason": reason},
        synchronize_session="fetch",
    )

    if commit:
        db.session.commit()
    return count


def cleanup_expired_sessions() -> int:
    """
    Delete expired and revoked sessions older than 30 days.

    Returns count of sessions deleted.
    """
    now = utcnow()
    cutoff = now - timedelta(days=CLEANUP_RETENTION_DAYS)

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True)
        ),
        SessionToken.created_at < cutoff
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
