# Overview: Failed-login tracking and temporary lockout per email.

"""
Login Throttling Service

WHY: Limit password guessing. After LOGIN_MAX_FAILED_ATTEMPTS failures for
one email within LOGIN_LOCKOUT_WINDOW_MINUTES, further logins for that email
are refused until the window has passed since the latest failure.

SECURITY FEATURES:
- Attempts are keyed by the normalized email, so unknown emails are
  throttled exactly like real ones
- A successful login starts a fresh count
- Attempts made while locked are refused without being recorded
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import LoginAttempt, User
from ..time_utils import utcnow
from .auth_service import normalize_email


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    failed_attempts: int
    max_attempts: int
    seconds_until_unlock: int | None = None

    @property
    def remaining_attempts(self) -> int:
        return max(self.max_attempts - self.failed_attempts, 0)


def _max_attempts() -> int:
    return current_app.config["LOGIN_MAX_FAILED_ATTEMPTS"]


def _window() -> timedelta:
    return timedelta(minutes=current_app.config["LOGIN_LOCKOUT_WINDOW_MINUTES"])


def _identifier(email: str) -> str:
    try:
        return normalize_email(email)
    except (AttributeError, TypeError, ValueError):
        return str(email or "").strip().lower()[:255]


def _counted_failures(identifier: str, now):
    """Failures inside the window and after the latest success."""
    since = now - _window()
    last_success = db.session.query(db.func.max(LoginAttempt.occurred_at)).filter(
        LoginAttempt.identifier == identifier,
        LoginAttempt.success.is_(True),
    ).scalar()
    if last_success is not None and last_success > since:
        since = last_success

    return db.session.query(LoginAttempt).filter(
        LoginAttempt.identifier == identifier,
        LoginAttempt.success.is_(False),
        LoginAttempt.occurred_at > since,
    )


def get_lockout_status(email: str, now=None) -> LockoutStatus:
    now = now or utcnow()
    identifier = _identifier(email)
    failures = _counted_failures(identifier, now)
    count = failures.count()
    max_attempts = _max_attempts()

    if count < max_attempts:
        return LockoutStatus(locked=False, failed_attempts=count, max_attempts=max_attempts)

    latest = failures.with_entities(db.func.max(LoginAttempt.occurred_at)).scalar()
    unlock_at = latest + _window()
    seconds = max(int((unlock_at - now).total_seconds()), 1)
    return LockoutStatus(
        locked=True,
        failed_attempts=count,
        max_attempts=max_attempts,
        seconds_until_unlock=seconds,
    )


def _record(email: str, success: bool, *, user_id=None, reason=None, ip_address=None, user_agent=None):
    attempt = LoginAttempt(
        identifier=_identifier(email),
        user_id=user_id,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        occurred_at=utcnow(),
    )
    db.session.add(attempt)
    db.session.commit()
    return attempt


def record_failed_attempt(
    email: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    reason: str = "Invalid credentials",
) -> LockoutStatus:
    """Record a failure and return the status it leaves the email in."""
    identifier = _identifier(email)
    user_id = db.session.query(User.id).filter(User.email == identifier).scalar()
    _record(
        identifier,
        False,
        user_id=user_id,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    status = get_lockout_status(identifier)
    if status.locked:
        logger.warning("Login locked for %s after %s failed attempts", identifier, status.failed_attempts)
    return status


def record_successful_login(user: User, ip_address: str | None = None, user_agent: str | None = None) -> None:
    _record(user.email, True, user_id=user.id, ip_address=ip_address, user_agent=user_agent)


def purge_attempts(older_than) -> int:
    """Maintenance: drop attempts recorded before `older_than`."""
    deleted = db.session.query(LoginAttempt).filter(
        LoginAttempt.occurred_at < older_than
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
