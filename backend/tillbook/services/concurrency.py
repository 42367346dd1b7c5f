# Overview: Transaction helpers: row locks, retry on transient storage errors, integrity translation.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import IntegrityViolationError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). `func` must redo its own work: the
    session is rolled back before each retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Transient storage error (attempt %d/%d): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def commit_or_conflict(message: str = "Integrity constraint violated") -> None:
    """
    Commit the current session.

    IntegrityError rolls back and is re-raised as IntegrityViolationError
    (HTTP 409). The audit rows written during flush are rolled back with it.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.info("Integrity violation on commit: %s", exc.orig)
        raise IntegrityViolationError(message) from exc


def flush_or_conflict(message: str = "Integrity constraint violated") -> None:
    """Flush without committing; IntegrityError becomes IntegrityViolationError."""
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise IntegrityViolationError(message) from exc
