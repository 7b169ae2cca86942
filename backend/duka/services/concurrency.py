# Overview: Locking, unit-of-work and retry helpers shared by the stock and sale services.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

# Errors that mean "another writer got there first"; the whole unit of work is retried.
WRITE_CONFLICT_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock up front instead.
    """
    return query.with_for_update()


def begin_write_transaction(timeout_seconds: float | None = None) -> None:
    """
    Open the current session's transaction as a writer.

    SQLite: BEGIN IMMEDIATE, so two concurrent sales serialize on the
    database lock instead of both reading the same stock.
    PostgreSQL: bound every statement in the transaction by the timeout.
    """
    dialect = db.engine.dialect.name
    if dialect == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql" and timeout_seconds:
        db.session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work, retrying it on write conflicts.

    Retries on OperationalError (locks, deadlocks, busy database) and
    StaleDataError (version_id mismatch). The session is rolled back
    before every retry; func must rebuild all of its state.
    """
    for attempt in range(attempts):
        try:
            return func()
        except WRITE_CONFLICT_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            logger.warning("Write conflict (%s), retrying in %.2fs", exc.__class__.__name__, delay)
            time.sleep(delay)

