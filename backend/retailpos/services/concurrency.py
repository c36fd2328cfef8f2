# Overview: Service-layer helpers for locking and retrying contended database work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import CommitOutcomeUnknownError
from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Open the write transaction up front.

    SQLite has no row locks, so the whole database write lock is taken with
    BEGIN IMMEDIATE; concurrent writers wait on the busy timeout instead of
    deadlocking on a SHARED -> RESERVED upgrade.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def commit_write(**details) -> None:
    """
    Commit the current transaction once.

    Pending changes are flushed first, so lock errors while writing rows still
    reach run_with_retry as OperationalError. An OperationalError raised by
    the COMMIT itself leaves the outcome unknown; it is rolled back and
    surfaced as CommitOutcomeUnknownError, which run_with_retry does not retry.
    """
    db.session.flush()
    try:
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        current_app.logger.error("Commit outcome unknown %s: %s", details, exc)
        raise CommitOutcomeUnknownError(details=details) from exc


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default; callers can widen retry_on.
    The session is rolled back before every retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

