# Overview: Transaction scope, row locking and retry helpers shared by every mutating service.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .notification_service import discard_pending, dispatch_pending


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() takes the
    database write lock up front instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the write transaction.

    On SQLite, BEGIN IMMEDIATE takes the reserved lock before the first read
    so two writers cannot both read and then race to write. Other backends
    rely on row locks and conditional updates.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
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
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func` as one unit of work: all of its writes commit together or not at all.

    Any exception rolls the session back and drops queued notifications.
    Notifications are dispatched only after a successful commit.
    """
    def _op():
        try:
            begin_write()
            result = func()
            db.session.commit()
        except Exception:
            db.session.rollback()
            discard_pending()
            raise
        return result

    result = run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
    dispatch_pending()
    return result
