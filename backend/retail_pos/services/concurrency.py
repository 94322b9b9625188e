# Overview: Locking, retry and timeout helpers shared by transactional services.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def apply_transaction_timeout(seconds: float) -> None:
    """
    Bound lock waits for the current transaction.

    PostgreSQL gets SET LOCAL timeouts that expire with the transaction.
    SQLite relies on the connection busy timeout set at engine creation.
    """
    if db.engine.dialect.name != "postgresql":
        return
    millis = max(int(seconds * 1000), 1)
    db.session.execute(text(f"SET LOCAL lock_timeout = {millis}"))
    db.session.execute(text(f"SET LOCAL statement_timeout = {millis}"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before each
    retry so every attempt starts from a clean transaction.
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
