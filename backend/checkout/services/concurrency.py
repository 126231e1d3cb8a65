# Overview: Locking and retry helpers shared by the settlement and refund services.

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    begin_immediate() covers SQLite.
    """
    return query.with_for_update()


def begin_immediate(session) -> None:
    """
    Take the SQLite write lock up front.

    Must be the first statement of a fresh transaction. Other dialects rely on
    lock_for_update instead, so this is a no-op there.
    """
    if session.get_bind().dialect.name == "sqlite":
        session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, session, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (database locked, deadlocks) and
    StaleDataError (optimistic locking conflicts). Business exceptions
    propagate on the first attempt.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.info("Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


@contextmanager
def immediate_transaction(session):
    """
    Serialize writers for the duration of the block.

    Commits when the block exits normally, rolls back and re-raises
    otherwise, so the SQLite write lock is always released.
    """
    begin_immediate(session)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
