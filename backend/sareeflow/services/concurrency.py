# Overview: Unit-of-work helpers; locking, bounded retry, and deadlines for composite writes.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError, DeadlineExceededError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Take the database write lock at the start of a unit of work.

    SQLite has no row locks, so a reserved lock (BEGIN IMMEDIATE) is taken
    up front; reads made afterwards in the same transaction cannot go stale.
    Other dialects rely on lock_for_update().
    """
    if db.engine.dialect.name != "sqlite":
        return
    conn = db.session.connection()
    dbapi_conn = conn.connection.dbapi_connection
    if not dbapi_conn.in_transaction:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def deadline_after(timeout: float | None) -> float | None:
    """Absolute monotonic deadline for a timeout in seconds (None = config default)."""
    if timeout is None:
        timeout = current_app.config.get("ORDER_TIMEOUT_SECONDS")
    if timeout is None:
        return None
    return time.monotonic() + timeout


def check_deadline(deadline: float | None) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise DeadlineExceededError("operation exceeded its deadline")


def run_with_retry(
    func,
    *,
    attempts: int | None = None,
    backoff_base: float = 0.05,
    deadline: float | None = None,
):
    """
    Execute a unit of work, rolling back on any failure.

    Retries on OperationalError (database locked, deadlocks) and StaleDataError
    (optimistic version conflicts). Once attempts are exhausted the conflict
    surfaces as ConflictError. Any other exception is re-raised after rollback,
    so a failed unit of work never leaves partial state in the session.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        check_deadline(deadline)
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning("Giving up after %d attempts: %s", attempts, exc)
                raise ConflictError("concurrent modification detected; please retry") from exc
            current_app.logger.info("Retrying after transient conflict (attempt %d): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except DeadlineExceededError:
            db.session.rollback()
            current_app.logger.warning("Unit of work exceeded its deadline; rolled back")
            raise
        except Exception:
            db.session.rollback()
            raise
    raise ConflictError("concurrent modification detected; please retry")
