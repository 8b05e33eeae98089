# Overview: Service-layer operations for concurrency; transaction scoping, row locks, and retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import PersistenceError
from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a unit of work as one transaction, retrying on concurrency failures.

    - Any exception rolls the session back before propagating, so a failed
      unit of work never leaves partial writes pending in the session.
    - OperationalError (deadlocks, locks), StaleDataError (optimistic locking)
      and IntegrityError (unique-constraint races) are retried with
      exponential backoff; once retries are exhausted they surface as
      PersistenceError.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise PersistenceError(
                    "Transaction failed after retries",
                    details={"attempts": attempts, "error": exc.__class__.__name__},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
