# Overview: Transaction helpers shared by ledger and role writes.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for counter mutations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version column
    (StaleDataError on flush) is what catches a lost update.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute func as one unit of work and commit nothing on failure.

    func is expected to commit on success. Any exception rolls the session
    back. OperationalError (locks, deadlocks) and StaleDataError (version
    conflicts) are retried with exponential backoff; business errors are
    raised immediately.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency conflict (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
