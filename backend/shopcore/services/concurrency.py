# Overview: Transaction helpers shared by every mutating unit of work.

"""
Row locks and retry for units of work.

Every mutating service function wraps its transaction in a closure and hands
it to run_with_retry. The closure re-reads what it needs, takes its row
locks through lock_for_update and commits itself; on a lost race the session
is rolled back and the closure runs again from scratch.
"""

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


# Deadlocks / lock timeouts, and version_id_col mismatches on flush
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the rows the query returns.

    SQLite ignores the lock; there the version_id_col check on flush is what
    rejects the losing writer (StaleDataError, retried below).
    """
    return query.with_for_update()


def run_with_retry(unit_of_work, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Run unit_of_work, retrying when it loses a concurrency race.

    Domain errors (CommerceError and friends) propagate on the first raise;
    only RETRYABLE_ERRORS are retried, with exponential backoff.
    """
    if attempts is None:
        attempts = int(current_app.config.get("TX_RETRY_ATTEMPTS", 3))
    attempts = max(1, attempts)

    for attempt in range(1, attempts + 1):
        try:
            return unit_of_work()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                current_app.logger.error(
                    "Unit of work %s failed after %d attempts: %s",
                    getattr(unit_of_work, "__name__", "?"), attempts, type(exc).__name__,
                )
                raise
            current_app.logger.warning(
                "Retrying %s after %s (attempt %d/%d)",
                getattr(unit_of_work, "__name__", "?"), type(exc).__name__, attempt, attempts,
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
