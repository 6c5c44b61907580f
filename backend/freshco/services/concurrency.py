# Overview: Transaction boundaries and retry helpers for composite service operations.

"""
Every composite operation (GRN completion + stock credit, a transfer's
OUT/IN pairs, payment + invoice status recompute, order + SALE movements)
runs as ONE unit through run_atomic():

    def _op():
        ...  # reads, guards, writes; flush only, never commit
        return result
    return run_atomic(_op)

CONCURRENCY:
- Snapshot and document rows carry a SQLAlchemy version_id_col, so a writer
  acting on a stale row gets StaleDataError at flush/commit.
- lock_for_update() adds SELECT ... FOR UPDATE where the backend honours it.
- On a retryable failure the WHOLE unit is rolled back and re-run, so every
  guard (negative stock, outstanding PO quantity, invoice balance) is
  re-evaluated against fresh rows.
"""

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version columns still catch the race there.
    """
    return query.with_for_update()


def run_atomic(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Run func() and commit its writes as a single transaction.

    - Retryable failure: roll back, back off, re-run func from scratch.
    - Any other exception (including AppError guards): roll back, re-raise.
      Nothing func wrote before the failure is persisted.
    """
    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.info(
                "Retrying unit of work after %s (attempt %d/%d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
