# Overview: Service-layer helpers for concurrency; row locks and bounded retry.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConcurrencyConflictError, LedgerError

logger = logging.getLogger(__name__)

# OperationalError: deadlocks, "database is locked"
# StaleDataError: optimistic version_id_col conflict
# IntegrityError: racing inserts on a unique key (lazy wallet creation)
RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the version_id_col on the locked row catches the race instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a read-compute-write operation as one unit, retrying on conflicts.

    The whole of `func` is re-run on each attempt, so it must re-read every
    aggregate it validates against. Typed ledger errors roll the session back
    and propagate without retry. Exhausted retries raise
    ConcurrencyConflictError.
    """
    if attempts is None:
        attempts = int(current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3))
    if backoff_base is None:
        backoff_base = float(current_app.config.get("LEDGER_RETRY_BACKOFF", 0.05))
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except LedgerError:
            db.session.rollback()
            raise
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            logger.warning(
                "Ledger write conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            if attempt >= attempts - 1:
                raise ConcurrencyConflictError(
                    f"Operation conflicted with a concurrent update {attempts} times; try again later"
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
