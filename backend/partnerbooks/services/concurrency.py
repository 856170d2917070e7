# Overview: Service-layer helpers for concurrency; row locks and retry of atomic units.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import AtomicityFailure
from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the version_id columns on Partner/CostEntry/Sale/Transaction
    provide the compare-and-swap instead.
    """
    return query.with_for_update()


def _retry_settings(attempts, backoff_base):
    if has_app_context():
        if attempts is None:
            attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
        if backoff_base is None:
            backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)
    return max(1, int(attempts or 3)), float(0.1 if backoff_base is None else backoff_base)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation as one atomic unit, retrying on concurrency failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic locking conflicts). The session is rolled back on EVERY
    failure so nothing from a failed attempt survives.

    Raises:
        AtomicityFailure: retries exhausted; nothing was committed.
        Any other exception from func, after rollback.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if has_app_context():
                    current_app.logger.error(
                        "Atomic unit failed after %d attempts: %s", attempts, exc.__class__.__name__
                    )
                raise AtomicityFailure(
                    "The operation could not be completed due to a concurrent update. Please retry.",
                    details={"attempts": attempts},
                ) from exc
            if has_app_context():
                current_app.logger.warning(
                    "Retrying atomic unit (attempt %d/%d) after %s",
                    attempt + 1, attempts, exc.__class__.__name__,
                )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
