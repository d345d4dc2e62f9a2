# Overview: Transaction helpers for row locking and bounded retry of transient conflicts.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Conflict, RetryableConflict
from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError, RetryableConflict)


def begin_write_transaction() -> None:
    """
    Take the write lock up front.

    SQLite ignores SELECT ... FOR UPDATE, so BEGIN IMMEDIATE serializes
    writers instead. Other backends rely on lock_for_update().
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None,
                   label: str = "operation"):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Any exception rolls the session back before it propagates, so a failed
    attempt never leaves partial writes behind. OperationalError (locks,
    timeouts), StaleDataError (optimistic locking) and RetryableConflict
    (lost conditional update) are retried with exponential backoff; once
    attempts are exhausted they surface as Conflict.
    """
    if attempts is None:
        attempts = current_app.config.get("SALE_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("SALE_RETRY_BACKOFF_SECONDS", 0.05)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "%s failed after %d attempts: %s", label, attempts, exc.__class__.__name__
                )
                raise Conflict(
                    "Concurrent update conflict, please retry",
                    details={"attempts": attempts},
                ) from exc
            current_app.logger.info(
                "%s hit a transient conflict (%s), retrying (%d/%d)",
                label, exc.__class__.__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise Conflict("Concurrent update conflict, please retry")

