# Overview: Transaction coordinator for ledger operations; atomic commit with optimistic-concurrency retry.

from __future__ import annotations

import time
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db
from .lifecycle_service import LedgerOperation, OperationState

T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Version columns still catch the conflict at flush time.
    """
    return query.with_for_update()


def _retry_settings(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)
    return max(1, int(attempts)), float(backoff_base)


def run_with_retry(func: Callable[[], T], *, attempts: int | None = None, backoff_base: float | None = None) -> T:
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Exhausting the attempts raises
    ConflictError; the session is rolled back before every retry.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConflictError(
                    f"Concurrent modification persisted after {attempts} attempts"
                ) from exc
            current_app.logger.warning(
                "Concurrent modification detected (attempt %s/%s): %s",
                attempt + 1, attempts, exc,
            )
            time.sleep(backoff_base * (2 ** attempt))
    raise ConflictError("Concurrent modification could not be resolved")


def execute_atomically(
    name: str,
    work: Callable[[LedgerOperation], T],
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
) -> T:
    """
    Run one ledger operation as a single all-or-nothing DB transaction.

    `work(op)` performs its reads, advances op to VALIDATING, then stages its
    writes on db.session. This function commits them together. Any exception
    rolls the whole session back and marks the attempt ABORTED, so readers
    see either the pre- or the post-state, never an intermediate one.

    Optimistic-concurrency failures (version_id mismatch at flush, DB locks)
    restart the operation from its reads; domain errors propagate unchanged.
    """
    def _attempt() -> T:
        op = LedgerOperation(name)
        try:
            result = work(op)
            if op.state == OperationState.PLANNING:
                op.advance(OperationState.VALIDATING)
            op.advance(OperationState.COMMITTING)
            db.session.commit()
            op.advance(OperationState.COMMITTED)
            return result
        except Exception:
            db.session.rollback()
            op.abort()
            raise

    return run_with_retry(_attempt, attempts=attempts, backoff_base=backoff_base)
