# Overview: Service-layer operations for concurrency; transaction boundaries, row locks and bounded retry.

from __future__ import annotations

import logging
import time
from typing import Iterable

from flask import current_app, has_app_context
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import ConcurrencyConflict, IntegrityConflict

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 0.1


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() refreshes rows already in the identity map, so the
    values read after the lock is granted are the committed ones.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock up front instead.
    """
    return query.with_for_update().populate_existing()


def begin_write_transaction() -> None:
    """
    Open the write transaction for one logical operation.

    On SQLite this emits BEGIN IMMEDIATE so concurrent writers serialize on
    the database lock (bounded by the connection's busy timeout) instead of
    failing at commit time. Other engines rely on row locks.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_connection = db.session.connection().connection.dbapi_connection
    if not dbapi_connection.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def stock_lock_order(pairs: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    """
    Deterministic lock order for location stock rows: ascending (location_id, item_id).

    Every multi-row operation acquires its rows in this order so two
    operations touching overlapping rows can never wait on each other in a cycle.
    """
    return sorted(set(pairs))


def _retry_settings(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    if has_app_context():
        cfg = current_app.config
        if attempts is None:
            attempts = cfg.get("RETRY_ATTEMPTS", DEFAULT_ATTEMPTS)
        if backoff_base is None:
            backoff_base = cfg.get("RETRY_BACKOFF_BASE", DEFAULT_BACKOFF_BASE)
    return (
        max(int(attempts if attempts is not None else DEFAULT_ATTEMPTS), 1),
        float(backoff_base if backoff_base is not None else DEFAULT_BACKOFF_BASE),
    )


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one transactional operation, retrying on concurrency failures.

    - OperationalError (lock timeout, deadlock) and StaleDataError (version
      conflict) roll back and re-run func from scratch; after the last
      attempt the caller gets ConcurrencyConflict.
    - IntegrityError rolls back and surfaces as IntegrityConflict (not retried).
    - Any other exception rolls back and propagates unchanged.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflict(
                    "Operation could not acquire its locks; retry the request",
                    details={"attempts": attempts},
                ) from exc
            logger.warning(
                "Concurrency failure on attempt %s/%s, retrying: %s",
                attempt + 1,
                attempts,
                exc,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except IntegrityError as exc:
            db.session.rollback()
            raise IntegrityConflict(str(exc.orig)) from exc
        except Exception:
            db.session.rollback()
            raise
