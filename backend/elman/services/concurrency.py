# Overview: Transaction helpers shared by every write path (locking, retry, rollback).

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransientStoreError
from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Take the database write lock before the first read that feeds a decision.

    SQLite has no row locks, so writers serialize on BEGIN IMMEDIATE. Other
    dialects rely on lock_for_update() and the guarded single-statement updates.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation as one unit of work.

    - Any exception rolls the session back, so nothing partial is visible.
    - OperationalError (locks, deadlocks) and StaleDataError are retried with
      exponential backoff; when attempts run out, TransientStoreError is raised.
    - Everything else (domain errors included) propagates unchanged.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Giving up after %d attempts: %s", attempts, exc)
                raise TransientStoreError(
                    "The database is busy; please retry",
                    details={"attempts": attempts},
                ) from exc
            delay = backoff_base * (2 ** attempt)
            logger.warning("Transient database error (attempt %d/%d), retrying in %.2fs: %s",
                           attempt + 1, attempts, delay, exc)
            time.sleep(delay)
        except Exception:
            db.session.rollback()
            raise
