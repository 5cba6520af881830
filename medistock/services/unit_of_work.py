# FILE: medistock/services/unit_of_work.py
from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from medistock.core.config import settings
from medistock.services.errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# MySQL: lock wait timeout, deadlock
_RETRYABLE_MYSQL_CODES = {1205, 1213}


def _is_lock_conflict(e: OperationalError) -> bool:
    args = getattr(getattr(e, "orig", None), "args", None) or ()
    return bool(args) and args[0] in _RETRYABLE_MYSQL_CODES


def run_in_transaction(db: Session, fn: Callable[[], T], *, retries: Optional[int] = None) -> T:
    """
    Run fn() as one unit of work and commit it.

    Services only flush; this is where commit/rollback happens. A lost race
    (version mismatch, deadlock) rolls back and re-runs fn() up to
    `retries` times before surfacing ConflictError. Any other error rolls back
    and propagates untouched.
    """
    max_retries = settings.CONFLICT_RETRIES if retries is None else retries
    attempt = 0
    while True:
        try:
            result = fn()
            db.commit()
            return result
        except (StaleDataError, OperationalError) as e:
            db.rollback()
            if isinstance(e, OperationalError) and not _is_lock_conflict(e):
                raise
            attempt += 1
            if attempt > max_retries:
                logger.warning("Write conflict persisted after %s attempts: %s", attempt, e)
                raise ConflictError(
                    "The record was modified by another request. Please retry.") from e
            logger.info("Write conflict, retrying (attempt %s/%s)", attempt, max_retries)
        except Exception:
            db.rollback()
            raise
