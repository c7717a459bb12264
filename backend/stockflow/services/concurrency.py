# Overview: Unit-of-work and locking helpers shared by the workflow and ledger services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for read-modify-write paths.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version_id columns still
    catch lost updates there (StaleDataError -> retry).
    """
    return query.with_for_update()


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Run ``func`` as one unit of work.

    Commits when ``func`` returns. Any exception rolls the whole session back,
    so a failed operation never leaves partial writes. Lock timeouts, deadlocks
    and optimistic version conflicts are retried with exponential backoff;
    every other exception is re-raised after the rollback.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrency conflict, retrying (attempt %s of %s): %s",
                attempt + 1, attempts, exc,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
