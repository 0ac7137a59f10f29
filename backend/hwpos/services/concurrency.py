# Overview: Transaction and row-locking helpers shared by every engine operation.

from __future__ import annotations

from contextlib import contextmanager

from flask import current_app

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def atomic():
    """
    Run a block as one database transaction.

    Commits when the block finishes, rolls back and re-raises on any error.
    Never retries: a failed operation leaves the ledger exactly as it was and
    the caller decides what to do next.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("Transaction rolled back: %s: %s", type(exc).__name__, exc)
        raise
