# Overview: Transaction boundary and locking helpers for the sale engine.

from __future__ import annotations

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ValidationError
from .errors import ConcurrentModificationError, PermissionDeniedError, SaleError


# Errors that already describe the failure precisely; re-raised unchanged.
_TYPED_ERRORS = (SaleError, ValidationError, PermissionDeniedError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Lost updates on SQLite are still caught by version_id_col checks.
    """
    return query.with_for_update()


def run_in_transaction(func, *, failure_cls: type[SaleError] | None = None):
    """
    Run func as one logical unit: commit on success, roll back on any error.

    Nothing is retried. Optimistic-lock failures (StaleDataError) and
    database lock errors become ConcurrentModificationError. When
    failure_cls is given, any other unexpected exception is wrapped in it
    so callers see a single failure type for the unit.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except _TYPED_ERRORS:
        db.session.rollback()
        raise
    except StaleDataError as exc:
        db.session.rollback()
        raise ConcurrentModificationError(
            "Record was modified by another session; reload and try again",
            details={"cause": str(exc)},
        ) from exc
    except OperationalError as exc:
        db.session.rollback()
        if "locked" in str(exc).lower() or "deadlock" in str(exc).lower():
            raise ConcurrentModificationError(
                "Record is busy in another session; reload and try again",
                details={"cause": str(exc.orig) if exc.orig else str(exc)},
            ) from exc
        if failure_cls is not None:
            raise failure_cls("Operation failed; nothing was saved", details={"cause": str(exc)}) from exc
        raise
    except Exception as exc:
        db.session.rollback()
        if failure_cls is not None:
            raise failure_cls("Operation failed; nothing was saved", details={"cause": str(exc)}) from exc
        raise


def check_version(record, expected_version: int | None, label: str = "Sale") -> None:
    """Reject a write against a record the caller no longer has the current state of."""
    if expected_version is None:
        return
    if int(expected_version) != record.version_id:
        raise ConcurrentModificationError(
            f"{label} {record.id} was modified by another session; reload and try again",
            details={"expected_version": int(expected_version), "current_version": record.version_id},
        )
