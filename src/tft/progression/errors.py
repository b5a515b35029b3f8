"""Progression error taxonomy.

Each error carries a stable ``code``, the HTTP status it maps to, and whether
the caller may retry the whole operation (``transient``).
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError


class ProgressionError(Exception):
    """Base class for every error the progression engine surfaces."""

    code = "PROGRESSION_ERROR"
    status_code = 500
    transient = False


class AccountNotFound(ProgressionError):
    """No progression record exists for the account."""

    code = "ACCOUNT_NOT_FOUND"
    status_code = 404

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class InvalidInput(ProgressionError, ValueError):
    """Rejected before any write: negative points, malformed stat deltas, bad paging."""

    code = "INVALID_INPUT"
    status_code = 400


class Contention(ProgressionError):
    """Bounded optimistic retries were exhausted."""

    code = "CONTENTION"
    status_code = 409
    transient = True

    def __init__(self, account_id: str, attempts: int) -> None:
        super().__init__(f"Gave up after {attempts} conflicting attempts for account {account_id}")
        self.account_id = account_id
        self.attempts = attempts


class ProgressionTimeout(ProgressionError, TimeoutError):
    """The ledger write did not finish within its deadline.

    Expiry before the commit starts leaves the record untouched. Expiry while
    the commit is in flight leaves the outcome unknown, so callers retry with
    the same ``event_id`` to apply the completion at most once.
    """

    code = "TIMEOUT"
    status_code = 504
    transient = True


class StoreUnavailable(ProgressionError):
    """The durable store could not be reached."""

    code = "STORE_UNAVAILABLE"
    status_code = 503
    transient = True


# SQLSTATEs for serialization failure and deadlock
_CONFLICT_SQLSTATES = {"40001", "40P01"}
_CONFLICT_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def is_write_conflict(exc: DBAPIError) -> bool:
    """Whether a driver error means another writer won, so a fresh attempt may succeed."""
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(text in message for text in _CONFLICT_MESSAGES)


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate connectivity failures from the database driver into StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError, OSError) as exc:
        raise StoreUnavailable(f"Store unavailable: {exc}") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise StoreUnavailable(f"Store connection lost: {exc}") from exc
        raise
