"""Atomic units of work and bounded retry for ledger writes.

Every mutation in the system runs inside ``atomic()``: one session, one
transaction, committed only if the block completes. Postgres lock conflicts
are translated into ``LockConflictError`` so that ``retry_on_conflict`` can
re-run the whole unit; every other database failure becomes
``StorageFailureError`` and is left to the caller.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from meterline.core.config import settings
from meterline.core.exceptions import ConflictException, MeterlineException, StorageFailureError
from meterline.core.logging import logger
from meterline.db.session import SessionFactory
from meterline.db.unit_of_work import UnitOfWork

# serialization_failure, deadlock_detected, lock_not_available
CONFLICT_SQLSTATES: frozenset[str] = frozenset({"40001", "40P01", "55P03"})


class LockConflictError(ConflictException):
    """Raised when a unit of work lost a race for a row lock or snapshot."""

    def __init__(self, sqlstate: Optional[str] = None, message: Optional[str] = None):
        """Create a new LockConflictError instance.

        Args:
        ----
            sqlstate (str, optional): The Postgres error code that triggered it.
            message (str, optional): The error message.

        """
        self.sqlstate = sqlstate
        super().__init__(
            message or f"Concurrent write conflict (sqlstate={sqlstate}); retry the request"
        )


def _sqlstate(exc: BaseException) -> Optional[str]:
    """Extract the Postgres SQLSTATE from a wrapped DBAPI error, if any."""
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode"):
            code = getattr(candidate, attr, None)
            if code:
                return str(code)
    return None


def is_lock_conflict(exc: BaseException) -> bool:
    """Whether ``exc`` is a database error that a retry can resolve."""
    return isinstance(exc, DBAPIError) and _sqlstate(exc) in CONFLICT_SQLSTATES


def translate_db_error(exc: SQLAlchemyError) -> MeterlineException:
    """Map a SQLAlchemy error onto the domain error taxonomy."""
    if is_lock_conflict(exc):
        return LockConflictError(sqlstate=_sqlstate(exc))
    return StorageFailureError(f"Storage operation failed: {exc.__class__.__name__}")


@asynccontextmanager
async def atomic(session_factory: SessionFactory) -> AsyncGenerator[AsyncSession, None]:
    """Run the block as one transaction on a fresh session.

    Commits when the block exits normally; rolls back on any exception,
    including cancellation.

    Example:
    -------
        async with atomic(get_db_context) as db:
            db.add(row)

    """
    async with session_factory() as db:
        try:
            async with UnitOfWork(db) as uow:
                yield db
                await uow.commit()
        except SQLAlchemyError as exc:
            raise translate_db_error(exc) from exc


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Lock conflict on attempt {retry_state.attempt_number}, retrying: {exc}",
    )


def retry_on_conflict(
    max_attempts: Optional[int] = None,
    wait_seconds: Optional[float] = None,
):
    """Decorator that re-runs an async unit of work on ``LockConflictError``.

    Bounded by ``LEDGER_TX_MAX_ATTEMPTS``; the last conflict is re-raised so the
    caller sees a retryable 409 rather than silent data loss.
    """
    attempts = max_attempts if max_attempts is not None else settings.LEDGER_TX_MAX_ATTEMPTS
    base = wait_seconds if wait_seconds is not None else settings.LEDGER_TX_RETRY_WAIT_SECONDS
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base, max=base * 8),
        retry=retry_if_exception_type(LockConflictError),
        before_sleep=_log_retry,
        reraise=True,
    )
