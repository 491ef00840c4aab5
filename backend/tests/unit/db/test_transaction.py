"""Unit tests for atomic units of work and conflict retry.

Uses FakeSessionFactory for the session side and hand-built DBAPIError
instances carrying a Postgres SQLSTATE for the error-translation side.
"""

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError

from meterline.core.exceptions import StorageFailureError
from meterline.db.fakes import FakeSessionFactory
from meterline.db.transaction import (
    LockConflictError,
    atomic,
    is_lock_conflict,
    retry_on_conflict,
    translate_db_error,
)


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"pg error {sqlstate}")
        self.sqlstate = sqlstate


def _db_error(sqlstate: str, cls=DBAPIError) -> DBAPIError:
    return cls("UPDATE credit_position ...", {}, _PgError(sqlstate))


class _Store:
    """Minimal snapshot store holding a list of rows."""

    def __init__(self):
        self.rows = []

    def snapshot(self):
        return list(self.rows)

    def restore(self, state):
        self.rows = list(state)


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


class TestTranslateDbError:
    @pytest.mark.parametrize("sqlstate", ["40001", "40P01", "55P03"])
    def test_conflict_sqlstates_become_lock_conflicts(self, sqlstate):
        exc = _db_error(sqlstate)

        assert is_lock_conflict(exc)
        translated = translate_db_error(exc)
        assert isinstance(translated, LockConflictError)
        assert translated.sqlstate == sqlstate

    def test_unique_violation_is_a_storage_failure(self):
        exc = _db_error("23505", cls=IntegrityError)

        assert not is_lock_conflict(exc)
        assert isinstance(translate_db_error(exc), StorageFailureError)


# ---------------------------------------------------------------------------
# atomic()
# ---------------------------------------------------------------------------


class TestAtomic:
    @pytest.mark.asyncio
    async def test_commits_on_success(self):
        store = _Store()
        sessions = FakeSessionFactory(store)

        async with atomic(sessions):
            store.rows.append("a")

        assert store.rows == ["a"]
        assert sessions.commits == 1

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self):
        store = _Store()
        sessions = FakeSessionFactory(store)

        with pytest.raises(ValueError):
            async with atomic(sessions):
                store.rows.append("a")
                raise ValueError("boom")

        assert store.rows == []
        assert sessions.rollbacks == 1

    @pytest.mark.asyncio
    async def test_translates_database_errors(self):
        sessions = FakeSessionFactory(_Store())

        with pytest.raises(LockConflictError):
            async with atomic(sessions):
                raise _db_error("55P03")

    @pytest.mark.asyncio
    async def test_failed_commit_leaves_nothing_behind(self):
        store = _Store()
        sessions = FakeSessionFactory(store)
        sessions.fail_next_commit(RuntimeError("connection lost"))

        with pytest.raises(RuntimeError):
            async with atomic(sessions):
                store.rows.append("a")

        assert store.rows == []


# ---------------------------------------------------------------------------
# retry_on_conflict
# ---------------------------------------------------------------------------


class TestRetryOnConflict:
    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        attempts = []

        @retry_on_conflict(max_attempts=3, wait_seconds=0)
        async def _unit():
            attempts.append(1)
            if len(attempts) < 3:
                raise LockConflictError(sqlstate="40P01")
            return "done"

        assert await _unit() == "done"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_reraises_last_conflict(self):
        @retry_on_conflict(max_attempts=2, wait_seconds=0)
        async def _unit():
            raise LockConflictError(sqlstate="55P03")

        with pytest.raises(LockConflictError):
            await _unit()

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        attempts = []

        @retry_on_conflict(max_attempts=3, wait_seconds=0)
        async def _unit():
            attempts.append(1)
            raise StorageFailureError("aborted")

        with pytest.raises(StorageFailureError):
            await _unit()
        assert len(attempts) == 1
