"""Fake session and session factory for testing.

Fake repositories keep their rows in memory and ignore the session they are
handed. Transactional behaviour comes from the factory instead: sessions are
handed out one at a time, and every registered store is snapshotted when a
session opens so that ``rollback()`` can put it back.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Protocol


class SnapshotStore(Protocol):
    """A fake store whose state can be captured and restored."""

    def snapshot(self) -> Any:
        """Return a deep copy of the current state."""
        ...

    def restore(self, state: Any) -> None:
        """Replace the current state with a previous snapshot."""
        ...


class FakeSession:
    """Test stand-in for ``AsyncSession``.

    Usage:
        factory = FakeSessionFactory(usage_repo, credit_repo)
        async with factory() as db:
            ...
        assert factory.commits == 1
    """

    def __init__(self, factory: "FakeSessionFactory") -> None:
        """Capture the committed state of every registered store."""
        self._factory = factory
        self._snapshots = [(store, store.snapshot()) for store in factory.stores]

    def add(self, instance: object) -> None:
        """No-op; fake repositories write to their own stores."""

    async def flush(self) -> None:
        """No-op flush."""

    async def refresh(self, instance: object) -> None:
        """No-op refresh."""

    async def commit(self) -> None:
        """Make the current store state the new rollback point."""
        if self._factory.commit_failures:
            raise self._factory.commit_failures.pop(0)
        self._snapshots = [(store, store.snapshot()) for store in self._factory.stores]
        self._factory.commits += 1

    async def rollback(self) -> None:
        """Restore every store to the last committed state."""
        for store, state in self._snapshots:
            store.restore(state)
        self._factory.rollbacks += 1

    async def close(self) -> None:
        """No-op close."""


class FakeSessionFactory:
    """Session factory that serializes fake transactions.

    Holding an ``asyncio.Lock`` for the lifetime of each session plays the role
    of the position row lock: concurrent writers queue instead of interleaving.
    Sessions must not be nested, the lock is not reentrant.
    """

    def __init__(self, *stores: SnapshotStore) -> None:
        """Register the stores that take part in rollback."""
        self.stores: list[SnapshotStore] = list(stores)
        self.commits = 0
        self.rollbacks = 0
        self.sessions_opened = 0
        self.commit_failures: list[BaseException] = []
        self._lock = asyncio.Lock()

    def register(self, *stores: SnapshotStore) -> None:
        """Add more stores after construction."""
        self.stores.extend(stores)

    def fail_next_commit(self, exc: BaseException, times: int = 1) -> None:
        """Make the next ``times`` commits raise ``exc``."""
        self.commit_failures.extend([exc] * times)

    @asynccontextmanager
    async def __call__(self) -> AsyncGenerator[FakeSession, None]:
        """Open a serialized fake session."""
        async with self._lock:
            self.sessions_opened += 1
            session = FakeSession(self)
            try:
                yield session
            finally:
                await session.close()
