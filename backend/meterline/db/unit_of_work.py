"""Unit of work for grouping writes into one transaction."""

from types import TracebackType
from typing import Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession


class UnitOfWork:
    """Commit-or-rollback boundary around a session.

    Nothing is committed unless ``commit()`` is called explicitly; leaving the
    block without committing, or with an exception, rolls everything back.

    Usage:
        async with UnitOfWork(db) as uow:
            db.add(row)
            await uow.commit()
    """

    def __init__(self, session: AsyncSession) -> None:
        """Bind the unit of work to a session."""
        self.session = session
        self._committed = False

    async def __aenter__(self) -> "UnitOfWork":
        """Start the unit of work."""
        self._committed = False
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        """Roll back unless the block committed cleanly."""
        if exc_type is not None or not self._committed:
            await self.rollback()

    async def commit(self) -> None:
        """Commit the transaction."""
        await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        """Roll back the transaction."""
        await self.session.rollback()

    async def flush(self) -> None:
        """Flush pending changes without committing."""
        await self.session.flush()

    async def refresh(self, instance: object) -> None:
        """Reload an instance from the database."""
        await self.session.refresh(instance)

    @property
    def committed(self) -> bool:
        """Whether ``commit()`` completed."""
        return self._committed
