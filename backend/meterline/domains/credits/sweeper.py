"""Scheduled write-off of expired credit lots."""

from datetime import datetime
from typing import Callable, Optional

from meterline.core.exceptions import ConflictException
from meterline.core.logging import logger
from meterline.db.session import SessionFactory, get_db_context
from meterline.domains.credits.protocols import (
    CreditExpirySweeperProtocol,
    CreditLedgerProtocol,
    CreditRepositoryProtocol,
)
from meterline.domains.usage.types import as_utc
from meterline.models._base import utc_now
from meterline.schemas.credit import CreditSweepResult, CreditTransaction


class CreditExpirySweeper(CreditExpirySweeperProtocol):
    """Finds positions with a due expiry and writes their lots off."""

    def __init__(
        self,
        credit_repo: CreditRepositoryProtocol,
        credit_ledger: CreditLedgerProtocol,
        session_factory: SessionFactory = get_db_context,
        clock: Callable[[], datetime] = utc_now,
        batch_size: int = 500,
    ) -> None:
        """Initialize the sweeper with the position store and the ledger."""
        self._repo = credit_repo
        self._ledger = credit_ledger
        self._session_factory = session_factory
        self._clock = clock
        self._batch_size = batch_size

    async def sweep(self, as_of: Optional[datetime] = None) -> CreditSweepResult:
        """Expire every due position.

        A position that stays contended after the ledger's own retries is left
        for the next sweep; its ``next_expiry_at`` is still due.
        """
        moment = as_utc(as_of or self._clock())
        async with self._session_factory() as db:
            due = await self._repo.list_due_positions(db, as_of=moment, limit=self._batch_size)

        expired: list[CreditTransaction] = []
        for position in due:
            try:
                expired.extend(
                    await self._ledger.expire_due(position.scope, position.feature_key, moment)
                )
            except ConflictException as exc:
                logger.with_context(
                    scope=position.scope.scope_key, feature_key=position.feature_key
                ).warning(f"Skipping contended position during expiry sweep: {exc}")

        logger.info(f"Expiry sweep checked {len(due)} positions, wrote {len(expired)} expiries")
        return CreditSweepResult(positions_checked=len(due), expired=expired)
