"""Endpoints for scheduled credit jobs.

Called by an external scheduler (cron, Kubernetes CronJob). Both jobs are
safe to run repeatedly: every write they make is keyed for idempotency.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from meterline.api.deps import Inject, require_job_secret
from meterline.core.logging import logger
from meterline.domains.credits.protocols import (
    CreditExpirySweeperProtocol,
    RecurringCreditGranterProtocol,
)
from meterline.schemas.credit import CreditGrantResult, CreditSweepResult

router = APIRouter(dependencies=[Depends(require_job_secret)])


@router.post("/credits/expire", response_model=CreditSweepResult)
async def expire_credits(
    as_of: Optional[datetime] = Query(None, description="Defaults to now; never later than now"),
    sweeper: CreditExpirySweeperProtocol = Inject(CreditExpirySweeperProtocol),
) -> CreditSweepResult:
    """Convert every expired credit lot into an EXPIRY transaction."""
    result = await sweeper.sweep(as_of=as_of)
    logger.info(
        f"Expiry job checked {result.positions_checked} positions, "
        f"wrote {len(result.expired)} expiries"
    )
    return result


@router.post("/credits/grant", response_model=CreditGrantResult)
async def grant_recurring_credits(
    as_of: Optional[datetime] = Query(None),
    granter: RecurringCreditGranterProtocol = Inject(RecurringCreditGranterProtocol),
) -> CreditGrantResult:
    """Issue this period's recurring credit grants for every scope that has one."""
    result = await granter.grant_all(as_of=as_of)
    logger.info(f"Grant job issued {len(result.granted)} grants")
    return result
