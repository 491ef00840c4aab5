"""API endpoints for checking, consuming and summarizing usage."""

from fastapi import APIRouter, Depends, Query

from meterline.api.context import ApiContext
from meterline.api.deps import Inject, get_context
from meterline.domains.aggregation.protocols import AggregationServiceProtocol
from meterline.schemas.entitlement import EntitlementCheck, EntitlementCheckRequest, UsagePeriod
from meterline.schemas.usage import ConsumeResult, RecordUsageRequest, UsageSummary

router = APIRouter()


@router.post("/check", response_model=EntitlementCheck)
async def check_entitlement(
    request: EntitlementCheckRequest,
    ctx: ApiContext = Depends(get_context),
    aggregation: AggregationServiceProtocol = Inject(AggregationServiceProtocol),
) -> EntitlementCheck:
    """Whether ``quantity`` more units of a feature would be allowed right now.

    Read-only; nothing is recorded. A denied check is returned with 200 and
    ``allowed: false``; only ``/consume`` turns a denial into an error.
    """
    return await aggregation.check_entitlement(
        ctx.scope, request.feature_key, quantity=request.quantity
    )


@router.post("/consume", response_model=ConsumeResult)
async def consume_usage(
    request: RecordUsageRequest,
    ctx: ApiContext = Depends(get_context),
    aggregation: AggregationServiceProtocol = Inject(AggregationServiceProtocol),
) -> ConsumeResult:
    """Check, record and (for credit-paid overage) debit, once per idempotency key.

    Raises UsageLimitExceededError (429) when the entitlement denies the action.
    """
    result = await aggregation.consume_usage(
        ctx.scope,
        request.feature_key,
        request.quantity,
        request.idempotency_key,
        action_key=request.action_key,
        metadata=request.metadata,
    )
    ctx.logger.debug(f"Consumed {request.feature_key} key='{request.idempotency_key}'")
    return result


@router.get("/summary", response_model=UsageSummary)
async def get_usage_summary(
    period: UsagePeriod = Query(UsagePeriod.MONTHLY),
    periods_back: int = Query(0, ge=0, description="0 is the current period"),
    ctx: ApiContext = Depends(get_context),
    aggregation: AggregationServiceProtocol = Inject(AggregationServiceProtocol),
) -> UsageSummary:
    """Usage of every metered feature of the scope in one calendar window."""
    return await aggregation.get_usage_summary(ctx.scope, period=period, periods_back=periods_back)
