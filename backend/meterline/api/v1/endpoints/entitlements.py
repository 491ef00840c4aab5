"""API endpoints for reading effective entitlements."""

from fastapi import APIRouter, Depends

from meterline.api.context import ApiContext
from meterline.api.deps import Inject, get_context
from meterline.domains.aggregation.protocols import AggregationServiceProtocol
from meterline.schemas.entitlement import EntitlementsResponse

router = APIRouter()


@router.get("/current", response_model=EntitlementsResponse)
async def get_current_entitlements(
    ctx: ApiContext = Depends(get_context),
    aggregation: AggregationServiceProtocol = Inject(AggregationServiceProtocol),
) -> EntitlementsResponse:
    """Effective entitlements of the scope, keyed by feature."""
    return await aggregation.get_entitlements(ctx.scope)
