"""API endpoints for credit balances, history, transactions and transfers."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from meterline.api.context import ApiContext
from meterline.api.deps import Inject, get_context
from meterline.domains.aggregation.protocols import AggregationServiceProtocol
from meterline.domains.credits.protocols import CreditLedgerProtocol
from meterline.schemas.credit import (
    AggregatedCreditBalance,
    CreditTransaction,
    CreditTransactionRequest,
    CreditTransfer,
    CreditTransferRequest,
)
from meterline.schemas.scope import scope_from_ids

router = APIRouter()


@router.get("/balance", response_model=AggregatedCreditBalance)
async def get_credit_balance(
    ctx: ApiContext = Depends(get_context),
    aggregation: AggregationServiceProtocol = Inject(AggregationServiceProtocol),
) -> AggregatedCreditBalance:
    """Credit balances of every feature of the scope, with totals."""
    return await aggregation.get_credit_balance(ctx.scope)


@router.get("/history", response_model=list[CreditTransaction])
async def get_credit_history(
    feature_key: Optional[str] = Query(None),
    limit: int = Query(50, ge=1),
    ctx: ApiContext = Depends(get_context),
    aggregation: AggregationServiceProtocol = Inject(AggregationServiceProtocol),
) -> list[CreditTransaction]:
    """Credit transactions of the scope, newest first."""
    return await aggregation.get_credit_history(ctx.scope, feature_key=feature_key, limit=limit)


@router.post("/transactions", response_model=CreditTransaction)
async def apply_credit_transaction(
    request: CreditTransactionRequest,
    ctx: ApiContext = Depends(get_context),
    ledger: CreditLedgerProtocol = Inject(CreditLedgerProtocol),
) -> CreditTransaction:
    """Apply one credit transaction.

    Payment collaborators call this after external confirmation, using their
    own confirmation id as the idempotency key; a retried webhook replays the
    stored transaction instead of crediting twice.
    """
    transaction = await ledger.apply_transaction(
        ctx.scope,
        request.feature_key,
        request.type,
        request.amount,
        request.idempotency_key,
        expires_at=request.expires_at,
        description=request.description,
        reference=request.reference,
        metadata=request.metadata,
        currency=request.currency,
    )
    ctx.logger.info(
        f"Applied {request.type.value} of {request.amount} to {request.feature_key}"
    )
    return transaction


@router.post("/transfer", response_model=CreditTransfer)
async def transfer_credits(
    request: CreditTransferRequest,
    ctx: ApiContext = Depends(get_context),
    ledger: CreditLedgerProtocol = Inject(CreditLedgerProtocol),
) -> CreditTransfer:
    """Move credits from the request scope to another scope of the same agency."""
    to_scope = scope_from_ids(ctx.agency_id, request.to_sub_account_id)
    return await ledger.transfer(
        ctx.scope,
        to_scope,
        request.feature_key,
        request.amount,
        request.idempotency_key,
        description=request.description,
    )
