"""Credit ledger schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from meterline.schemas.scope import Scope


class CreditTransactionType(str, Enum):
    """Credit transaction type enum.

    PURCHASE, BONUS and REFUND increase the balance; DEDUCTION and EXPIRY
    decrease it; TRANSFER and ADJUSTMENT carry an explicit sign.
    """

    PURCHASE = "PURCHASE"
    DEDUCTION = "DEDUCTION"
    REFUND = "REFUND"
    BONUS = "BONUS"
    EXPIRY = "EXPIRY"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"


class CreditTransaction(BaseModel):
    """Immutable ledger entry.

    ``amount`` is signed. ``balance_after`` is the running signed sum of every
    transaction for the same (scope, feature) up to and including this one.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    scope: Scope
    feature_key: str
    type: CreditTransactionType
    amount: Decimal
    balance_after: Decimal
    description: str = ""
    reference: Optional[str] = None
    idempotency_key: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class CreditBalance(BaseModel):
    """Derived balance for one feature in one scope."""

    feature_key: str
    balance: Decimal
    reserved: Decimal = Decimal("0")
    available: Decimal
    expires_at: Optional[datetime] = None
    currency: Optional[str] = None
    last_updated: datetime


class AggregatedCreditBalance(BaseModel):
    """Sum of every feature balance in a scope, in a single currency."""

    total: Decimal
    used: Decimal
    remaining: Decimal
    reserved: Decimal
    currency: str
    balances: list[CreditBalance] = Field(default_factory=list)


class CreditTransfer(BaseModel):
    """Both legs of a transfer between two scopes of one agency."""

    outgoing: CreditTransaction
    incoming: CreditTransaction


class CreditTransactionRequest(BaseModel):
    """Request schema for applying a credit transaction via API.

    Payment collaborators post here after external confirmation, keyed by their
    own confirmation id so webhook retries cannot double-credit.
    """

    feature_key: str = Field(..., min_length=1)
    type: CreditTransactionType
    amount: Decimal
    idempotency_key: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = None
    description: Optional[str] = None
    reference: Optional[str] = None
    currency: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class CreditTransferRequest(BaseModel):
    """Request schema for moving credits to another scope of the same agency."""

    feature_key: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    idempotency_key: str = Field(..., min_length=1)
    to_sub_account_id: Optional[str] = Field(
        None, description="Target sub-account; None targets the agency itself"
    )
    description: Optional[str] = None


class CreditSweepResult(BaseModel):
    """Outcome of an expiry sweep."""

    positions_checked: int = 0
    expired: list[CreditTransaction] = Field(default_factory=list)


class CreditGrantResult(BaseModel):
    """Outcome of a recurring grant run."""

    granted: list[CreditTransaction] = Field(default_factory=list)
    failed_scopes: list[str] = Field(default_factory=list)
