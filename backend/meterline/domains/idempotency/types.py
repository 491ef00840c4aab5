"""Idempotency domain types and pure helpers."""

import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from meterline.schemas.credit import CreditTransactionType


class OperationKind(str, Enum):
    """Namespace for idempotency keys.

    The same caller key may be reused across kinds without colliding.
    """

    USAGE_RECORD = "usage.record"
    USAGE_CONSUME = "usage.consume"
    CREDIT_PURCHASE = "credit.purchase"
    CREDIT_DEDUCTION = "credit.deduction"
    CREDIT_REFUND = "credit.refund"
    CREDIT_BONUS = "credit.bonus"
    CREDIT_EXPIRY = "credit.expiry"
    CREDIT_TRANSFER = "credit.transfer"
    CREDIT_ADJUSTMENT = "credit.adjustment"

    @classmethod
    def for_credit(cls, tx_type: CreditTransactionType) -> "OperationKind":
        """Operation kind that guards a credit transaction of ``tx_type``."""
        return cls(f"credit.{tx_type.value.lower()}")


class IdempotencyStatus(str, Enum):
    """Lifecycle of an idempotency record."""

    IN_FLIGHT = "IN_FLIGHT"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class IdempotencyClaim:
    """Outcome of trying to claim a key.

    ``claimed`` is True when this unit of work now owns the key. Otherwise the
    remaining fields describe the record that already held it.
    """

    claimed: bool
    status: Optional[IdempotencyStatus] = None
    fingerprint: Optional[str] = None
    result: Optional[Any] = None


def fingerprint_request(**fields: Any) -> str:
    """Stable digest of the request fields that define an operation.

    Used to detect a key being reused for a different request.
    """
    payload = json.dumps(fields, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
