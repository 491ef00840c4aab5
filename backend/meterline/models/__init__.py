"""Models for the application."""

from ._base import Base
from .credit_position import CreditPosition
from .credit_transaction import CreditTransaction
from .entitlement import Entitlement
from .idempotency_record import IdempotencyRecord
from .usage_event import UsageEvent

__all__ = [
    "Base",
    "CreditPosition",
    "CreditTransaction",
    "Entitlement",
    "IdempotencyRecord",
    "UsageEvent",
]
