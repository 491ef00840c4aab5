"""Credits domain exceptions."""

from decimal import Decimal
from typing import Iterable, Optional

from meterline.core.exceptions import InvalidStateError


class InsufficientBalanceError(InvalidStateError):
    """Raised when a debit exceeds what the position can cover.

    A business rejection, not a system fault: nothing was written.
    """

    def __init__(
        self,
        feature_key: str,
        requested: Decimal,
        available: Decimal,
        message: Optional[str] = None,
    ) -> None:
        """Initialize with the feature, the requested debit and what was available."""
        if message is None:
            message = (
                f"Insufficient credit balance for {feature_key}: "
                f"requested {requested}, available {available}"
            )
        self.feature_key = feature_key
        self.requested = requested
        self.available = available
        super().__init__(message)


class MixedCurrencyError(InvalidStateError):
    """Raised when balances in different currencies would be summed together."""

    def __init__(self, currencies: Iterable[str], message: Optional[str] = None) -> None:
        """Initialize with the conflicting currencies."""
        self.currencies = sorted(set(currencies))
        super().__init__(
            message or f"Credit balances use more than one currency: {', '.join(self.currencies)}"
        )
