"""Usage domain exceptions."""

from typing import Optional

from meterline.core.exceptions import InvalidStateError
from meterline.schemas.entitlement import EntitlementCheck


class UsageLimitExceededError(InvalidStateError):
    """Raised when an action is denied by its entitlement.

    Carries the full check so callers can show remaining quota.
    """

    def __init__(
        self,
        feature_key: str,
        check: EntitlementCheck,
        message: Optional[str] = None,
    ) -> None:
        """Initialize with the feature key and the denying check."""
        if message is None:
            if check.reason == "over_limit":
                message = (
                    f"Usage limit exceeded for {feature_key}: "
                    f"{check.current_usage}/{check.limit}"
                )
            else:
                message = f"Action on {feature_key} not allowed: {check.reason}"
        self.feature_key = feature_key
        self.check = check
        super().__init__(message)
