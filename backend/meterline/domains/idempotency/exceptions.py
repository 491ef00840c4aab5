"""Idempotency domain exceptions."""

from typing import Optional

from meterline.core.exceptions import ConflictException, InvalidRequestError


class IdempotencyInFlightError(ConflictException):
    """Raised when another unit of work holds the key and has not finished."""

    def __init__(self, kind: str, idempotency_key: str, message: Optional[str] = None) -> None:
        """Initialize with the operation kind and the contested key."""
        self.kind = kind
        self.idempotency_key = idempotency_key
        super().__init__(
            message or f"Operation {kind} with key '{idempotency_key}' is still in progress"
        )


class IdempotencyKeyReusedError(InvalidRequestError):
    """Raised when a key is replayed with a request that differs from the first."""

    def __init__(self, kind: str, idempotency_key: str, message: Optional[str] = None) -> None:
        """Initialize with the operation kind and the reused key."""
        self.kind = kind
        self.idempotency_key = idempotency_key
        super().__init__(
            message
            or f"Idempotency key '{idempotency_key}' was already used for a different {kind} request"
        )
