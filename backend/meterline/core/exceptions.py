"""Shared exceptions module."""

from typing import Optional

from pydantic import ValidationError


class MeterlineException(Exception):
    """Base exception for Meterline services."""

    pass


class InvalidRequestError(MeterlineException):
    """Exception raised when the caller's input cannot be accepted.

    Never retried automatically; the caller must fix the input.
    """

    def __init__(self, message: Optional[str] = "Invalid request"):
        """Create a new InvalidRequestError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class PermissionException(MeterlineException):
    """Exception raised when a caller may not act on the requested scope."""

    def __init__(
        self,
        message: Optional[str] = "Not allowed to perform this action on the requested scope",
    ):
        """Create a new PermissionException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class NotFoundException(MeterlineException):
    """Exception raised when an object is not found."""

    def __init__(self, message: Optional[str] = "Object not found"):
        """Create a new NotFoundException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class ConflictException(MeterlineException):
    """Exception raised when a write collided with a concurrent one.

    Retryable by the caller with backoff, using the same idempotency key.
    """

    def __init__(
        self,
        message: Optional[str] = "Conflicting concurrent operation",
        retry_after: float = 1.0,
    ):
        """Create a new ConflictException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.
            retry_after (float): Suggested seconds to wait before retrying.

        """
        self.message = message
        self.retry_after = retry_after
        super().__init__(self.message)


class StorageFailureError(MeterlineException):
    """Exception raised when the underlying store aborted a unit of work.

    Nothing is partially committed; retrying with the same idempotency key is safe.
    """

    def __init__(self, message: Optional[str] = "Storage operation failed"):
        """Create a new StorageFailureError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class InvalidStateError(Exception):
    """Exception raised when an object is in an invalid state.

    Used for business rejections: the request was well formed, but the current
    state of the ledger or plan does not permit it.
    """

    def __init__(self, message: Optional[str] = "Object is in an invalid state"):
        """Create a new InvalidStateError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


def unpack_validation_error(exc: ValidationError) -> dict:
    """Unpack a Pydantic validation error into a dictionary.

    Args:
    ----
        exc (ValidationError): The Pydantic validation error.

    Returns:
    -------
        dict: The dictionary representation of the validation error.

    """
    error_messages = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        message = error["msg"]
        error_messages.append({field: message})

    return {"errors": error_messages}
