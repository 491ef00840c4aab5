"""Middleware for the FastAPI application.

This module contains middleware that process requests and responses, and the
exception handlers that turn domain errors into HTTP status codes.
"""

import math
import time
import traceback
import uuid

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from meterline.core.config import Environment, settings
from meterline.core.exceptions import (
    ConflictException,
    InvalidRequestError,
    InvalidStateError,
    MeterlineException,
    NotFoundException,
    PermissionException,
    StorageFailureError,
    unpack_validation_error,
)
from meterline.core.logging import logger
from meterline.domains.credits.exceptions import InsufficientBalanceError
from meterline.domains.usage.exceptions import UsageLimitExceededError


async def add_request_id(request: Request, call_next: callable) -> Response:
    """Middleware to generate and add a request ID to the request for tracing.

    Honors an upstream ``X-Request-ID`` so traces line up across services.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


async def log_requests(request: Request, call_next: callable) -> Response:
    """Middleware to log incoming requests."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time
    logger.info(
        f"Handled request {request.method} {request.url.path} in {duration:.2f} seconds. "
        f"Response code: {response.status_code}"
    )
    return response


async def exception_logging_middleware(request: Request, call_next: callable) -> Response:
    """Middleware to log unhandled exceptions.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    try:
        return await call_next(request)
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}\n{traceback.format_exc()}")

        response_content = {
            "detail": f"Internal Server Error: {exc.__class__.__name__}: {str(exc)}"
        }
        if settings.ENVIRONMENT == Environment.LOCAL:
            response_content["trace"] = traceback.format_exc()

        return JSONResponse(status_code=500, content=response_content)


# Exception handlers
async def validation_exception_handler(
    request: Request, exc: RequestValidationError | ValidationError
) -> JSONResponse:
    """Exception handler for validation errors that occur during request processing.

    Returns:
    -------
        JSONResponse: A 422 Unprocessable Entity response whose ``errors`` list
            maps each failing location to its message, for example
            ``{"errors": [{"body.quantity": "Input should be greater than 0"}]}``.

    """
    error_messages = unpack_validation_error(exc)
    logger.warning(f"Validation error on {request.url.path}: {error_messages}")
    return JSONResponse(status_code=422, content=error_messages)


async def invalid_request_exception_handler(
    request: Request, exc: InvalidRequestError
) -> JSONResponse:
    """Exception handler for InvalidRequestError.

    Returns:
    -------
        JSONResponse: A 400 Bad Request status response that details the error message.

    """
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def permission_exception_handler(request: Request, exc: PermissionException) -> JSONResponse:
    """Exception handler for PermissionException.

    Returns:
    -------
        JSONResponse: A 403 Forbidden status response that details the error message.

    """
    return JSONResponse(status_code=403, content={"detail": str(exc)})


async def not_found_exception_handler(request: Request, exc: NotFoundException) -> JSONResponse:
    """Exception handler for NotFoundException.

    Returns:
    -------
        JSONResponse: A 404 Not Found status response that details the error message.

    """
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def conflict_exception_handler(request: Request, exc: ConflictException) -> JSONResponse:
    """Exception handler for ConflictException.

    The caller should retry with the same idempotency key after ``Retry-After``.
    """
    retry_after = max(1, math.ceil(exc.retry_after))
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc)},
        headers={"Retry-After": str(retry_after)},
    )


async def insufficient_balance_exception_handler(
    request: Request, exc: InsufficientBalanceError
) -> JSONResponse:
    """Exception handler for InsufficientBalanceError.

    Returns:
    -------
        JSONResponse: A 402 Payment Required response with the requested and
            available amounts.

    """
    return JSONResponse(
        status_code=402,
        content={
            "detail": str(exc),
            "feature_key": exc.feature_key,
            "requested": str(exc.requested),
            "available": str(exc.available),
        },
    )


async def usage_limit_exceeded_exception_handler(
    request: Request, exc: UsageLimitExceededError
) -> JSONResponse:
    """Exception handler for UsageLimitExceededError.

    Returns:
    -------
        JSONResponse: A 429 Too Many Requests response that carries the denying
            entitlement check, so clients can show the remaining quota.

    """
    return JSONResponse(
        status_code=429,
        content={
            "detail": str(exc),
            "feature_key": exc.feature_key,
            "check": exc.check.model_dump(mode="json"),
        },
    )


async def invalid_state_exception_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
    """Exception handler for InvalidStateError.

    Returns:
    -------
        JSONResponse: A 400 Bad Request status response that details the error message.

    """
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def storage_failure_exception_handler(
    request: Request, exc: StorageFailureError
) -> JSONResponse:
    """Exception handler for StorageFailureError.

    Nothing was committed, so the client may retry with the same idempotency key.
    """
    logger.error(f"Storage failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def meterline_exception_handler(request: Request, exc: MeterlineException) -> JSONResponse:
    """Fallback for MeterlineException types without a dedicated handler."""
    return JSONResponse(status_code=500, content={"detail": str(exc)})
