"""Main module of the FastAPI application.

This module sets up the FastAPI application, the middleware that logs
requests and unhandled exceptions, and the domain exception handlers.
"""

import os
import subprocess
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from meterline.api.middleware import (
    add_request_id,
    conflict_exception_handler,
    exception_logging_middleware,
    insufficient_balance_exception_handler,
    invalid_request_exception_handler,
    invalid_state_exception_handler,
    log_requests,
    meterline_exception_handler,
    not_found_exception_handler,
    permission_exception_handler,
    storage_failure_exception_handler,
    usage_limit_exceeded_exception_handler,
    validation_exception_handler,
)
from meterline.api.v1.api import api_router
from meterline.core.config import settings
from meterline.core.exceptions import (
    ConflictException,
    InvalidRequestError,
    InvalidStateError,
    MeterlineException,
    NotFoundException,
    PermissionException,
    StorageFailureError,
)
from meterline.core.logging import logger
from meterline.domains.credits.exceptions import InsufficientBalanceError
from meterline.domains.usage.exceptions import UsageLimitExceededError


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events.

    Initializes the DI container and optionally runs alembic migrations.
    """
    from meterline.core.container import initialize_container

    logger.info("Initializing dependency injection container...")
    initialize_container(settings)
    logger.info("Container initialized successfully")

    if settings.RUN_ALEMBIC_MIGRATIONS:
        logger.info("Running alembic migrations...")
        env = os.environ.copy()
        backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        env["PYTHONPATH"] = backend_dir
        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "heads"],
            check=True,
            cwd=backend_dir,
            env=env,
        )

    yield

    from meterline.db.session import async_engine

    await async_engine.dispose()


app = FastAPI(
    title="Meterline",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/v1")

# Request middleware
app.middleware("http")(add_request_id)
app.middleware("http")(log_requests)
app.middleware("http")(exception_logging_middleware)

# Handlers are matched on the exception's MRO, so subclasses with their own
# handler (402, 429) take precedence over their base class mapping.
app.exception_handler(RequestValidationError)(validation_exception_handler)
app.exception_handler(ValidationError)(validation_exception_handler)
app.exception_handler(InvalidRequestError)(invalid_request_exception_handler)
app.exception_handler(PermissionException)(permission_exception_handler)
app.exception_handler(NotFoundException)(not_found_exception_handler)
app.exception_handler(ConflictException)(conflict_exception_handler)
app.exception_handler(StorageFailureError)(storage_failure_exception_handler)
app.exception_handler(InsufficientBalanceError)(insufficient_balance_exception_handler)
app.exception_handler(UsageLimitExceededError)(usage_limit_exceeded_exception_handler)
app.exception_handler(InvalidStateError)(invalid_state_exception_handler)
app.exception_handler(MeterlineException)(meterline_exception_handler)
