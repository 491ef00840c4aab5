"""Dependencies that are used in the API endpoints."""

import hmac
import uuid
from typing import Optional, get_type_hints

from fastapi import Depends, Header, Request

from meterline.api.context import ApiContext
from meterline.core import container as container_mod
from meterline.core.config import settings
from meterline.core.container import Container
from meterline.core.exceptions import PermissionException
from meterline.core.logging import logger
from meterline.schemas.scope import Scope, scope_from_ids


async def get_scope(
    x_agency_id: str = Header(..., alias="X-Agency-ID", min_length=1),
    x_sub_account_id: Optional[str] = Header(None, alias="X-Sub-Account-ID"),
) -> Scope:
    """Build the request scope from the identity headers.

    The auth layer in front of this service has already verified that the
    caller may act for these identifiers; here they are only shaped into a
    scope. An empty sub-account header means the agency itself.
    """
    return scope_from_ids(x_agency_id, x_sub_account_id or None)


async def get_context(
    request: Request,
    scope: Scope = Depends(get_scope),
) -> ApiContext:
    """Create the API context for the request.

    Args:
    ----
        request (Request): The FastAPI request object.
        scope (Scope): Scope resolved from the identity headers.

    Returns:
    -------
        ApiContext: Scope, request id and a logger bound to both.
    """
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    ctx = ApiContext(
        scope=scope,
        request_id=request_id,
        logger=logger.with_context(
            request_id=request_id, scope=scope.scope_key, context_base="api"
        ),
    )
    request.state.api_context = ctx
    return ctx


async def require_job_secret(
    x_job_secret: Optional[str] = Header(None, alias="X-Job-Secret"),
) -> None:
    """Guard the scheduled job endpoints with a shared secret.

    A no-op when ``JOBS_SECRET`` is not configured (local development).
    """
    expected = settings.JOBS_SECRET
    if not expected:
        return
    if not x_job_secret or not hmac.compare_digest(x_job_secret, expected):
        raise PermissionException("Missing or invalid job secret")


# ---------------------------------------------------------------------------
# DI Container
# ---------------------------------------------------------------------------


def get_container() -> Container:
    """Get the DI container. Initialized at startup."""
    c = container_mod.container
    if c is None:
        raise RuntimeError("Container not initialized. Call initialize_container() first.")
    return c


# ---------------------------------------------------------------------------
# Protocol Injection
# ---------------------------------------------------------------------------

# Cache of protocol_type -> Container field name, built once at first call.
_INJECT_CACHE: dict[type, str] = {}


def _resolve_field_name(protocol_type: type) -> str:
    """Find which Container field matches the given protocol type.

    Uses get_type_hints() to introspect the Container dataclass.
    Result is cached so the lookup happens at most once per protocol type.
    """
    if not _INJECT_CACHE:
        for name, hint in get_type_hints(Container).items():
            _INJECT_CACHE[hint] = name

    field_name = _INJECT_CACHE.get(protocol_type)
    if field_name is None:
        available = list(_INJECT_CACHE.values())
        raise TypeError(
            f"No binding for {protocol_type.__name__} in Container. Available fields: {available}"
        )
    return field_name


def Inject(protocol_type: type):  # noqa: N802 - uppercase to match FastAPI convention
    """Resolve a protocol implementation from the DI container.

    Works like ``Depends()`` but looks up the implementation by protocol type
    instead of requiring the caller to know about the Container internals.

    Usage in FastAPI endpoints::

        from meterline.api.deps import Inject
        from meterline.domains.credits.protocols import CreditLedgerProtocol


        @router.get("/balance")
        async def balance(
            ledger: CreditLedgerProtocol = Inject(CreditLedgerProtocol),
        ):
            ...
    """
    field_name = _resolve_field_name(protocol_type)

    def _resolve(c: Container = Depends(get_container)):
        return getattr(c, field_name)

    return Depends(_resolve)
