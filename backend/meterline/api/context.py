"""HTTP API request context.

Carries the already-resolved tenant scope, the request id and a logger bound
to both. Only the API layer creates these via deps.get_context().
"""

from dataclasses import dataclass

from meterline.core.logging import ContextualLogger
from meterline.schemas.scope import Scope


@dataclass
class ApiContext:
    """Per-request context injected into endpoints via Depends()."""

    scope: Scope
    request_id: str
    logger: ContextualLogger

    @property
    def agency_id(self) -> str:
        """Agency that owns the request scope."""
        return self.scope.agency_id

    def __str__(self) -> str:
        """Compact representation for log lines."""
        return f"ApiContext(scope={self.scope.scope_key}, request_id={self.request_id})"
