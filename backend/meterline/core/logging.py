"""Logging for Meterline.

One module-level ``logger`` is configured on import. Services derive child
loggers carrying identity dimensions (scope, feature key, request id) with
``logger.with_context(...)``; the dimensions are rendered on every line and
exposed to handlers as ``record.context``.
"""

import logging
import sys
from typing import Any, MutableMapping

from meterline.core.config import settings

_LOGGER_NAME = "meterline"


class ContextualLogger(logging.LoggerAdapter):
    """Logger adapter that carries a dict of context dimensions."""

    def __init__(self, logger: logging.Logger, extra: dict[str, Any] | None = None) -> None:
        """Wrap ``logger`` with the given context dimensions."""
        super().__init__(logger, dict(extra or {}))

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        """Attach context to the record and prefix the message with it."""
        extra = dict(kwargs.pop("extra", None) or {})
        extra["context"] = dict(self.extra)
        kwargs["extra"] = extra
        if self.extra:
            dims = " ".join(f"{k}={v}" for k, v in self.extra.items())
            msg = f"[{dims}] {msg}"
        return msg, kwargs

    def with_context(self, **dims: Any) -> "ContextualLogger":
        """Return a new logger with ``dims`` merged over the current context."""
        merged = {**self.extra, **{k: str(v) for k, v in dims.items() if v is not None}}
        return ContextualLogger(self.logger, merged)


def _configure_root() -> logging.Logger:
    base = logging.getLogger(_LOGGER_NAME)
    if not base.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
        )
        base.addHandler(handler)
    base.setLevel(settings.LOG_LEVEL.upper())
    base.propagate = False
    return base


logger = ContextualLogger(_configure_root())
