"""Unit tests for the contextual logger."""

import logging

from meterline.core.logging import ContextualLogger, logger


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _capturing_logger() -> tuple[ContextualLogger, _Capture]:
    base = logging.getLogger("meterline.test_logging")
    base.setLevel(logging.DEBUG)
    base.propagate = False
    handler = _Capture()
    base.handlers = [handler]
    return ContextualLogger(base), handler


class TestContextualLogger:
    def test_with_context_prefixes_dimensions(self):
        log, handler = _capturing_logger()

        log.with_context(scope="AGENCY:a1", feature_key="exports").info("recorded")

        record = handler.records[0]
        assert record.getMessage() == "[scope=AGENCY:a1 feature_key=exports] recorded"
        assert record.context == {"scope": "AGENCY:a1", "feature_key": "exports"}

    def test_contexts_merge_and_drop_none(self):
        log, handler = _capturing_logger()

        child = log.with_context(scope="AGENCY:a1").with_context(request_id="r1", user=None)
        child.warning("hello")

        assert handler.records[0].context == {"scope": "AGENCY:a1", "request_id": "r1"}

    def test_parent_is_not_mutated(self):
        log, handler = _capturing_logger()

        log.with_context(scope="AGENCY:a1")
        log.info("plain")

        assert handler.records[0].getMessage() == "plain"
        assert handler.records[0].context == {}

    def test_module_logger_uses_meterline_namespace(self):
        assert logger.logger.name == "meterline"
